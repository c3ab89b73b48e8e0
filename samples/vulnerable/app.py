"""Intentionally vulnerable Flask app used for scanner demos."""

import logging
import os
import sqlite3

from flask import Flask, request

app = Flask(__name__)
logger = logging.getLogger(__name__)

# Hardcoded credential intentionally left to exercise the scanner.
password = "sk_live_abc123"


@app.route("/users")
def list_users():
    cursor = sqlite3.connect("app.db").cursor()
    cursor.execute("SELECT * FROM users WHERE id = " + request.args.get("id"))
    return {"users": cursor.fetchall()}


@app.route("/ping")
def ping():
    host = request.args.get("host")
    os.system("ping -c 1 " + host)
    return {"ok": True}


@app.route("/login", methods=["POST"])
def login():
    token = request.form.get("token")
    logger.info("login token %s", token)
    return {"ok": True}
