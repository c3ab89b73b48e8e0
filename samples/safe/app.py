"""Flask app demonstrating the safe counterparts of the vulnerable demo."""

import logging
import os
import sqlite3
import subprocess

from flask import Flask, request

app = Flask(__name__)
logger = logging.getLogger(__name__)

password = os.environ["PASSWORD"]


@app.route("/users")
def list_users():
    cursor = sqlite3.connect("app.db").cursor()
    cursor.execute("SELECT * FROM users WHERE id = ?", (request.args.get("id"),))
    return {"users": cursor.fetchall()}


@app.route("/ping")
def ping():
    host = request.args.get("host", "")
    if not host.replace(".", "").isalnum():
        return {"ok": False}, 400
    subprocess.run(["ping", "-c", "1", host], check=False)
    return {"ok": True}


@app.route("/login", methods=["POST"])
def login():
    user_id = request.form.get("user_id")
    logger.info("login attempt received")
    return {"ok": bool(user_id)}
