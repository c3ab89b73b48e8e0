from secscan.classifier import Classifier
from secscan.engine import Match, MatchEngine
from secscan.extractors import extract
from secscan.oracle import KnownVulnerability
from secscan.reachability import ReachabilityFilter
from secscan.remediation import env_var_name, render
from secscan.rules import load_baseline
from secscan.severity import Severity
from secscan.units import UnitKind


def _findings(path, source, rule_id, classifier=None):
    ruleset = load_baseline()
    units = extract(path, source)
    matches = MatchEngine().match_units(units, ruleset.rules_for(units[0].file_kind))
    kept, _ = ReachabilityFilter().partition(matches)
    classifier = classifier or Classifier()
    return [classifier.classify(match, match.taint) for match in kept if match.rule.id == rule_id]


def test_declared_tier_is_kept_without_escalation():
    [finding] = _findings("tasks.py", "import os\nos.system(command)\n", "INJ002")

    assert finding.severity == Severity.P1
    assert finding.declared_severity == Severity.P1
    assert finding.modifiers == ()
    assert finding.reachability == "unknown"


def test_tainted_injection_escalates_to_p0():
    source = (
        "import os\n"
        "from flask import request\n"
        "def ping():\n"
        "    os.system('ping ' + request.args['host'])\n"
    )

    [finding] = _findings("ops.py", source, "INJ002")

    assert finding.severity == Severity.P0
    assert finding.declared_severity == Severity.P1
    assert finding.modifiers == ("external-input",)
    assert finding.reachability == "external-input"
    assert "request.args" in finding.risk


def test_logged_pii_escalates_one_tier():
    [finding] = _findings("auth.py", "logger.info('password reset for %s', password)\n", "LOG001")

    assert finding.severity == Severity.P1
    assert finding.declared_severity == Severity.P2
    assert finding.modifiers == ("pii:password",)


def test_pii_lexicon_is_configurable():
    source = "logger.info('card on file %s', card_number)\n"

    [default] = _findings("billing.py", source, "LOG001")
    [custom] = _findings("billing.py", source, "LOG001", Classifier(["iban"]))

    assert default.severity == Severity.P1
    assert custom.severity == Severity.P2


def test_critical_advisory_escalates_dependency_to_p0():
    ruleset = load_baseline()
    [unit] = [item for item in extract("requirements.txt", "flask==2.0.1\n") if item.kind == UnitKind.DEPENDENCY]
    advisory = KnownVulnerability(
        id="GHSA-test-0001",
        package="flask",
        version="2.0.1",
        severity="critical",
        summary="Session cookie disclosure",
        fixed_version="2.2.5",
    )
    match = Match(
        rule=ruleset.get("DEP001"),
        unit=unit,
        span=unit.span,
        snippet="flask==2.0.1",
        matched=unit.text,
        advisory=advisory,
    )

    finding = Classifier().classify(match)

    assert finding.severity == Severity.P0
    assert finding.modifiers == ("advisory:critical",)
    assert finding.what == "flask 2.0.1 is affected by GHSA-test-0001 (critical): Session cookie disclosure"
    assert finding.fix.after == "Upgrade flask to 2.2.5."


def test_env_lookup_rewrite_uses_the_file_language():
    [python] = _findings("settings.py", 'api_key = "a8f3b2c1d4e5"\n', "CRED001")
    [javascript] = _findings("config.js", 'const apiKey = "a8f3b2c1d4e5";\n', "CRED001")

    assert python.fix.before == 'api_key = "a8f3b2c1d4e5"'
    assert python.fix.after == 'api_key = os.environ["API_KEY"]'
    assert javascript.fix.after == "const apiKey = process.env.API_KEY;"
    assert python.what == 'Hardcoded credential assigned to `api_key`: api_key = "a8f3b2c1d4e5"'


def test_parameterize_sql_handles_fstrings():
    source = (
        "from flask import request\n"
        "def user(cursor):\n"
        "    name = request.args['name']\n"
        "    cursor.execute(f\"SELECT * FROM users WHERE name = '{name}'\")\n"
    )

    [finding] = _findings("users.py", source, "INJ001")

    assert finding.severity == Severity.P0
    assert finding.fix.after == 'cursor.execute("SELECT * FROM users WHERE name = %s", (name,))'


def test_parameterize_sql_in_javascript():
    source = 'function find(req) {\n  db.query("SELECT * FROM t WHERE id = " + req.query.id);\n}\n'

    [finding] = _findings("repo.js", source, "INJ001")

    assert finding.severity == Severity.P0
    assert finding.fix.after == 'db.query("SELECT * FROM t WHERE id = ?", [req.query.id])'


def test_parameterize_sql_in_php_keeps_the_connection_argument():
    source = "<?php\n$rows = mysqli_query($conn, \"SELECT * FROM users WHERE id = \" . $_GET['id']);\n"

    [finding] = _findings("users.php", source, "INJ001")

    assert finding.severity == Severity.P0
    assert finding.fix.after == "mysqli_execute_query($conn, \"SELECT * FROM users WHERE id = ?\", [$_GET['id']])"


def test_php_query_without_a_parameter_api_uses_the_template():
    source = "<?php\nmysql_query(\"SELECT * FROM users WHERE id = \" . $_GET['id']);\n"

    [finding] = _findings("legacy.php", source, "INJ001")

    assert finding.fix.after == "Pass values as bound parameters to `mysql_query` instead of building the query string."


def test_parameterize_sql_binds_right_after_the_query():
    source = "def find(db, name, callback):\n    db.query(\"SELECT * FROM t WHERE name = '\" + name + \"'\", callback)\n"

    [finding] = _findings("repo.py", source, "INJ001")

    assert finding.fix.after == 'db.query("SELECT * FROM t WHERE name = %s", (name,), callback)'


def test_node_exec_is_reported_as_command_injection():
    source = "const { exec } = require('child_process');\nfunction list(req) {\n  exec('ls ' + req.query.dir);\n}\n"

    [finding] = _findings("files.js", source, "INJ007")

    assert finding.category == "injection"
    assert finding.severity == Severity.P0
    assert "execFile" in finding.fix.after
    assert _findings("files.js", source, "INJ004") == []


def test_bare_exec_in_python_is_code_execution():
    source = "def run(code):\n    exec(code)\n"

    assert [finding.rule_id for finding in _findings("run.py", source, "INJ006")] == ["INJ006"]
    assert _findings("run.py", source, "INJ007") == []


def test_render_leaves_unknown_placeholders():
    assert render("{name} uses {missing} and {{braces}}", {"name": "x"}) == "x uses {missing} and {{braces}}"
    assert env_var_name("dbPassword") == "DB_PASSWORD"
    assert env_var_name("$secret-key") == "SECRET_KEY"
