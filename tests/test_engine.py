from secscan.engine import MatchEngine
from secscan.extractors import extract
from secscan.rules import load, load_baseline


def _ruleset(*rules):
    entries = []
    for rule_id, pattern in rules:
        entries.append(
            {
                "id": rule_id,
                "title": rule_id,
                "category": "credential",
                "severity": "P2",
                "pattern": pattern,
                "remediation": {"what": "{matched}", "risk": "test"},
            }
        )
    return load([{"name": "test", "rules": entries}])


def _match(path, source, ruleset):
    units = extract(path, source)
    return MatchEngine().match_units(units, ruleset.rules_for(units[0].file_kind))


def test_regex_line_matches_cite_exact_columns():
    ruleset = _ruleset(("R1", {"kind": "regex", "regex": "sec(?P<rest>ret)"}))

    [match] = _match("notes.txt", 'value = "top secret"\n', ruleset)

    assert (match.span.line, match.span.column, match.span.end_column) == (1, 14, 20)
    assert match.matched == "secret"
    assert match.group("rest") == "ret"
    assert match.snippet == 'value = "top secret"'


def test_every_occurrence_and_every_rule_is_retained():
    ruleset = _ruleset(
        ("R1", {"kind": "regex", "regex": "token"}),
        ("R2", {"kind": "regex", "regex": "token\\s*="}),
    )

    matches = _match("notes.txt", "token = token\n", ruleset)

    assert [(match.rule.id, match.span.column) for match in matches] == [("R1", 1), ("R1", 9), ("R2", 1)]


def test_exclude_vetoes_a_match():
    ruleset = _ruleset(("R1", {"kind": "regex", "regex": "password", "exclude": "placeholder"}))

    assert _match("notes.txt", "password placeholder\n", ruleset) == []
    assert len(_match("notes.txt", "password hunter2\n", ruleset)) == 1


def test_literal_rules_only_see_literals():
    ruleset = _ruleset(("R1", {"kind": "regex", "regex": "^http://", "units": ["literal"]}))

    [match] = _match("client.py", 'URL = "http://api.internal"  # http://comment\n', ruleset)

    assert match.unit.name == "URL"
    assert (match.span.column, match.span.end_column) == (7, 28)


def test_path_rules_match_the_file_unit():
    ruleset = load_baseline()

    env_matches = _match(".env", "DEBUG=1\n", ruleset)
    example_matches = _match(".env.example", "DEBUG=1\n", ruleset)

    assert [match.rule.id for match in env_matches] == ["CFG001"]
    assert example_matches == []


def test_structural_match_resolves_one_assignment():
    source = (
        "def view(cursor, uid):\n"
        "    query = 'SELECT * FROM t WHERE id = ' + str(uid)\n"
        "    cursor.execute(query)\n"
    )
    ruleset = load_baseline()

    [match] = [item for item in _match("views.py", source, ruleset) if item.rule.id == "INJ001"]

    assert match.variable == "query"
    assert match.resolved == "'SELECT * FROM t WHERE id = ' + str(uid)"
    assert match.span.line == 3


def test_structural_resolution_stops_after_one_level():
    source = (
        "def view(cursor, uid):\n"
        "    base = 'SELECT * FROM t WHERE id = ' + uid\n"
        "    query = base\n"
        "    cursor.execute(query)\n"
    )
    ruleset = load_baseline()

    assert [item for item in _match("views.py", source, ruleset) if item.rule.id == "INJ001"] == []


def test_constant_arguments_are_not_dynamic():
    source = (
        "import os\n"
        "def clean():\n"
        "    command = 'rm -rf /tmp/cache'\n"
        "    os.system(command)\n"
        "    os.system(user_command)\n"
    )
    ruleset = load_baseline()

    matches = [item for item in _match("tasks.py", source, ruleset) if item.rule.id == "INJ002"]

    assert [(item.span.line, item.subject) for item in matches] == [(5, "user_command")]
