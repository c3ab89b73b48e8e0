import json
from pathlib import Path

from secscan import cli

SAMPLES = Path(__file__).resolve().parent.parent / "samples"


def test_cli_generates_json_report(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")
    output_path = tmp_path / "scan.json"

    exit_code = cli.main([str(SAMPLES / "vulnerable"), "--out", str(output_path), "--no-color"])

    captured = capsys.readouterr()
    assert "Security Scan Report" in captured.out
    assert exit_code == 1  # P0 findings in the vulnerable sample
    data = json.loads(output_path.read_text(encoding="utf-8"))
    assert data["header"]["timestamp"] == "2023-11-14T22:13:20Z"
    assert data["footer"]["summary"]["P0"] >= 3
    assert data["footer"]["passed"] is False
    assert data["footer"]["exit_status"] == 1
    rules = {finding["rule_id"] for finding in data["findings"]}
    assert {"CRED001", "INJ001", "INJ002", "LOG001", "DEP002"} <= rules


def test_cli_passes_on_safe_sample(tmp_path, capsys):
    output_path = tmp_path / "clean.json"

    exit_code = cli.main([str(SAMPLES / "safe"), "--out", str(output_path)])

    captured = capsys.readouterr()
    assert "Status    : PASS (exit 0)" in captured.out
    assert exit_code == 0
    data = json.loads(output_path.read_text(encoding="utf-8"))
    assert data["footer"]["summary"]["P0"] == 0
    assert data["footer"]["passed"] is True


def test_cli_json_format_prints_json(tmp_path, capsys):
    (tmp_path / "app.js").write_text("el.innerHTML = userInput;\n", encoding="utf-8")

    exit_code = cli.main([str(tmp_path), "--format", "json"])

    data = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert [finding["rule_id"] for finding in data["findings"]] == ["XSS001"]
    assert data["findings"][0]["severity"] == "P1"


def test_cli_list_rules(capsys):
    exit_code = cli.main(["--list-rules"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert out.startswith("Rule set baseline@2026.10")
    assert "CRED001" in out
    assert "VAL002" in out


def test_cli_exclude_flag(tmp_path, capsys):
    (tmp_path / "legacy").mkdir()
    (tmp_path / "legacy" / "old.py").write_text('password = "hunter2hunter2"\n', encoding="utf-8")

    exit_code = cli.main([str(tmp_path), "--exclude", "legacy/"])

    assert exit_code == 0
    assert "Files     : 0 scanned" in capsys.readouterr().out


def test_cli_fatal_errors_exit_2(tmp_path, capsys):
    bad_rules = tmp_path / "rules.yaml"
    bad_rules.write_text("rules:\n  - id: BAD\n    category: nonsense\n", encoding="utf-8")

    assert cli.main([str(tmp_path), "--rules", str(bad_rules)]) == 2
    err = capsys.readouterr().err
    assert err.startswith("Error: unknown category 'nonsense'")
    assert "Suggested fix:" in err

    assert cli.main([str(tmp_path / "missing")]) == 2
    assert "is not a directory" in capsys.readouterr().err


def test_cli_rejects_unknown_disabled_rule(tmp_path, capsys):
    (tmp_path / ".secscan.yaml").write_text("disabled_rules: [NOPE]\n", encoding="utf-8")

    assert cli.main([str(tmp_path)]) == 2
    assert "cannot disable unknown rules: NOPE" in capsys.readouterr().err


def test_cli_rejects_non_positive_workers_and_timeout(tmp_path, capsys):
    assert cli.main([str(tmp_path), "--workers", "0"]) == 2
    assert "'workers' must be at least 1" in capsys.readouterr().err

    assert cli.main([str(tmp_path), "--oracle-timeout", "-1"]) == 2
    assert "'oracle_timeout' must be positive" in capsys.readouterr().err
