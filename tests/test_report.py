import json
from datetime import datetime, timezone

from secscan.report import ReportBuilder, report_timestamp
from secscan.result import Finding, Fix, Palette, SkippedFile, format_report_text
from secscan.severity import Severity


def _finding(rule_id, path="app.py", line=1, severity=Severity.P2, snippet="x = 1", column=1, order=0, category="config"):
    return Finding(
        rule_id=rule_id,
        title=f"{rule_id} title",
        category=category,
        path=path,
        line=line,
        column=column,
        end_line=line,
        end_column=column + 1,
        snippet=snippet,
        severity=severity,
        declared_severity=severity,
        what="what",
        risk="risk",
        fix=Fix(before=snippet, after="fixed"),
        blast_radius="",
        order=order,
    )


def _build(findings, **kwargs):
    kwargs.setdefault("root", "repo")
    kwargs.setdefault("ruleset_version", "test@1")
    kwargs.setdefault("timestamp", "2024-01-01T00:00:00Z")
    return ReportBuilder().build(findings, **kwargs)


def test_findings_are_sorted_by_tier_path_line_and_rule_order():
    findings = [
        _finding("B", path="b.py", line=1, order=1),
        _finding("A", path="a.py", line=9, order=0),
        _finding("C", path="z.py", line=5, severity=Severity.P0, order=2),
        _finding("D", path="a.py", line=2, severity=Severity.P1, order=3),
        _finding("E", path="a.py", line=9, order=4, snippet="y = 2"),
    ]

    report = _build(findings)

    assert [finding.rule_id for finding in report.findings] == ["C", "D", "A", "E", "B"]


def test_duplicates_are_removed():
    report = _build([_finding("A"), _finding("A"), _finding("A", line=2)])

    assert len(report.findings) == 2
    assert len({finding.key for finding in report.findings}) == 2


def test_overlapping_rules_take_the_highest_severity():
    findings = [
        _finding("LOW", severity=Severity.P2, order=0),
        _finding("HIGH", severity=Severity.P0, order=1),
        _finding("ELSEWHERE", line=7, severity=Severity.P2, order=2),
    ]

    report = _build(findings)
    by_rule = {finding.rule_id: finding for finding in report.findings}

    assert by_rule["LOW"].severity == Severity.P0
    assert by_rule["LOW"].declared_severity == Severity.P2
    assert by_rule["LOW"].modifiers == ("consolidated:HIGH",)
    assert by_rule["HIGH"].modifiers == ()
    assert by_rule["ELSEWHERE"].severity == Severity.P2
    assert report.summary.p0 == 2


def test_summary_counts_and_exit_code():
    report = _build(
        [
            _finding("A", severity=Severity.P1, category="auth"),
            _finding("B", line=2, category="auth"),
            _finding("C", line=3, category="xss"),
        ]
    )

    assert (report.summary.p0, report.summary.p1, report.summary.p2) == (0, 1, 2)
    assert report.summary.by_category == {"auth": 2, "xss": 1}
    assert report.exit_code == 0
    assert report.passed

    failing = _build([_finding("A", severity=Severity.P0)])
    assert failing.exit_code == 1
    assert not failing.passed


def test_report_is_deterministic():
    findings = [_finding("A", path="b.py"), _finding("B", severity=Severity.P1), _finding("C", line=3)]
    skipped = [SkippedFile("z.bin", "binary content"), SkippedFile("a.bin", "binary content")]

    first = _build(findings, skipped=skipped).to_json()
    second = _build(list(reversed(findings)), skipped=list(reversed(skipped))).to_json()

    assert first == second
    data = json.loads(first)
    assert data["header"]["files_skipped"] == 2
    assert [item["path"] for item in data["footer"]["skipped"]] == ["a.bin", "z.bin"]
    assert data["footer"]["summary"] == {"P0": 0, "P1": 1, "P2": 2, "total": 3, "by_category": {"config": 3}}
    assert "order" not in data["findings"][0]


def test_timestamp_sources(monkeypatch):
    monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")

    assert report_timestamp() == "2023-11-14T22:13:20Z"
    assert report_timestamp(lambda: datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)) == "2024-01-02T03:04:05Z"

    monkeypatch.delenv("SOURCE_DATE_EPOCH")
    assert report_timestamp().endswith("Z")


def test_text_report_lists_findings_and_status():
    report = _build([_finding("A", severity=Severity.P0)], skipped=[SkippedFile("big.sql", "file too large")])

    text = format_report_text(report)

    assert "Security Scan Report" in text
    assert "[P0] A A title (config) -> app.py:1:1" in text
    assert "Skipped   : big.sql (file too large)" in text
    assert "Status    : FAIL (exit 1)" in text
    assert "P0         |     1 | build-blocking" in text
    assert "\033[" not in text


def test_palette_honours_no_color(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    assert not Palette().enabled

    monkeypatch.delenv("NO_COLOR")
    assert Palette().tier(Severity.P0) == "\033[31m[P0]\033[0m"
