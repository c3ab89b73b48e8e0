import threading
import time
from datetime import datetime, timezone

import pytest

from secscan.config import ScanConfig
from secscan.errors import ConfigError
from secscan.extractors import extract
from secscan.oracle import AdvisoryFileOracle, DependencyAuditor, KnownVulnerability, NullOracle, OracleClient
from secscan.rules import load_baseline
from secscan.scan import scan
from secscan.severity import Severity
from secscan.units import UnitKind

ADVISORIES = {
    "advisories": [
        {
            "package": "Flask",
            "versions": ["2.0.1", "2.0.2"],
            "id": "GHSA-test-0001",
            "severity": "critical",
            "summary": "Session cookie disclosure",
            "fixed": "2.2.5",
        },
        {
            "package": "lodash",
            "versions": "4.17.20",
            "id": "GHSA-test-0002",
            "severity": "moderate",
            "summary": "Prototype pollution",
        },
    ]
}


class SlowOracle:
    def __init__(self):
        self.release = threading.Event()

    def lookup(self, package, version):
        self.release.wait(2)
        return ()


class BrokenOracle:
    def lookup(self, package, version):
        raise RuntimeError("advisory service unavailable")


def _clock():
    return datetime(2024, 5, 1, tzinfo=timezone.utc)


def _dependencies(path, content):
    return [unit for unit in extract(path, content) if unit.kind == UnitKind.DEPENDENCY]


def test_advisory_file_lookup():
    oracle = AdvisoryFileOracle.from_document(ADVISORIES)

    [hit] = oracle.lookup("flask", "2.0.2")

    assert hit == KnownVulnerability(
        id="GHSA-test-0001",
        package="flask",
        version="2.0.2",
        severity="critical",
        summary="Session cookie disclosure",
        fixed_version="2.2.5",
    )
    assert oracle.lookup("flask", "3.0.0") == ()
    assert oracle.lookup("lodash", "4.17.20")[0].fixed_version is None
    assert NullOracle().lookup("flask", "2.0.1") == ()


def test_malformed_advisory_file_raises(tmp_path):
    path = tmp_path / "advisories.yaml"
    path.write_text("advisories:\n  - summary: no package\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        AdvisoryFileOracle.from_file(path)
    with pytest.raises(ConfigError):
        AdvisoryFileOracle.from_file(tmp_path / "missing.yaml")


def test_timed_out_lookup_becomes_unknown():
    oracle = SlowOracle()
    client = OracleClient(oracle, timeout=0.05)
    [unit] = _dependencies("requirements.txt", "flask==2.0.1\n")
    try:
        client.submit(unit)
        hits, unknown = client.resolve()
    finally:
        oracle.release.set()
        client.close()

    assert hits == []
    assert [(item.package, item.version, item.ecosystem, item.reason) for item in unknown] == [
        ("flask", "2.0.1", "pypi", "lookup timed out")
    ]


def test_failed_lookup_becomes_unknown():
    client = OracleClient(BrokenOracle(), timeout=1)
    [unit] = _dependencies("requirements.txt", "flask==2.0.1\n")
    client.submit(unit)
    hits, unknown = client.resolve()
    client.close()

    assert hits == []
    assert unknown[0].reason == "lookup failed: advisory service unavailable"


def test_auditor_only_submits_matching_ecosystems():
    ruleset = load_baseline()
    client = OracleClient(AdvisoryFileOracle.from_document(ADVISORIES))
    auditor = DependencyAuditor(ruleset.rules, client)
    units = _dependencies("requirements.txt", "flask==2.0.1\n") + _dependencies(
        "package.json", '{"dependencies": {"lodash": "4.17.20"}}'
    )

    assert auditor.active
    assert auditor.submit(units) == 2
    matches, unknown = auditor.resolve()
    client.close()

    assert unknown == []
    assert sorted((match.rule.id, match.advisory.id) for match in matches) == [
        ("DEP001", "GHSA-test-0001"),
        ("DEP001", "GHSA-test-0002"),
    ]


def test_scan_reports_vulnerable_dependency(tmp_path):
    (tmp_path / "requirements.txt").write_text("flask==2.0.1\n", encoding="utf-8")

    report = scan(tmp_path, oracle=AdvisoryFileOracle.from_document(ADVISORIES), clock=_clock)

    [finding] = report.findings
    assert finding.rule_id == "DEP001"
    assert finding.severity == Severity.P0
    assert finding.modifiers == ("advisory:critical",)
    assert finding.fix.after == "Upgrade flask to 2.2.5."
    assert report.exit_code == 1


def test_scan_marks_slow_lookups_unknown(tmp_path):
    (tmp_path / "requirements.txt").write_text("flask==2.0.1\n", encoding="utf-8")
    oracle = SlowOracle()

    try:
        report = scan(tmp_path, config=ScanConfig(oracle_timeout=0.05), oracle=oracle, clock=_clock)
    finally:
        oracle.release.set()

    assert report.findings == []
    assert report.complete
    assert [(item.package, item.reason) for item in report.unknown_checks] == [("flask", "lookup timed out")]


def test_many_slow_lookups_share_one_deadline():
    oracle = SlowOracle()
    client = OracleClient(oracle, timeout=0.2)
    requirements = "".join(f"package{index}==1.0.{index}\n" for index in range(12))
    try:
        for unit in _dependencies("requirements.txt", requirements):
            client.submit(unit)
        started = time.monotonic()
        hits, unknown = client.resolve()
        elapsed = time.monotonic() - started
    finally:
        oracle.release.set()
        client.close()

    assert hits == []
    assert len(unknown) == 12
    assert {item.reason for item in unknown} == {"lookup timed out"}
    assert elapsed < 1.2
