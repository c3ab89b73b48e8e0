from datetime import date
from pathlib import Path

import pytest

from secscan.config import (
    AllowEntry,
    ScanConfig,
    apply_environment,
    apply_overrides,
    load_config,
    split_allowed,
)
from secscan.errors import ConfigError
from secscan.reachability import DEFAULT_FIXTURE_DIRS

CONFIG = """
exclude:
  - generated/
fixture_dirs: [fixtures, golden]
rules: [policy/rules.yaml]
disabled_rules: [CFG005]
workers: 3
oracle_timeout: 1.5
advisories: policy/advisories.yaml
pii_terms: [IBAN, Password]
allow:
  - rule: CRED001
    path: tests/*.py
    expires: 2030-01-31
    reason: fake credentials for integration tests
"""


def test_defaults_without_config_file(tmp_path):
    config = load_config(tmp_path, environ={})

    assert config == ScanConfig(workers=config.workers)
    assert config.fixture_dirs == DEFAULT_FIXTURE_DIRS
    assert config.workers >= 1


def test_config_file_is_parsed(tmp_path):
    (tmp_path / ".secscan.yaml").write_text(CONFIG, encoding="utf-8")

    config = load_config(tmp_path, environ={})

    assert config.exclude == ("generated/",)
    assert config.fixture_dirs == ("fixtures", "golden")
    assert config.rules == (tmp_path / "policy/rules.yaml",)
    assert config.disabled_rules == ("CFG005",)
    assert config.workers == 3
    assert config.oracle_timeout == 1.5
    assert config.advisories == tmp_path / "policy/advisories.yaml"
    assert config.pii_terms == ("iban", "password")
    assert config.allow == (
        AllowEntry("CRED001", "tests/*.py", date(2030, 1, 31), "fake credentials for integration tests"),
    )


def test_environment_overrides_config_file(tmp_path):
    (tmp_path / ".secscan.yaml").write_text("workers: 3\n", encoding="utf-8")

    config = load_config(tmp_path, environ={"SECSCAN_WORKERS": "7", "SECSCAN_ORACLE_TIMEOUT": "0.5"})

    assert config.workers == 7
    assert config.oracle_timeout == 0.5


def test_invalid_environment_value_raises():
    with pytest.raises(ConfigError):
        apply_environment(ScanConfig(), {"SECSCAN_WORKERS": "many"})


@pytest.mark.parametrize(
    "text, message",
    [
        ("colour: blue\n", "unknown config keys: colour"),
        ("workers: 0\n", "at least 1"),
        ("oracle_timeout: soon\n", "must be a number"),
        ("exclude: [1, 2]\n", "list of strings"),
        ("allow:\n  - rule: CRED001\n    path: '*'\n    expires: 2030-01-01\n", "missing reason"),
        ("allow:\n  - {rule: X, path: '*', expires: next-year, reason: r}\n", "not an ISO date"),
        ("- just\n- a list\n", "must contain a mapping"),
    ],
)
def test_malformed_config_raises(tmp_path, text, message):
    (tmp_path / ".secscan.yaml").write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path, environ={})

    assert message in excinfo.value.message


def test_explicit_config_path_must_exist(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path, Path(tmp_path / "nope.yaml"), environ={})


def test_cli_overrides_replace_or_accumulate():
    config = ScanConfig(exclude=("a/",), disabled_rules=("X",), workers=2)

    updated = apply_overrides(config, exclude=["b/"], disabled_rules=("Y",), workers=5, oracle_timeout=None, rules=[])

    assert updated.exclude == ("a/", "b/")
    assert updated.disabled_rules == ("X", "Y")
    assert updated.workers == 5
    assert updated.oracle_timeout == config.oracle_timeout
    assert updated.rules == ()


def test_expired_allow_entries_are_inactive():
    fresh = AllowEntry("CRED001", "*", date(2030, 1, 1), "r")
    stale = AllowEntry("*", "*", date(2020, 1, 1), "r")
    config = ScanConfig(allow=(fresh, stale))

    assert config.active_allowlist(date(2025, 6, 1)) == (fresh,)
    assert config.active_allowlist(date(2030, 1, 1)) == (fresh,)
    assert config.active_allowlist(date(2030, 1, 2)) == ()


def test_split_allowed_counts_suppressed_findings():
    class FakeFinding:
        def __init__(self, rule_id, path):
            self.rule_id = rule_id
            self.path = path

    findings = [FakeFinding("CRED001", "tests/a.py"), FakeFinding("CRED001", "src/a.py"), FakeFinding("INJ001", "tests/b.py")]
    entry = AllowEntry("CRED001", "tests/*", date(2030, 1, 1), "r")

    kept, count = split_allowed(findings, (entry,))

    assert [(item.rule_id, item.path) for item in kept] == [("CRED001", "src/a.py"), ("INJ001", "tests/b.py")]
    assert count == 1
