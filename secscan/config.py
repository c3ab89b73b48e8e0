"""Scan configuration: defaults, ``.secscan.yaml``, environment, then CLI flags."""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .classifier import DEFAULT_PII_TERMS
from .errors import ConfigError
from .oracle import DEFAULT_ORACLE_TIMEOUT
from .reachability import DEFAULT_FIXTURE_DIRS
from .result import Finding
from .utils.fileio import DEFAULT_MAX_FILE_BYTES, read_yaml_file

logger = logging.getLogger(__name__)

CONFIG_FILE = ".secscan.yaml"
ENV_WORKERS = "SECSCAN_WORKERS"
ENV_ORACLE_TIMEOUT = "SECSCAN_ORACLE_TIMEOUT"

KNOWN_KEYS = frozenset(
    {
        "exclude",
        "fixture_dirs",
        "rules",
        "disabled_rules",
        "workers",
        "max_file_bytes",
        "oracle_timeout",
        "advisories",
        "pii_terms",
        "allow",
    }
)


@dataclass(frozen=True)
class AllowEntry:
    """Accepted risk: findings of ``rule`` under ``path`` are suppressed until ``expires``."""

    rule: str
    path: str
    expires: date
    reason: str

    def expired(self, today: date) -> bool:
        return today > self.expires

    def covers(self, finding: Finding) -> bool:
        if self.rule not in ("*", finding.rule_id):
            return False
        return fnmatch.fnmatchcase(finding.path, self.path)


@dataclass
class ScanConfig:
    exclude: Tuple[str, ...] = ()
    fixture_dirs: Tuple[str, ...] = DEFAULT_FIXTURE_DIRS
    rules: Tuple[Path, ...] = ()
    disabled_rules: Tuple[str, ...] = ()
    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    oracle_timeout: float = DEFAULT_ORACLE_TIMEOUT
    advisories: Optional[Path] = None
    pii_terms: Tuple[str, ...] = DEFAULT_PII_TERMS
    allow: Tuple[AllowEntry, ...] = ()

    def active_allowlist(self, today: Optional[date] = None) -> Tuple[AllowEntry, ...]:
        """Unexpired entries; expired ones are logged and ignored."""

        today = today or date.today()
        active = []
        for entry in self.allow:
            if entry.expired(today):
                logger.warning(
                    "allowlist entry for %s on %s expired on %s; it no longer suppresses findings",
                    entry.rule,
                    entry.path,
                    entry.expires.isoformat(),
                )
                continue
            active.append(entry)
        return tuple(active)


def _strings(value: Any, key: str, source: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must be a list of strings", context={"source": source})
    return tuple(value)


def _positive_int(value: Any, key: str, source: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be an integer", context={"source": source, "value": str(value)}) from None
    if number < 1:
        raise ConfigError(f"'{key}' must be at least 1", context={"source": source, "value": number})
    return number


def _positive_float(value: Any, key: str, source: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number", context={"source": source, "value": str(value)}) from None
    if number <= 0:
        raise ConfigError(f"'{key}' must be positive", context={"source": source, "value": number})
    return number


_POSITIVE_INTS = ("workers", "max_file_bytes")
_POSITIVE_FLOATS = ("oracle_timeout",)


def parse_allow_entry(entry: Any, source: str) -> AllowEntry:
    if not isinstance(entry, Mapping):
        raise ConfigError("allow entries must be mappings", context={"source": source})
    missing = [key for key in ("rule", "path", "expires", "reason") if not entry.get(key)]
    if missing:
        raise ConfigError(
            f"allow entry is missing {', '.join(missing)}",
            context={"source": source, "entry": str(dict(entry))},
            suggestion="Every accepted risk needs a rule id, a path glob, an ISO expiry date and a reason.",
        )
    try:
        expires = date.fromisoformat(str(entry["expires"]))
    except ValueError:
        raise ConfigError(
            f"allow entry expiry {entry['expires']!r} is not an ISO date",
            context={"source": source, "rule": str(entry["rule"])},
            suggestion="Use YYYY-MM-DD.",
        ) from None
    return AllowEntry(
        rule=str(entry["rule"]),
        path=str(entry["path"]),
        expires=expires,
        reason=str(entry["reason"]),
    )


def config_from_mapping(document: Mapping[str, Any], base_dir: Path, source: str = "<inline>") -> ScanConfig:
    """Build a config from a parsed document; relative paths resolve against ``base_dir``."""

    if not isinstance(document, Mapping):
        raise ConfigError("config file must contain a mapping", context={"source": source})
    unknown = sorted(set(document) - KNOWN_KEYS)
    if unknown:
        raise ConfigError(
            f"unknown config keys: {', '.join(unknown)}",
            context={"source": source},
            suggestion=f"Known keys: {', '.join(sorted(KNOWN_KEYS))}.",
        )
    config = ScanConfig()
    values: Dict[str, Any] = {}
    if "exclude" in document:
        values["exclude"] = _strings(document["exclude"], "exclude", source)
    if "fixture_dirs" in document:
        values["fixture_dirs"] = _strings(document["fixture_dirs"], "fixture_dirs", source)
    if "rules" in document:
        values["rules"] = tuple(base_dir / item for item in _strings(document["rules"], "rules", source))
    if "disabled_rules" in document:
        values["disabled_rules"] = _strings(document["disabled_rules"], "disabled_rules", source)
    if "workers" in document:
        values["workers"] = _positive_int(document["workers"], "workers", source)
    if "max_file_bytes" in document:
        values["max_file_bytes"] = _positive_int(document["max_file_bytes"], "max_file_bytes", source)
    if "oracle_timeout" in document:
        values["oracle_timeout"] = _positive_float(document["oracle_timeout"], "oracle_timeout", source)
    if document.get("advisories"):
        values["advisories"] = base_dir / str(document["advisories"])
    if "pii_terms" in document:
        values["pii_terms"] = tuple(term.lower() for term in _strings(document["pii_terms"], "pii_terms", source))
    if "allow" in document:
        entries = document["allow"] or []
        if not isinstance(entries, list):
            raise ConfigError("'allow' must be a list", context={"source": source})
        values["allow"] = tuple(parse_allow_entry(entry, source) for entry in entries)
    return replace(config, **values)


def apply_environment(config: ScanConfig, environ: Optional[Mapping[str, str]] = None) -> ScanConfig:
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    if environ.get(ENV_WORKERS):
        values["workers"] = _positive_int(environ[ENV_WORKERS], ENV_WORKERS, "environment")
    if environ.get(ENV_ORACLE_TIMEOUT):
        values["oracle_timeout"] = _positive_float(environ[ENV_ORACLE_TIMEOUT], ENV_ORACLE_TIMEOUT, "environment")
    return replace(config, **values) if values else config


def load_config(
    root: Path,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ScanConfig:
    """Merge defaults, the config file and the environment.

    Without ``config_path`` the optional ``.secscan.yaml`` at ``root`` is used.
    An explicitly named file must exist.
    """

    path = Path(config_path) if config_path else Path(root) / CONFIG_FILE
    try:
        document = read_yaml_file(path)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot parse config file: {exc}", context={"path": path}) from exc
    if document is None:
        if config_path:
            raise ConfigError("config file not found or empty", context={"path": path})
        config = ScanConfig()
    else:
        logger.info("using config %s", path)
        config = config_from_mapping(document, path.parent, str(path))
    return apply_environment(config, environ)


def apply_overrides(config: ScanConfig, **overrides: Any) -> ScanConfig:
    """Apply CLI flag values; ``None`` and empty sequences leave a setting unchanged.

    Excludes and disabled rules accumulate; every other value replaces the configured one.
    """

    values: Dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None or (isinstance(value, (list, tuple)) and not value):
            continue
        if key in ("exclude", "disabled_rules"):
            values[key] = tuple(getattr(config, key)) + tuple(value)
        elif key in _POSITIVE_INTS:
            values[key] = _positive_int(value, key, "command line")
        elif key in _POSITIVE_FLOATS:
            values[key] = _positive_float(value, key, "command line")
        else:
            values[key] = value
    return replace(config, **values)


def split_allowed(
    findings: List[Finding],
    allowlist: Tuple[AllowEntry, ...],
) -> Tuple[List[Finding], int]:
    """Drop findings covered by an active allowlist entry; return survivors and the count dropped."""

    if not allowlist:
        return findings, 0
    kept = [finding for finding in findings if not any(entry.covers(finding) for entry in allowlist)]
    return kept, len(findings) - len(kept)
