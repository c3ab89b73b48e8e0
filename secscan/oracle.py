"""Dependency vulnerability lookups behind a narrow, pluggable interface."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from time import monotonic
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import yaml

from .engine import Match
from .errors import ConfigError, OracleTimeoutError
from .result import UnknownCheck
from .rules.model import AdvisoryPattern, Rule
from .units import ScanUnit, UnitKind
from .utils.fileio import read_yaml_file

logger = logging.getLogger(__name__)

DEFAULT_ORACLE_TIMEOUT = 5.0


@dataclass(frozen=True)
class KnownVulnerability:
    id: str
    package: str
    version: str
    severity: str
    summary: str
    fixed_version: Optional[str] = None


class VulnerabilityOracle(Protocol):
    def lookup(self, package: str, version: str) -> Sequence[KnownVulnerability]:
        """Known vulnerabilities for an exact pin; empty when none are known."""


class NullOracle:
    """Knows nothing; every lookup is clean."""

    def lookup(self, package: str, version: str) -> Sequence[KnownVulnerability]:
        return ()


class AdvisoryFileOracle:
    """Answer lookups from a YAML advisory database.

    The file holds an ``advisories`` list; each entry names a ``package``, the
    affected ``versions``, an ``id``, ``severity`` and ``summary`` and an
    optional ``fixed`` version.
    """

    def __init__(self, advisories: Mapping[Tuple[str, str], Sequence[KnownVulnerability]]) -> None:
        self._advisories = dict(advisories)

    @classmethod
    def from_file(cls, path: Path) -> "AdvisoryFileOracle":
        try:
            document = read_yaml_file(Path(path))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot parse advisory file: {exc}", context={"path": Path(path)}) from exc
        if document is None:
            raise ConfigError(
                "advisory file not found or empty",
                context={"path": Path(path)},
                suggestion="Check the --advisories path or the 'advisories' config key.",
            )
        return cls.from_document(document, str(path))

    @classmethod
    def from_document(cls, document: object, origin: str = "<inline>") -> "AdvisoryFileOracle":
        entries = document.get("advisories") if isinstance(document, Mapping) else None
        if not isinstance(entries, list):
            raise ConfigError("advisory file has no 'advisories' list", context={"source": origin})
        table: Dict[Tuple[str, str], List[KnownVulnerability]] = {}
        for entry in entries:
            if not isinstance(entry, Mapping) or not entry.get("package") or not entry.get("id"):
                raise ConfigError(
                    "advisory entries need 'package' and 'id'",
                    context={"source": origin, "entry": str(entry)},
                )
            package = str(entry["package"]).lower()
            versions = entry.get("versions") or []
            if isinstance(versions, str):
                versions = [versions]
            for version in versions:
                table.setdefault((package, str(version)), []).append(
                    KnownVulnerability(
                        id=str(entry["id"]),
                        package=package,
                        version=str(version),
                        severity=str(entry.get("severity", "unknown")).lower(),
                        summary=str(entry.get("summary", "")),
                        fixed_version=str(entry["fixed"]) if entry.get("fixed") is not None else None,
                    )
                )
        return cls(table)

    def lookup(self, package: str, version: str) -> Sequence[KnownVulnerability]:
        return tuple(self._advisories.get((package.lower(), version), ()))


@dataclass(frozen=True)
class PendingLookup:
    unit: ScanUnit
    future: "Future[Sequence[KnownVulnerability]]"


class OracleClient:
    """Submit lookups early on a dedicated executor; resolve them against one shared deadline."""

    def __init__(self, oracle: VulnerabilityOracle, timeout: float = DEFAULT_ORACLE_TIMEOUT, workers: int = 4) -> None:
        self.oracle = oracle
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="secscan-oracle")
        self._pending: List[PendingLookup] = []

    def submit(self, unit: ScanUnit) -> None:
        future = self._executor.submit(self.oracle.lookup, unit.name or "", unit.version or "")
        self._pending.append(PendingLookup(unit, future))

    def resolve(self) -> Tuple[List[Tuple[ScanUnit, KnownVulnerability]], List[UnknownCheck]]:
        """Wait for every submitted lookup; timeouts and failures become unknown checks.

        All lookups share one deadline, ``timeout`` seconds from now, so the
        wait is bounded no matter how many dependencies were submitted.
        """

        hits: List[Tuple[ScanUnit, KnownVulnerability]] = []
        unknown: List[UnknownCheck] = []
        started = monotonic()
        deadline = started + self.timeout
        for pending in self._pending:
            unit = pending.unit
            try:
                results = pending.future.result(timeout=max(deadline - monotonic(), 0))
            except FutureTimeout:
                pending.future.cancel()
                error = OracleTimeoutError(unit.name or "", unit.version or "", self.timeout)
                logger.warning("%s", error.message)
                unknown.append(self._unknown(unit, "lookup timed out"))
                continue
            except Exception as exc:  # any oracle failure downgrades the check
                logger.warning("vulnerability lookup for %s==%s failed: %s", unit.name, unit.version, exc)
                unknown.append(self._unknown(unit, f"lookup failed: {exc}"))
                continue
            for vulnerability in results or ():
                hits.append((unit, vulnerability))
        logger.debug("resolved %d lookups in %.3fs", len(self._pending), monotonic() - started)
        self._pending = []
        return hits, unknown

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _unknown(unit: ScanUnit, reason: str) -> UnknownCheck:
        return UnknownCheck(
            package=unit.name or "",
            version=unit.version or "",
            ecosystem=unit.ecosystem or "",
            path=unit.path,
            reason=reason,
        )


class DependencyAuditor:
    """Route dependency units to the oracle and turn answers into advisory matches."""

    def __init__(self, rules: Sequence[Rule], client: OracleClient) -> None:
        self.rules = [rule for rule in rules if isinstance(rule.pattern, AdvisoryPattern)]
        self.client = client

    @property
    def active(self) -> bool:
        return bool(self.rules)

    def submit(self, units: Sequence[ScanUnit]) -> int:
        count = 0
        for unit in units:
            if unit.kind == UnitKind.DEPENDENCY and unit.name and unit.version and self._rules_for(unit):
                self.client.submit(unit)
                count += 1
        return count

    def _rules_for(self, unit: ScanUnit) -> List[Rule]:
        applicable = []
        for rule in self.rules:
            ecosystems = rule.pattern.ecosystems
            if rule.applies_to(unit.file_kind) and (not ecosystems or unit.ecosystem in ecosystems):
                applicable.append(rule)
        return applicable

    def resolve(self) -> Tuple[List[Match], List[UnknownCheck]]:
        hits, unknown = self.client.resolve()
        matches: List[Match] = []
        for unit, vulnerability in hits:
            for rule in self._rules_for(unit):
                matches.append(
                    Match(
                        rule=rule,
                        unit=unit,
                        span=unit.span,
                        snippet=unit.source.strip(),
                        matched=unit.text,
                        advisory=vulnerability,
                    )
                )
        return matches, unknown
