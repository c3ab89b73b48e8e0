"""Core result data structures and renderers for the scanner."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

from .severity import SEVERITY_ORDER, Severity

REPORT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Fix:
    """Suggested change: the flagged code and what to write instead."""

    before: str
    after: str


@dataclass(frozen=True)
class Finding:
    """Capture a single classified vulnerability instance."""

    rule_id: str
    title: str
    category: str
    path: str
    line: int
    column: int
    end_line: int
    end_column: int
    snippet: str
    severity: Severity
    declared_severity: Severity
    what: str
    risk: str
    fix: Fix
    blast_radius: str
    modifiers: Tuple[str, ...] = ()
    reachability: str = "unknown"
    # Rule declaration order; reporting tie-break only.
    order: int = field(default=0, compare=False)

    @property
    def key(self) -> Tuple[str, str, int, str]:
        return (self.rule_id, self.path, self.line, self.snippet)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data.pop("order")
        data["severity"] = self.severity.value
        data["declared_severity"] = self.declared_severity.value
        data["modifiers"] = list(self.modifiers)
        return data


@dataclass
class Summary:
    """Aggregate finding counts by tier and by category."""

    p0: int = 0
    p1: int = 0
    p2: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)

    def increment(self, finding: Finding) -> None:
        attr = finding.severity.value.lower()
        setattr(self, attr, getattr(self, attr) + 1)
        self.by_category[finding.category] = self.by_category.get(finding.category, 0) + 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "P0": self.p0,
            "P1": self.p1,
            "P2": self.p2,
            "total": self.total,
            "by_category": dict(sorted(self.by_category.items())),
        }

    def as_rows(self) -> List[Tuple[str, int]]:
        """Return tier/count pairs ordered for reporting."""

        return [(severity.value, getattr(self, severity.value.lower())) for severity in SEVERITY_ORDER]

    @property
    def total(self) -> int:
        return sum(getattr(self, severity.value.lower()) for severity in SEVERITY_ORDER)


@dataclass(frozen=True)
class SkippedFile:
    path: str
    reason: str


@dataclass(frozen=True)
class DegradedFile:
    """A file whose normalizer failed and was scanned as raw lines."""

    path: str
    file_kind: str
    reason: str


@dataclass(frozen=True)
class UnknownCheck:
    """A dependency whose vulnerability status could not be determined."""

    package: str
    version: str
    ecosystem: str
    path: str
    reason: str


@dataclass
class Report:
    """Bundle the scan header, ordered findings and footer."""

    root: str
    timestamp: str
    ruleset_version: str
    files_scanned: int = 0
    findings: List[Finding] = field(default_factory=list)
    summary: Summary = field(default_factory=Summary)
    skipped: List[SkippedFile] = field(default_factory=list)
    degraded: List[DegradedFile] = field(default_factory=list)
    unknown_checks: List[UnknownCheck] = field(default_factory=list)
    suppressed: int = 0
    allowlisted: int = 0
    complete: bool = True

    @property
    def files_skipped(self) -> int:
        return len(self.skipped)

    @property
    def passed(self) -> bool:
        return self.summary.p0 == 0

    @property
    def exit_code(self) -> int:
        """0 when no P0 finding exists, 1 otherwise."""

        return 0 if self.passed else 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "schema_version": REPORT_SCHEMA_VERSION,
            "header": {
                "root": self.root,
                "timestamp": self.timestamp,
                "ruleset_version": self.ruleset_version,
                "files_scanned": self.files_scanned,
                "files_skipped": self.files_skipped,
            },
            "findings": [finding.to_dict() for finding in self.findings],
            "footer": {
                "summary": self.summary.to_dict(),
                "skipped": [asdict(item) for item in self.skipped],
                "degraded": [asdict(item) for item in self.degraded],
                "unknown_checks": [asdict(item) for item in self.unknown_checks],
                "suppressed": self.suppressed,
                "allowlisted": self.allowlisted,
                "exit_status": self.exit_code,
                "passed": self.passed,
                "complete": self.complete,
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


class Palette:
    """ANSI colours for the console report; disabled under ``NO_COLOR``."""

    CODES = {
        "red": "\033[31m",
        "yellow": "\033[33m",
        "blue": "\033[34m",
        "green": "\033[32m",
        "bold": "\033[1m",
        "dim": "\033[2m",
    }
    RESET = "\033[0m"
    TIER_COLORS = {Severity.P0: "red", Severity.P1: "yellow", Severity.P2: "blue"}

    def __init__(self, enabled: Optional[bool] = None) -> None:
        if enabled is None:
            enabled = "NO_COLOR" not in os.environ
        self.enabled = enabled

    def paint(self, text: str, color: str) -> str:
        if not self.enabled:
            return text
        return f"{self.CODES[color]}{text}{self.RESET}"

    def tier(self, severity: Severity) -> str:
        return self.paint(f"[{severity.value}]", self.TIER_COLORS[severity])


def _indent(text: str, prefix: str = "      ") -> List[str]:
    return [prefix + line for line in text.splitlines() or [""]]


def format_report_text(report: Report, palette: Optional[Palette] = None) -> str:
    """Create a human-readable report for console output."""

    palette = palette or Palette(enabled=False)
    lines: List[str] = []
    lines.append(palette.paint("Security Scan Report", "bold"))
    lines.append("=" * 60)
    lines.append(f"Root      : {report.root}")
    lines.append(f"Timestamp : {report.timestamp}")
    lines.append(f"Rules     : {report.ruleset_version}")
    lines.append(f"Files     : {report.files_scanned} scanned, {report.files_skipped} skipped")

    if report.findings:
        lines.append("")
        lines.append("Findings")
        lines.append("-" * 60)
        for finding in report.findings:
            location = f"{finding.path}:{finding.line}:{finding.column}"
            lines.append(
                f"{palette.tier(finding.severity)} {finding.rule_id} {finding.title} ({finding.category}) -> {location}"
            )
            if finding.modifiers:
                lines.append(palette.paint(f"  Modifiers: {', '.join(finding.modifiers)}", "dim"))
            lines.append(f"  What  : {finding.what}")
            lines.append(f"  Risk  : {finding.risk}")
            lines.append("  Fix   :")
            lines.append("    before:")
            lines.extend(_indent(finding.fix.before))
            lines.append("    after:")
            lines.extend(_indent(finding.fix.after))
            if finding.blast_radius:
                lines.append(f"  Blast radius: {finding.blast_radius}")
            lines.append("")

    lines.append("")
    lines.append("Summary")
    lines.append("-" * 60)
    header = f"{'Tier':<10} | {'Count':>5} | {'Gate':<15}"
    lines.append(header)
    lines.append("-" * len(header))
    for tier, count in report.summary.as_rows():
        lines.append(f"{tier:<10} | {count:>5} | {Severity(tier).label:<15}")
    lines.append("-" * len(header))
    for category, count in sorted(report.summary.by_category.items()):
        lines.append(f"{category:<16} {count:>5}")
    if report.suppressed or report.allowlisted:
        lines.append(f"Suppressed: {report.suppressed} (allowlisted: {report.allowlisted})")
    for item in report.skipped:
        lines.append(f"Skipped   : {item.path} ({item.reason})")
    for item in report.degraded:
        lines.append(f"Degraded  : {item.path} [{item.file_kind}] ({item.reason})")
    for item in report.unknown_checks:
        lines.append(f"Unknown   : {item.package}=={item.version} in {item.path} ({item.reason})")
    if not report.complete:
        lines.append(palette.paint("Scan incomplete: cancelled before all files were processed.", "yellow"))
    status = palette.paint("PASS", "green") if report.passed else palette.paint("FAIL", "red")
    lines.append(f"Status    : {status} (exit {report.exit_code})")
    lines.append(f"Findings  : {report.summary.total}")
    return "\n".join(lines)
