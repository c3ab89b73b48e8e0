"""Consolidate, deduplicate and order findings into a :class:`Report`."""

from __future__ import annotations

import dataclasses
import os
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .result import DegradedFile, Finding, Report, SkippedFile, Summary, UnknownCheck
from .severity import highest

Clock = Callable[[], datetime]


def report_timestamp(clock: Optional[Clock] = None) -> str:
    """ISO-8601 UTC timestamp; ``SOURCE_DATE_EPOCH`` pins it for reproducible reports."""

    epoch = os.environ.get("SOURCE_DATE_EPOCH")
    if clock is not None:
        moment = clock()
    elif epoch and epoch.strip().isdigit():
        moment = datetime.fromtimestamp(int(epoch), tz=timezone.utc)
    else:
        moment = datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def sort_key(finding: Finding) -> Tuple[int, str, int, int, int, str]:
    return (
        -finding.severity.rank,
        finding.path,
        finding.line,
        finding.column,
        finding.order,
        finding.rule_id,
    )


class ReportBuilder:
    """Pure function of its inputs: same findings and header give the same report."""

    def consolidate(self, findings: Sequence[Finding]) -> List[Finding]:
        """Raise every finding on a shared snippet to the highest severity among them."""

        groups: Dict[Tuple[str, int, str], List[Finding]] = {}
        for finding in findings:
            groups.setdefault((finding.path, finding.line, finding.snippet), []).append(finding)
        consolidated: List[Finding] = []
        for finding in findings:
            group = groups[(finding.path, finding.line, finding.snippet)]
            top = highest(item.severity for item in group)
            if top.rank > finding.severity.rank:
                source = sorted(item.rule_id for item in group if item.severity == top)[0]
                finding = dataclasses.replace(
                    finding,
                    severity=top,
                    modifiers=finding.modifiers + (f"consolidated:{source}",),
                )
            consolidated.append(finding)
        return consolidated

    def deduplicate(self, findings: Iterable[Finding]) -> List[Finding]:
        """Keep one finding per ``(rule id, path, line, snippet)``, the first in report order."""

        seen = set()
        unique: List[Finding] = []
        for finding in sorted(findings, key=sort_key):
            if finding.key in seen:
                continue
            seen.add(finding.key)
            unique.append(finding)
        return unique

    def build(
        self,
        findings: Iterable[Finding],
        *,
        root: str,
        ruleset_version: str,
        timestamp: Optional[str] = None,
        files_scanned: int = 0,
        skipped: Iterable[SkippedFile] = (),
        degraded: Iterable[DegradedFile] = (),
        unknown_checks: Iterable[UnknownCheck] = (),
        suppressed: int = 0,
        allowlisted: int = 0,
        complete: bool = True,
    ) -> Report:
        ordered = self.deduplicate(self.consolidate(list(findings)))
        summary = Summary()
        for finding in ordered:
            summary.increment(finding)
        return Report(
            root=root,
            timestamp=timestamp or report_timestamp(),
            ruleset_version=ruleset_version,
            files_scanned=files_scanned,
            findings=ordered,
            summary=summary,
            skipped=sorted(set(skipped), key=lambda item: (item.path, item.reason)),
            degraded=sorted(set(degraded), key=lambda item: item.path),
            unknown_checks=sorted(
                set(unknown_checks), key=lambda item: (item.path, item.package, item.version)
            ),
            suppressed=suppressed,
            allowlisted=allowlisted,
            complete=complete,
        )
