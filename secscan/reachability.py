"""Suppress matches that cannot matter; annotate the rest with taint.

Only matches proven irrelevant are dropped: statically dead code,
documentation and designated fixture directories. Everything else is
kept, because indeterminate reachability must never hide a finding.
"""

from __future__ import annotations

import dataclasses
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .engine import EXTERNAL_INPUT, UNKNOWN, Match
from .taint import TaintContext, assess

DEFAULT_FIXTURE_DIRS: Tuple[str, ...] = (
    "fixtures",
    "__fixtures__",
    "testdata",
    "test_data",
    "test-fixtures",
    "test_fixtures",
)

TaintOf = Callable[[Match], TaintContext]


def default_taint(match: Match) -> TaintContext:
    """Default taint assessment for a match."""

    if match.advisory is not None:
        return TaintContext.clean()
    if match.variable:
        return assess(match.unit, match.variable)
    if match.subject:
        return assess(match.unit, match.subject)
    return assess(match.unit)


class ReachabilityFilter:
    def __init__(self, fixture_dirs: Sequence[str] = DEFAULT_FIXTURE_DIRS) -> None:
        self.fixture_dirs = frozenset(fixture_dirs)

    def in_fixture_dir(self, relative_path: str) -> bool:
        directories = relative_path.split("/")[:-1]
        return any(part in self.fixture_dirs for part in directories)

    def suppression_reason(self, match: Match) -> Optional[str]:
        unit = match.unit
        rule = match.rule
        if unit.unreachable:
            return "unreachable"
        if unit.in_doc_block and not rule.scan_docs:
            return "documentation"
        if not rule.scan_fixtures and self.in_fixture_dir(unit.path):
            return "fixture"
        return None

    def filter(self, matches: Iterable[Match], taint_of: Optional[TaintOf] = None) -> List[Match]:
        kept, _ = self.partition(matches, taint_of)
        return kept

    def partition(
        self,
        matches: Iterable[Match],
        taint_of: Optional[TaintOf] = None,
    ) -> Tuple[List[Match], List[Tuple[Match, str]]]:
        """Split ``matches`` into annotated survivors and ``(match, reason)`` drops."""

        assess_taint = taint_of or default_taint
        kept: List[Match] = []
        dropped: List[Tuple[Match, str]] = []
        for match in matches:
            reason = self.suppression_reason(match)
            if reason is not None:
                dropped.append((match, reason))
                continue
            taint = assess_taint(match)
            kept.append(
                dataclasses.replace(
                    match,
                    taint=taint,
                    reachability=EXTERNAL_INPUT if taint.tainted else UNKNOWN,
                )
            )
        return kept, dropped
