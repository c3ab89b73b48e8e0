"""Apply rules to scan units, producing raw candidate matches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple

from .rules import structural
from .rules.model import PathPattern, RegexPattern, Rule, StructuralPattern
from .taint import TaintContext
from .units import ScanUnit, Span, UnitKind

if TYPE_CHECKING:  # pragma: no cover
    from .oracle import KnownVulnerability

EXTERNAL_INPUT = "external-input"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class Match:
    """A rule hit on one unit, before reachability and classification."""

    rule: Rule
    unit: ScanUnit
    span: Span
    snippet: str
    matched: str
    subject: Optional[str] = None
    # Position of the offending argument among the call's arguments.
    argument_index: Optional[int] = None
    variable: Optional[str] = None
    resolved: Optional[str] = None
    # Named regex groups, available to remediation templates.
    groups: Tuple[Tuple[str, str], ...] = ()
    advisory: Optional["KnownVulnerability"] = None
    taint: Optional[TaintContext] = None
    reachability: str = UNKNOWN

    @property
    def path(self) -> str:
        return self.unit.path

    def group(self, name: str) -> Optional[str]:
        for key, value in self.groups:
            if key == name:
                return value
        return None


def snippet_of(unit: ScanUnit) -> str:
    return unit.source.strip()


class MatchEngine:
    """Stateless matcher; safe to share between worker threads."""

    def match(self, unit: ScanUnit, rules: Iterable[Rule]) -> List[Match]:
        matches: List[Match] = []
        for rule in rules:
            pattern = rule.pattern
            if unit.kind not in pattern.units:
                continue
            if isinstance(pattern, RegexPattern):
                matches.extend(self._regex(rule, pattern, unit))
            elif isinstance(pattern, StructuralPattern):
                matches.extend(self._structural(rule, pattern, unit))
            elif isinstance(pattern, PathPattern):
                if pattern.matches(unit.path):
                    matches.append(Match(rule=rule, unit=unit, span=unit.span, snippet=unit.path, matched=unit.path))
        return matches

    def match_units(self, units: Sequence[ScanUnit], rules: Iterable[Rule]) -> List[Match]:
        """Apply ``rules`` to every unit of one file, in unit order."""

        rules = tuple(rules)
        matches: List[Match] = []
        for unit in units:
            matches.extend(self.match(unit, rules))
        return matches

    def _regex(self, rule: Rule, pattern: RegexPattern, unit: ScanUnit) -> List[Match]:
        if pattern.exclude is not None and pattern.exclude.search(unit.text):
            return []
        found: List[Match] = []
        for hit in pattern.regex.finditer(unit.text):
            if not hit.group(0):
                continue
            if unit.kind == UnitKind.LINE:
                span = Span(
                    unit.span.line,
                    unit.span.column + hit.start(),
                    unit.span.line,
                    unit.span.column + hit.end(),
                )
            else:
                span = unit.span
            groups = tuple((key, value) for key, value in hit.groupdict().items() if value is not None)
            found.append(
                Match(
                    rule=rule,
                    unit=unit,
                    span=span,
                    snippet=snippet_of(unit),
                    matched=hit.group(0),
                    groups=groups,
                )
            )
        return found

    def _structural(self, rule: Rule, pattern: StructuralPattern, unit: ScanUnit) -> List[Match]:
        found: List[Match] = []
        for hit in structural.run(pattern.predicate, unit, pattern.params):
            found.append(
                Match(
                    rule=rule,
                    unit=unit,
                    span=unit.span,
                    snippet=snippet_of(unit),
                    matched=unit.text,
                    subject=hit.subject,
                    argument_index=hit.argument_index,
                    variable=hit.variable,
                    resolved=hit.resolved,
                )
            )
        return found
