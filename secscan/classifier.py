"""Final severity computation and remediation rendering."""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from .engine import Match
from .remediation import REWRITES, render
from .result import Finding, Fix
from .rules.model import Category
from .severity import Severity, highest
from .taint import TaintContext, assess
from .utils.code import identifiers

logger = logging.getLogger(__name__)

DEFAULT_PII_TERMS: Tuple[str, ...] = (
    "session",
    "ssn",
    "password",
    "passwd",
    "balance",
    "token",
    "secret",
    "card",
    "cvv",
    "dob",
)
TAINT_ESCALATED = frozenset({Category.INJECTION, Category.XSS, Category.PATH_TRAVERSAL})
CRITICAL_ADVISORY = frozenset({"critical", "high"})
ATTRIBUTE_RE = re.compile(r"(?:\.|->)([A-Za-z_]\w*)")


class Classifier:
    """Turn a reachable match into a finding. The declared tier is a floor."""

    def __init__(self, pii_terms: Iterable[str] = DEFAULT_PII_TERMS) -> None:
        self.pii_terms = tuple(term.lower() for term in pii_terms)

    def pii_names(self, expression: str) -> List[str]:
        names = [name.lstrip("$") for name in identifiers(expression)]
        names += ATTRIBUTE_RE.findall(expression)
        return [name for name in names if any(term in name.lower() for term in self.pii_terms)]

    def severity(self, match: Match, taint: TaintContext) -> Tuple[Severity, Tuple[str, ...]]:
        rule = match.rule
        candidates = [rule.severity]
        modifiers: List[str] = []
        if taint.tainted:
            modifiers.append("external-input")
            if rule.category in TAINT_ESCALATED:
                candidates.append(Severity.P0)
        if rule.category == Category.LOGGING:
            logged = self.pii_names(match.subject or match.unit.text)
            if logged:
                modifiers.append("pii:" + ",".join(sorted(set(logged))))
                candidates.append(rule.severity.escalate())
        if rule.category == Category.DEPENDENCY and match.advisory is not None:
            level = match.advisory.severity.lower()
            modifiers.append(f"advisory:{level}")
            if level in CRITICAL_ADVISORY:
                candidates.append(Severity.P0)
        return highest(candidates), tuple(modifiers)

    def values(self, match: Match, taint: TaintContext) -> Dict[str, object]:
        unit = match.unit
        name = match.group("name") or unit.name or match.variable or ""
        values: Dict[str, object] = {
            "snippet": match.snippet,
            "matched": match.matched,
            "path": unit.path,
            "line": match.span.line,
            "name": name,
            "NAME": name.lstrip("$").upper(),
            "callee": unit.name or "",
            "function": unit.function or "module level",
            "subject": match.subject or match.matched,
            "variable": match.variable or "",
            "sources": ", ".join(taint.sources) or "none found",
        }
        values.update(dict(match.groups))
        if match.advisory is not None:
            advisory = match.advisory
            values.update(
                package=advisory.package,
                version=advisory.version,
                advisory_id=advisory.id,
                advisory_summary=advisory.summary,
                advisory_severity=advisory.severity,
                fixed_version=advisory.fixed_version or "a patched release",
            )
        return values

    def classify(self, match: Match, taint: Optional[TaintContext] = None) -> Finding:
        if taint is None:
            taint = match.taint or assess(match.unit)
        rule = match.rule
        severity, modifiers = self.severity(match, taint)
        values = self.values(match, taint)
        remediation = rule.remediation

        after: Optional[str] = None
        if remediation.rewrite:
            after = REWRITES[remediation.rewrite](match)
            if after is None:
                logger.debug("rewrite %s not applicable to %s:%d", remediation.rewrite, match.path, match.span.line)
        if after is None:
            after = render(remediation.fix, values) if remediation.fix else "Review and remove the flagged construct."

        return Finding(
            rule_id=rule.id,
            title=rule.title,
            category=rule.category.value,
            path=match.path,
            line=match.span.line,
            column=match.span.column,
            end_line=match.span.end_line,
            end_column=match.span.end_column,
            snippet=match.snippet,
            severity=severity,
            declared_severity=rule.severity,
            what=render(remediation.what, values),
            risk=render(remediation.risk, values),
            fix=Fix(before=match.snippet, after=after),
            blast_radius=render(remediation.blast_radius, values),
            modifiers=modifiers,
            reachability=match.reachability,
            order=rule.order,
        )
