"""Severity tiers for scanner findings."""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class Severity(str, Enum):
    """Enumerate the supported severity tiers, most urgent first."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"

    @property
    def rank(self) -> int:
        """Return an integer ranking; higher means more urgent."""

        ordering = {
            Severity.P0: 2,
            Severity.P1: 1,
            Severity.P2: 0,
        }
        return ordering[self]

    @property
    def label(self) -> str:
        labels = {
            Severity.P0: "build-blocking",
            Severity.P1: "merge-blocking",
            Severity.P2: "backlog-tracked",
        }
        return labels[self]

    def escalate(self, steps: int = 1) -> "Severity":
        """Return the tier ``steps`` levels more urgent, capped at P0."""

        target = min(self.rank + steps, Severity.P0.rank)
        return _BY_RANK[target]

    @classmethod
    def parse(cls, value: object) -> "Severity":
        """Parse ``P0``/``p1``/``Severity.P2`` style values, raising ``ValueError``."""

        if isinstance(value, Severity):
            return value
        text = str(value).strip().upper()
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"invalid severity {value!r}; expected one of P0, P1, P2") from None


_BY_RANK = {severity.rank: severity for severity in Severity}

SEVERITY_ORDER = (Severity.P0, Severity.P1, Severity.P2)


def highest(severities: Iterable[Severity]) -> Severity:
    """Return the most urgent tier of ``severities`` (P2 when empty)."""

    result = Severity.P2
    for severity in severities:
        if severity.rank > result.rank:
            result = severity
    return result
