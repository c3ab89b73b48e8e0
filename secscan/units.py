"""Scan units: normalized fragments of a file that rules match against."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class UnitKind(str, Enum):
    FILE = "file"
    LINE = "line"
    LITERAL = "literal"
    CALL = "call"
    DEPENDENCY = "dependency"


@dataclass(frozen=True)
class Span:
    """1-based location on the original source; end column is exclusive."""

    line: int
    column: int
    end_line: int
    end_column: int

    @classmethod
    def of_line(cls, line: int, text: str) -> "Span":
        return cls(line, 1, line, len(text) + 1)


@dataclass(frozen=True)
class ScanUnit:
    """A normalized fragment of one file.

    ``text`` is what patterns run against (comments blanked, columns kept);
    ``source`` is the verbatim original fragment quoted in findings.
    """

    kind: UnitKind
    path: str
    file_kind: str
    text: str
    source: str
    span: Span
    function: Optional[str] = None
    # Assigned name for literals, callee for calls, package for dependencies.
    name: Optional[str] = None
    arguments: Tuple[str, ...] = ()
    version: Optional[str] = None
    ecosystem: Optional[str] = None
    # One-level assignments visible from this unit: (identifier, right-hand side).
    bindings: Tuple[Tuple[str, str], ...] = ()
    external_names: FrozenSet[str] = field(default_factory=frozenset)
    unreachable: bool = False
    in_doc_block: bool = False

    def binding(self, identifier: str) -> Optional[str]:
        for name, value in self.bindings:
            if name == identifier:
                return value
        return None
