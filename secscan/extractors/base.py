"""Shared pieces for the per-kind extractors."""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from secscan.units import ScanUnit, Span, UnitKind
from secscan.utils.code import identifiers


class LineIndex:
    """Map character offsets in a text to 1-based (line, column)."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        for index, char in enumerate(text):
            if char == "\n":
                self._starts.append(index + 1)

    def position(self, offset: int) -> Tuple[int, int]:
        line = bisect_right(self._starts, offset)
        return line, offset - self._starts[line - 1] + 1

    def span(self, start: int, end: int) -> Span:
        line, column = self.position(start)
        end_line, end_column = self.position(end)
        return Span(line, column, end_line, end_column)


class BindingIndex:
    """Assignments per function scope, for one-level backward resolution."""

    def __init__(self) -> None:
        # (function, name) -> assignment lines in ascending order, and their values.
        self._lines: Dict[Tuple[Optional[str], str], List[int]] = {}
        self._values: Dict[Tuple[Optional[str], str], List[str]] = {}

    def add(self, function: Optional[str], line: int, name: str, value: str) -> None:
        key = (function, name)
        lines = self._lines.setdefault(key, [])
        values = self._values.setdefault(key, [])
        # Before equal lines, so the first assignment on a line wins lookups.
        position = bisect_left(lines, line)
        lines.insert(position, line)
        values.insert(position, " ".join(value.split()))

    def latest(self, function: Optional[str], line: int, name: str) -> Optional[str]:
        """Most recent value assigned to ``name`` strictly before ``line``."""

        key = (function, name)
        lines = self._lines.get(key)
        if not lines:
            return None
        position = bisect_left(lines, line)
        if position == 0:
            return None
        return self._values[key][position - 1]

    def visible(self, function: Optional[str], line: int, text: str) -> Tuple[Tuple[str, str], ...]:
        found = []
        for name in identifiers(text):
            value = self.latest(function, line, name)
            if value is not None:
                found.append((name, value))
        return tuple(found)


def file_unit(path: str, file_kind: str) -> ScanUnit:
    return ScanUnit(
        kind=UnitKind.FILE,
        path=path,
        file_kind=file_kind,
        text=path,
        source=path,
        span=Span(1, 1, 1, 1),
    )


def raw_line_units(
    path: str,
    file_kind: str,
    content: str,
    in_doc_block: bool = False,
) -> List[ScanUnit]:
    """One unit per non-blank line, unnormalized."""

    units = []
    for number, line in enumerate(split_lines(content), start=1):
        if not line.strip():
            continue
        units.append(
            ScanUnit(
                kind=UnitKind.LINE,
                path=path,
                file_kind=file_kind,
                text=line,
                source=line,
                span=Span.of_line(number, line),
                in_doc_block=in_doc_block,
            )
        )
    return units


def line_functions(line_count: int, ranges: Iterable[Tuple[int, int, str]]) -> List[Optional[str]]:
    """Innermost enclosing function per line (index 0 is line 1)."""

    result: List[Optional[str]] = [None] * line_count
    for start, end, name in sorted(ranges, key=lambda item: (item[0], -item[1])):
        for line in range(max(start, 1), min(end, line_count) + 1):
            result[line - 1] = name
    return result


EMPTY_NAMES: FrozenSet[str] = frozenset()


def split_lines(content: str) -> List[str]:
    """Split on ``\\n`` only, matching how ``ast`` and ``tokenize`` number lines."""

    lines = [line.rstrip("\r") for line in content.split("\n")]
    if lines and lines[-1] == "":
        lines.pop()
    return lines
