"""Normalizer for languages handled by the generic lexer."""

from __future__ import annotations

import re
from typing import List, Optional, Set, Tuple

from secscan.units import ScanUnit, Span, UnitKind
from secscan.utils.code import split_top_level

from .base import BindingIndex, LineIndex, line_functions, split_lines
from .lexer import CommentStyle, lex

CALL_RE = re.compile(r"(?<![\w$])((?:new\s+)?[A-Za-z_$][\w$]*(?:\s*(?:\.|->|::)\s*[A-Za-z_$][\w$]*)*)\s*\(")
NOT_CALLEES = frozenset(
    {
        "if", "for", "while", "switch", "catch", "function", "return", "sizeof", "elif", "elseif",
        "foreach", "typeof", "fn", "func", "def", "until", "unless", "and", "or", "not", "in",
    }
)
FUNCTION_HEADER_RES = (
    re.compile(r"\bfunction\s*\*?\s*([A-Za-z_$][\w$]*)\s*\("),
    re.compile(r"\b([A-Za-z_$][\w$]*)\s*[:=]\s*(?:async\s+)?(?:function\b|\([^()]*\)\s*=>|[A-Za-z_$][\w$]*\s*=>)"),
    re.compile(r"\bfunc\s+(?:\([^)]*\)\s*)?([A-Za-z_]\w*)\s*\("),
    re.compile(r"\bdef\s+(?:self\.)?([A-Za-z_]\w*[?!]?)"),
    re.compile(r"^\s*(?:(?:public|private|protected|static|final|async|override|virtual|internal)\s+)+[\w<>\[\],.?\s]*?\b([A-Za-z_]\w*)\s*\([^;]*$"),
    re.compile(r"^\s*([A-Za-z_][\w-]*)\s*\(\)\s*\{"),
)
ROUTE_HEADER_RE = re.compile(
    r"\b(?:app|router|server|api)\s*\.\s*(get|post|put|patch|delete|all|use)\s*\(\s*(['\"`])([^'\"`]*)\2"
)
ASSIGNMENT_RE = re.compile(
    r"^\s*(?:(?:var|let|const|final|val|my|local|export|readonly|private|public|protected|static)\s+)*"
    r"(?:[A-Za-z_][\w<>\[\]]*\s+)?(\$?[A-Za-z_]\w*)\s*(?::=|\.=|\+=|=)(?!=)\s*(.+?)\s*;?\s*$"
)
DEAD_BRANCH_RE = re.compile(r"\bif\s*\(\s*(?:false|0|FALSE|False)\s*\)\s*\{")


def _matching(masked: str, open_index: int, opener: str, closer: str) -> Optional[int]:
    depth = 0
    for index in range(open_index, len(masked)):
        char = masked[index]
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
    return None


def _functions(masked_lines: List[str]) -> List[Tuple[int, int, str]]:
    """Function headers; each scope runs until the next header."""

    headers: List[Tuple[int, str]] = []
    for number, line in enumerate(masked_lines, start=1):
        route = ROUTE_HEADER_RE.search(line)
        if route:
            headers.append((number, f"route {route.group(1).upper()} {route.group(3)}"))
            continue
        for pattern in FUNCTION_HEADER_RES:
            match = pattern.search(line)
            if match and match.group(1) not in NOT_CALLEES:
                headers.append((number, match.group(1)))
                break
    ranges = []
    for position, (start, name) in enumerate(headers):
        end = headers[position + 1][0] - 1 if position + 1 < len(headers) else len(masked_lines)
        ranges.append((start, end, name))
    return ranges


def extract_clike(path: str, content: str, file_kind: str, style: CommentStyle) -> List[ScanUnit]:
    lexed = lex(content, style)
    index = LineIndex(content)
    lines = split_lines(content)
    code_lines = split_lines(lexed.code)
    masked_lines = split_lines(lexed.masked)
    owner = line_functions(len(lines), _functions(masked_lines))

    def function_at(line: int) -> Optional[str]:
        return owner[line - 1] if 0 < line <= len(owner) else None

    dead: Set[int] = set()
    for match in DEAD_BRANCH_RE.finditer(lexed.masked):
        brace = match.end() - 1
        close = _matching(lexed.masked, brace, "{", "}")
        if close is not None:
            first, _ = index.position(brace)
            last, _ = index.position(close)
            dead.update(range(first, last + 1))

    bindings = BindingIndex()
    for number, line in enumerate(code_lines, start=1):
        match = ASSIGNMENT_RE.match(line)
        if not match:
            continue
        name, value = match.group(1), match.group(2)
        operator = line[match.end(1):match.start(2)].strip()
        if operator in (".=", "+="):
            previous = bindings.latest(function_at(number), number, name)
            joiner = " . " if operator == ".=" else " + "
            value = f"{previous or name}{joiner}{value}"
        bindings.add(function_at(number), number, name, value)

    units: List[ScanUnit] = []
    for number, text in enumerate(code_lines, start=1):
        if not text.strip():
            continue
        function = function_at(number)
        units.append(
            ScanUnit(
                kind=UnitKind.LINE,
                path=path,
                file_kind=file_kind,
                text=text.rstrip(),
                source=lines[number - 1],
                span=Span.of_line(number, lines[number - 1]),
                function=function,
                bindings=bindings.visible(function, number, text),
                unreachable=number in dead,
            )
        )

    for literal in lexed.literals:
        if not literal.value:
            continue
        line, _ = index.position(literal.start)
        units.append(
            ScanUnit(
                kind=UnitKind.LITERAL,
                path=path,
                file_kind=file_kind,
                text=literal.value,
                source=content[literal.start:literal.end],
                span=index.span(literal.start, literal.end),
                function=function_at(line),
                name=_assigned_name(content, literal.start),
                unreachable=line in dead,
            )
        )

    for match in CALL_RE.finditer(lexed.masked):
        callee = " ".join(match.group(1).split())
        if callee in NOT_CALLEES or callee.split(" ")[-1] in NOT_CALLEES:
            continue
        open_paren = match.end() - 1
        close = _matching(lexed.masked, open_paren, "(", ")")
        if close is None:
            continue
        line, _ = index.position(match.start())
        text = lexed.code[match.start():close + 1]
        inner = lexed.code[open_paren + 1:close]
        arguments = tuple(part.strip() for part in split_top_level(inner, ",") if part.strip())
        function = function_at(line)
        units.append(
            ScanUnit(
                kind=UnitKind.CALL,
                path=path,
                file_kind=file_kind,
                text=text,
                source=content[match.start():close + 1],
                span=index.span(match.start(), close + 1),
                function=function,
                name=callee.replace(" ", "") if not callee.startswith("new ") else callee,
                arguments=arguments,
                bindings=bindings.visible(function, line, text),
                unreachable=line in dead,
            )
        )
    return units


_ASSIGNED_BEFORE_RE = re.compile(r"[\"']?(\$?[A-Za-z_][\w.-]*)[\"']?\s*(?::=|=>|=|:)\s*$")


def _assigned_name(content: str, start: int) -> Optional[str]:
    line_start = content.rfind("\n", 0, start) + 1
    match = _ASSIGNED_BEFORE_RE.search(content[line_start:start])
    return match.group(1) if match else None
