"""Source code helper utilities shared by extractors and predicates."""

from __future__ import annotations

import re
from typing import List, Optional, Set

IDENTIFIER_RE = re.compile(r"\$?[A-Za-z_][A-Za-z0-9_]*")
SIMPLE_NAME_RE = re.compile(r"\$?[A-Za-z_][A-Za-z0-9_]*\Z")
KEYWORD_ARG_RE = re.compile(r"\A\s*([A-Za-z_][A-Za-z0-9_]*)\s*=(?!=)\s*(.*)\Z", re.DOTALL)
STRING_LITERAL_RE = re.compile(
    r"""\A\s*[rRbBuU]{0,2}(?:"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*'|`[^`$]*`)\s*\Z"""
)
CONSTANT_RE = re.compile(r"\A\s*(?:-?\d[\d_.xXa-fA-F]*|None|True|False|null|nil|true|false|NULL)\s*\Z")

_OPEN = "([{"
_CLOSE = ")]}"
_QUOTES = "\"'`"

NON_IDENTIFIERS = frozenset(
    {
        "and", "or", "not", "in", "is", "if", "else", "for", "None", "True", "False",
        "null", "true", "false", "new", "this", "self", "return", "await", "lambda",
    }
)


def split_top_level(expression: str, separator: str) -> List[str]:
    """Split ``expression`` on ``separator`` outside quotes and brackets."""

    parts: List[str] = []
    depth = 0
    quote = ""
    start = 0
    index = 0
    length = len(expression)
    width = len(separator)
    while index < length:
        char = expression[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = ""
        elif char in _QUOTES:
            quote = char
        elif char in _OPEN:
            depth += 1
        elif char in _CLOSE:
            depth = max(depth - 1, 0)
        elif depth == 0 and expression.startswith(separator, index):
            parts.append(expression[start:index])
            index += width
            start = index
            continue
        index += 1
    parts.append(expression[start:])
    return parts


def is_plain_literal(expression: str) -> bool:
    """True for a single string literal or constant without interpolation."""

    text = expression.strip()
    if not text:
        return True
    if CONSTANT_RE.match(text):
        return True
    if not STRING_LITERAL_RE.match(text):
        return False
    # PHP/Ruby/shell double-quoted interpolation is not plain.
    body = text.lstrip("rRbBuU")
    if body.startswith('"') and re.search(r"\$\{?[A-Za-z_]|#\{", body):
        return False
    return True


def strip_keyword(argument: str) -> str:
    """Return the value part of ``name=value`` arguments."""

    match = KEYWORD_ARG_RE.match(argument)
    if match:
        return match.group(2).strip()
    return argument.strip()


def keyword_name(argument: str) -> Optional[str]:
    match = KEYWORD_ARG_RE.match(argument)
    return match.group(1) if match else None


INTERPOLATION_RE = re.compile(r"\$?\{([^{}]*)\}|\$([A-Za-z_]\w*)")


def _interpolated(match: "re.Match[str]") -> str:
    """Keep only the expressions interpolated into a string literal."""

    pieces = [group for pair in INTERPOLATION_RE.findall(match.group(0)) for group in pair if group]
    return " " + " ; ".join(pieces) + " "


def identifiers(expression: str) -> List[str]:
    """Identifiers referenced in code or interpolated into strings, in order, deduplicated."""

    stripped = re.sub(r"""(["'])(?:(?!\1)[^\\]|\\.)*\1""", _interpolated, expression)
    seen: Set[str] = set()
    result: List[str] = []
    for match in IDENTIFIER_RE.finditer(stripped):
        start = match.start()
        if start > 0 and stripped[start - 1] in ".>:":
            continue
        name = match.group(0)
        if name in NON_IDENTIFIERS or name in seen:
            continue
        seen.add(name)
        result.append(name)
    return result

