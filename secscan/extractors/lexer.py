"""A small comment/string lexer for the C-like, hash and SQL comment families."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from secscan.errors import ExtractionError


@dataclass(frozen=True)
class CommentStyle:
    line: Tuple[str, ...] = ()
    block: Tuple[Tuple[str, str], ...] = ()
    quotes: str = "\"'"
    # Quotes whose literals may span lines (template strings).
    multiline_quotes: str = ""
    # ``#`` starts a comment only at line start or after whitespace.
    hash_needs_space: bool = False


C_STYLE = CommentStyle(line=("//",), block=(("/*", "*/"),), quotes="\"'`", multiline_quotes="`")
PHP_STYLE = CommentStyle(line=("//", "#"), block=(("/*", "*/"),), quotes="\"'")
HASH_STYLE = CommentStyle(line=("#",), quotes="\"'", hash_needs_space=True)
INI_STYLE = CommentStyle(line=("#", ";"), quotes="\"'", hash_needs_space=True)
SQL_STYLE = CommentStyle(line=("--",), block=(("/*", "*/"),), quotes="'\"")
RPG_STYLE = CommentStyle(line=("//", "--"), block=(("/*", "*/"),), quotes="'\"")
MARKUP_STYLE = CommentStyle(block=(("<!--", "-->"), ("/*", "*/")), line=("//",), quotes="\"'`", multiline_quotes="`")

STYLES: Dict[str, CommentStyle] = {
    "javascript": C_STYLE,
    "typescript": C_STYLE,
    "java": C_STYLE,
    "kotlin": C_STYLE,
    "go": C_STYLE,
    "csharp": C_STYLE,
    "c": C_STYLE,
    "rust": C_STYLE,
    "swift": C_STYLE,
    "scala": C_STYLE,
    "vue": MARKUP_STYLE,
    "html": MARKUP_STYLE,
    "php": PHP_STYLE,
    "ruby": HASH_STYLE,
    "shell": HASH_STYLE,
    "yaml": HASH_STYLE,
    "toml": HASH_STYLE,
    "env": HASH_STYLE,
    "dockerfile": HASH_STYLE,
    "requirements": HASH_STYLE,
    "ini": INI_STYLE,
    "sql": SQL_STYLE,
    "rpg": RPG_STYLE,
}


@dataclass(frozen=True)
class Literal:
    start: int
    end: int
    value: str
    quote: str


@dataclass(frozen=True)
class Lexed:
    # Content with comments replaced by spaces; newlines kept.
    code: str
    # ``code`` with literal interiors blanked too, for bracket matching.
    masked: str
    literals: Tuple[Literal, ...]


def lex(content: str, style: CommentStyle) -> Lexed:
    """Strip comments and isolate string literals.

    Raises :class:`ExtractionError` on an unterminated block comment or
    template literal, in which case callers fall back to raw lines.
    """

    code = list(content)
    masked = list(content)
    literals: List[Literal] = []
    index = 0
    length = len(content)

    def blank(start: int, end: int) -> None:
        for position in range(start, end):
            if content[position] != "\n":
                code[position] = " "
                masked[position] = " "

    while index < length:
        char = content[index]

        opened = next((pair for pair in style.block if content.startswith(pair[0], index)), None)
        if opened is not None:
            close = content.find(opened[1], index + len(opened[0]))
            if close < 0:
                raise ExtractionError(f"unterminated block comment at offset {index}")
            blank(index, close + len(opened[1]))
            index = close + len(opened[1])
            continue

        marker = next((item for item in style.line if content.startswith(item, index)), None)
        if marker is not None and not (
            marker == "#" and style.hash_needs_space and index > 0 and not content[index - 1].isspace()
        ) and not (marker == "//" and index > 0 and content[index - 1] == ":"):
            end = content.find("\n", index)
            end = length if end < 0 else end
            blank(index, end)
            index = end
            continue

        if char in style.quotes:
            start = index
            index += 1
            multiline = char in style.multiline_quotes
            while index < length:
                current = content[index]
                if current == "\\":
                    index += 2
                    continue
                if current == char:
                    break
                if current == "\n" and not multiline:
                    break
                index += 1
            if index >= length and multiline:
                raise ExtractionError(f"unterminated {char} literal at offset {start}")
            terminated = index < length and content[index] == char
            end = index + 1 if terminated else index
            value = content[start + 1:index]
            literals.append(Literal(start=start, end=end, value=value, quote=char))
            for position in range(start + 1, index):
                if content[position] != "\n":
                    masked[position] = " "
            index = end
            continue

        index += 1

    return Lexed(code="".join(code), masked="".join(masked), literals=tuple(literals))
