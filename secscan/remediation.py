"""Remediation templates and concrete "after" rewrites.

Rewrites only produce suggested text for the report; scanned files are never
modified.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .engine import Match
from .utils.code import is_plain_literal, split_top_level, strip_keyword

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
STRING_PREFIX_RE = re.compile(r"\A[rRbBuU]{0,2}")
FSTRING_RE = re.compile(r"\A(?:[rR]?[fF]|[fF][rR])([\"'])(.*)\1\Z", re.DOTALL)
FORMAT_CALL_RE = re.compile(r"\A([\"'])(.*)\1\s*\.format\s*\((.*)\)\Z", re.DOTALL)
TEMPLATE_RE = re.compile(r"\A`(.*)`\Z", re.DOTALL)
QUOTED_VALUE_RE = re.compile(r"""(?P<quote>["'`])(?P<value>(?:(?!(?P=quote))[^\\]|\\.)*)(?P=quote)""")
QUOTED_PLACEHOLDER_RE = re.compile(r"(['\"])(%s|\?|\$\d+)\1")


def render(template: str, values: Mapping[str, object]) -> str:
    """Fill ``{name}`` placeholders; unknown names and other braces stay verbatim."""

    def replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in values and values[key] is not None:
            return str(values[key])
        return match.group(0)

    return PLACEHOLDER_RE.sub(replace, template)


def env_var_name(name: Optional[str]) -> str:
    if not name:
        return "SECRET"
    cleaned = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name.lstrip("$"))
    cleaned = re.sub(r"[^A-Za-z0-9]+", "_", cleaned).strip("_")
    return cleaned.upper() or "SECRET"


_ENV_LOOKUPS: Dict[str, str] = {
    "python": 'os.environ["{var}"]',
    "javascript": "process.env.{var}",
    "typescript": "process.env.{var}",
    "vue": "process.env.{var}",
    "php": "getenv('{var}')",
    "ruby": 'ENV["{var}"]',
    "go": 'os.Getenv("{var}")',
    "java": 'System.getenv("{var}")',
    "kotlin": 'System.getenv("{var}")',
    "scala": 'sys.env("{var}")',
    "csharp": 'Environment.GetEnvironmentVariable("{var}")',
    "rust": 'std::env::var("{var}")?',
    "shell": '"${var_braced}"',
    "dockerfile": '"${var_braced}"',
    "yaml": '"${var_braced}"',
    "env": "# set {var} in the deployment environment",
}


def env_lookup(match: Match) -> Optional[str]:
    """Replace the quoted secret on the matched line with an environment lookup."""

    name = match.group("name") or match.unit.name
    variable = env_var_name(name)
    template = _ENV_LOOKUPS.get(match.unit.file_kind, 'os.environ["{var}"]')
    lookup = template.replace("{var_braced}", "{" + variable + "}").replace("{var}", variable)
    snippet = match.snippet
    if match.unit.file_kind == "env":
        return lookup
    value = match.group("value")
    for quoted in QUOTED_VALUE_RE.finditer(snippet):
        if value is None or quoted.group("value") == value:
            return snippet[: quoted.start()] + lookup + snippet[quoted.end():]
    return None


def _unquote(part: str) -> Optional[str]:
    text = STRING_PREFIX_RE.sub("", part.strip(), count=1)
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]
    return None


def _placeholder(style: str, position: int) -> str:
    if style == "python":
        return "%s"
    if style in ("go", "numbered"):
        return f"${position}"
    return "?"


def _parameters(file_kind: str, params: List[str]) -> str:
    if file_kind == "python":
        return "(" + ", ".join(params) + ("," if len(params) == 1 else "") + ")"
    if file_kind == "php":
        return "[" + ", ".join(params) + "]"
    if file_kind in ("go", "java", "csharp", "kotlin"):
        return ", ".join(params)
    return "[" + ", ".join(params) + "]"


def _split_query(expression: str, file_kind: str, style: Optional[str] = None) -> Optional[Tuple[str, List[str]]]:
    """Return the query text with placeholders and its bound parameters."""

    expression = expression.strip()
    params: List[str] = []

    def slot(value: str) -> str:
        params.append(value.strip())
        return _placeholder(style or file_kind, len(params))

    fstring = FSTRING_RE.match(expression)
    if fstring:
        query = re.sub(r"\{([^{}]+)\}", lambda found: slot(found.group(1).split("!")[0].split(":")[0]), fstring.group(2))
        return query, params

    formatted = FORMAT_CALL_RE.match(expression)
    if formatted:
        arguments = [strip_keyword(arg) for arg in split_top_level(formatted.group(3), ",") if arg.strip()]
        values = iter(arguments)
        query = re.sub(r"\{[^{}]*\}", lambda found: slot(next(values, "None")), formatted.group(2))
        return query, params

    template = TEMPLATE_RE.match(expression)
    if template:
        query = re.sub(r"\$\{([^{}]+)\}", lambda found: slot(found.group(1)), template.group(1))
        return query, params

    percent = split_top_level(expression, "%")
    if len(percent) == 2 and _unquote(percent[0]) is not None:
        right = percent[1].strip()
        if right.startswith("(") and right.endswith(")"):
            values = [part for part in split_top_level(right[1:-1], ",") if part.strip()]
        else:
            values = [right]
        iterator = iter(values)
        query = re.sub(r"%[sd]", lambda found: slot(next(iterator, "None")), _unquote(percent[0]) or "")
        return query, params

    separator = "." if file_kind == "php" else "+"
    parts = split_top_level(expression, separator)
    if len(parts) < 2:
        return None
    pieces: List[str] = []
    for part in parts:
        literal = _unquote(part)
        if literal is not None and is_plain_literal(part):
            pieces.append(literal)
        else:
            pieces.append(slot(part))
    return "".join(pieces), params


# PHP query functions without bound parameters, and their parameterized forms.
PHP_PARAMETERIZED_CALLS: Dict[str, Tuple[str, str]] = {
    "mysqli_query": ("mysqli_execute_query", "?"),
    "pg_query": ("pg_query_params", "numbered"),
}
PHP_METHOD_RE = re.compile(r"\A(?P<receiver>.+)->(?:query|exec|prepare)\Z", re.IGNORECASE)


def _call_arguments(match: Match, quoted: str, params: str) -> str:
    """The call's arguments with the query replaced and the parameters bound right after it."""

    arguments = list(match.unit.arguments)
    index = match.argument_index
    if index is None or index >= len(arguments):
        return f"{quoted}, {params}"
    arguments[index] = quoted
    arguments.insert(index + 1, params)
    return ", ".join(arguments)


def _quote(query: str) -> str:
    # Bound values are quoted by the driver.
    query = QUOTED_PLACEHOLDER_RE.sub(r"\2", query)
    return '"' + re.sub(r'(?<!\\)"', r'\\"', query) + '"'


def _parameterize_php(match: Match) -> Optional[str]:
    callee = " ".join((match.unit.name or "").split())
    replacement = PHP_PARAMETERIZED_CALLS.get(callee.lower())
    method = PHP_METHOD_RE.match(callee)
    if replacement is None and method is None:
        return None
    style = replacement[1] if replacement else "?"
    split = _split_query(match.subject or "", "php", style)
    if split is None or not split[1]:
        return None
    query, params = split
    bound = _parameters("php", params)
    if replacement is not None:
        return f"{replacement[0]}({_call_arguments(match, _quote(query), bound)})"
    receiver = method.group("receiver")
    return f"$stmt = {receiver}->prepare({_quote(query)}); $stmt->execute({bound});"


def parameterize_sql(match: Match) -> Optional[str]:
    """Rewrite a built SQL string into a placeholder query plus bound parameters.

    Arguments other than the query stay in place. PHP calls that cannot bind
    parameters are rewritten to their prepared form, or left to the template.
    """

    if not match.subject or not match.unit.name:
        return None
    if match.unit.file_kind == "php":
        return _parameterize_php(match)
    split = _split_query(match.subject, match.unit.file_kind)
    if split is None:
        return None
    query, params = split
    if not params:
        return None
    arguments = _call_arguments(match, _quote(query), _parameters(match.unit.file_kind, params))
    return f"{match.unit.name}({arguments})"


Rewrite = Callable[[Match], Optional[str]]

REWRITES: Dict[str, Rewrite] = {
    "parameterize_sql": parameterize_sql,
    "env_lookup": env_lookup,
}
