"""Structural predicates over call units.

Each predicate receives a call :class:`~secscan.units.ScanUnit` and its bound
parameters and yields :class:`StructuralHit` objects. Identifier arguments are
resolved through at most one assignment in the same function
(``unit.bindings``) before a predicate gives up on them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

from secscan.taint import assess
from secscan.units import ScanUnit
from secscan.utils.code import (
    SIMPLE_NAME_RE,
    identifiers,
    is_plain_literal,
    keyword_name,
    split_top_level,
    strip_keyword,
)

SQL_TEXT_RE = re.compile(
    r"\b(?:select\b[\s\S]+?\bfrom|insert\s+into|update\s+[\w.`\"\[\]]+\s+set|delete\s+from"
    r"|drop\s+table|alter\s+table|create\s+table|replace\s+into|merge\s+into|truncate\s+table)\b",
    re.IGNORECASE,
)
FSTRING_RE = re.compile(r"\A\s*(?:[rR]?[fF]|[fF][rR])[\"']")
FORMAT_CALL_RE = re.compile(r"[\"']\s*\.format\s*\(")
PHP_CONCAT_RE = re.compile(r"[\"']\s*\.\s*\$|(?:\$[\w\]\['\"]+|\))\s*\.\s*[\"']")
DOUBLE_QUOTE_INTERPOLATION_RE = re.compile(r"\"[^\"]*(?:\$\{?[A-Za-z_]|#\{)")
TEMPLATE_LITERAL_RE = re.compile(r"`[^`]*\$\{")
SPRINTF_RE = re.compile(r"\b(?:String\.format|fmt\.Sprintf|sprintf|format)\s*\(")


@dataclass(frozen=True)
class StructuralHit:
    """What a predicate found inside a call unit."""

    # Argument (or resolved right-hand side) that taint is assessed on.
    subject: str
    argument_index: int
    variable: Optional[str] = None
    resolved: Optional[str] = None


Predicate = Callable[[ScanUnit, Any], Iterator[StructuralHit]]

_PREDICATES: Dict[str, Tuple[Callable[[Mapping[str, Any]], Any], Predicate]] = {}


def predicate(name: str, binder: Callable[[Mapping[str, Any]], Any]):
    """Register a predicate with the function that validates its parameters."""

    def decorator(func: Predicate) -> Predicate:
        _PREDICATES[name] = (binder, func)
        return func

    return decorator


def known_predicates() -> Tuple[str, ...]:
    return tuple(sorted(_PREDICATES))


def bind(name: str, params: Mapping[str, Any]) -> Any:
    """Validate ``params`` for predicate ``name``; raises ``ValueError``."""

    if name not in _PREDICATES:
        raise ValueError(f"unknown structural predicate {name!r}; known: {', '.join(known_predicates())}")
    binder, _ = _PREDICATES[name]
    return binder(params)


def run(name: str, unit: ScanUnit, params: Any) -> Iterator[StructuralHit]:
    _, func = _PREDICATES[name]
    return func(unit, params)


def _compile(params: Mapping[str, Any], key: str, required: bool = True) -> Optional[re.Pattern]:
    value = params.get(key)
    if value is None:
        if required:
            raise ValueError(f"missing parameter {key!r}")
        return None
    if not isinstance(value, str):
        raise ValueError(f"parameter {key!r} must be a regular expression string")
    try:
        return re.compile(value)
    except re.error as exc:
        raise ValueError(f"parameter {key!r} is not a valid regular expression: {exc}") from None


def _names(params: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = params.get(key) or ()
    if isinstance(value, str):
        value = (value,)
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"parameter {key!r} must be a list of strings")
    return tuple(item.lower() for item in value)


def _resolve(unit: ScanUnit, argument: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Return ``(expression, variable, resolved)`` following one assignment."""

    expression = strip_keyword(argument)
    if SIMPLE_NAME_RE.match(expression):
        assigned = unit.binding(expression)
        if assigned is not None:
            return assigned, expression, assigned
    return expression, None, None


def _positional(unit: ScanUnit) -> Iterator[Tuple[int, str]]:
    for index, argument in enumerate(unit.arguments):
        if keyword_name(argument) is None or unit.file_kind not in ("python",):
            yield index, argument


# ---------------------------------------------------------------------------
# sql_string_building
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SqlParams:
    sinks: Tuple[str, ...]


def _bind_sql(params: Mapping[str, Any]) -> SqlParams:
    sinks = _names(params, "sinks")
    if not sinks:
        raise ValueError("parameter 'sinks' must list at least one call name")
    return SqlParams(sinks=sinks)


def is_built_sql(expression: str) -> bool:
    """SQL text assembled from non-literal parts (concatenation, formatting, interpolation)."""

    if not SQL_TEXT_RE.search(expression):
        return False
    if FSTRING_RE.match(expression) and "{" in expression:
        return True
    if FORMAT_CALL_RE.search(expression):
        return True
    percent_parts = split_top_level(expression, "%")
    if len(percent_parts) > 1 and any(not is_plain_literal(part) for part in percent_parts[1:]):
        return True
    if TEMPLATE_LITERAL_RE.search(expression) or DOUBLE_QUOTE_INTERPOLATION_RE.search(expression):
        return True
    if PHP_CONCAT_RE.search(expression):
        return True
    if SPRINTF_RE.search(expression) and "%" in expression:
        return True
    parts = split_top_level(expression, "+")
    if len(parts) > 1 and any(not is_plain_literal(part) for part in parts):
        return True
    return False


@predicate("sql_string_building", _bind_sql)
def sql_string_building(unit: ScanUnit, params: SqlParams) -> Iterator[StructuralHit]:
    """SQL-execution call whose query argument is built from non-literal parts."""

    callee = (unit.name or "").lower()
    if not any(callee == sink or callee.endswith(("." + sink, ">" + sink, ":" + sink)) for sink in params.sinks):
        return
    for index, argument in _positional(unit):
        expression, variable, resolved = _resolve(unit, argument)
        if is_built_sql(expression):
            yield StructuralHit(subject=expression, argument_index=index, variable=variable, resolved=resolved)
            return


# ---------------------------------------------------------------------------
# dynamic_argument_call
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DynamicParams:
    callees: re.Pattern
    require: Optional[re.Pattern] = None
    argument: Optional[int] = None
    tainted_only: bool = False


def _bind_dynamic(params: Mapping[str, Any]) -> DynamicParams:
    argument = params.get("argument")
    if argument is not None and (not isinstance(argument, int) or argument < 0):
        raise ValueError("parameter 'argument' must be a non-negative integer")
    return DynamicParams(
        callees=_compile(params, "callees"),
        require=_compile(params, "require", required=False),
        argument=argument,
        tainted_only=bool(params.get("tainted_only", False)),
    )


@predicate("dynamic_argument_call", _bind_dynamic)
def dynamic_argument_call(unit: ScanUnit, params: DynamicParams) -> Iterator[StructuralHit]:
    """Dangerous call receiving a non-literal (optionally tainted) argument."""

    if not unit.name or not params.callees.fullmatch(unit.name):
        return
    if params.require is not None and not params.require.search(unit.text):
        return
    for index, argument in _positional(unit):
        if params.argument is not None and index != params.argument:
            continue
        value = strip_keyword(argument)
        if is_plain_literal(value):
            continue
        expression, variable, resolved = _resolve(unit, argument)
        if params.tainted_only and not assess(unit, value).tainted:
            continue
        if variable is not None and is_plain_literal(expression):
            # One-level resolution proved the argument constant.
            continue
        yield StructuralHit(subject=value, argument_index=index, variable=variable, resolved=resolved)
        return


# ---------------------------------------------------------------------------
# logged_values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggedParams:
    callees: re.Pattern
    terms: Tuple[str, ...]


def _bind_logged(params: Mapping[str, Any]) -> LoggedParams:
    return LoggedParams(callees=_compile(params, "callees"), terms=_names(params, "terms"))


@predicate("logged_values", _bind_logged)
def logged_values(unit: ScanUnit, params: LoggedParams) -> Iterator[StructuralHit]:
    """Logging call that writes a sensitive-looking or externally supplied value."""

    if not unit.name or not params.callees.fullmatch(unit.name):
        return
    for index, argument in enumerate(unit.arguments):
        value = strip_keyword(argument)
        if is_plain_literal(value):
            continue
        names = [name.lstrip("$").lower() for name in identifiers(value)]
        names += [attr.lower() for attr in re.findall(r"(?:\.|->)([A-Za-z_]\w*)", value)]
        sensitive = any(term in name for name in names for term in params.terms)
        if sensitive or assess(unit, value).tainted:
            yield StructuralHit(subject=value, argument_index=index)
            return
