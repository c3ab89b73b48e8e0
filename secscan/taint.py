"""Lightweight taint assessment.

A value is tainted when its expression reads an external input source
directly, when it names a route-handler parameter, or when one identifier in
it was assigned (once, in the same function, earlier) from such a source.
Resolution never goes deeper than that single assignment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .units import ScanUnit
from .utils.code import identifiers

TAINT_SOURCE_RE = re.compile(
    r"""
    \brequest\.(?:args|form|values|json|data|files|cookies|headers|GET|POST|REQUEST|FILES|COOKIES
                  |body|query|query_params|path_params|params|get_json|getParameter|getHeader|getQueryString)\b
  | \breq\.(?:body|query|params|cookies|headers|files)\b
  | \$_(?:GET|POST|REQUEST|COOKIE|FILES|SERVER)\b
  | \bsys\.argv\b
  | \bsys\.stdin\b
  | \bprocess\.argv\b
  | \bos\.Args\b
  | \bflag\.Args?\(
  | \b(?:raw_)?input\s*\(
  | \bgets\b
  | \bparams\[
  | \bc\.(?:Query|Param|PostForm|GetHeader)\(
  | \br\.(?:FormValue|PostFormValue|URL\.Query)\b
  | \b(?:document\.(?:URL|cookie|referrer)|(?:window\.)?location\.(?:search|hash|href))\b
  | \bopen\([^)]*\)\.read\w*\(
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class TaintContext:
    """Whether a value may originate from unvalidated external input."""

    tainted: bool
    sources: Tuple[str, ...] = ()
    via: Optional[str] = None

    @classmethod
    def clean(cls) -> "TaintContext":
        return cls(False)


def direct_sources(expression: str) -> List[str]:
    found: List[str] = []
    for match in TAINT_SOURCE_RE.finditer(expression):
        text = re.sub(r"\s+", "", match.group(0)).rstrip("([")
        if text not in found:
            found.append(text)
    return found


def assess(unit: ScanUnit, expression: Optional[str] = None) -> TaintContext:
    """Assess ``expression`` (default: the unit text) in the context of ``unit``."""

    text = unit.text if expression is None else expression
    sources = direct_sources(text)
    if sources:
        return TaintContext(True, tuple(sources))

    for name in identifiers(text):
        if name in unit.external_names:
            return TaintContext(True, (f"parameter:{name}",), via=name)
        assigned = unit.binding(name)
        if assigned is None:
            continue
        sources = direct_sources(assigned)
        if sources:
            return TaintContext(True, tuple(sources), via=name)
        for inner in identifiers(assigned):
            if inner in unit.external_names:
                return TaintContext(True, (f"parameter:{inner}",), via=name)
    return TaintContext.clean()
