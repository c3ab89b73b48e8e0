"""Dependency manifests: pinned packages become dependency units."""

from __future__ import annotations

import json
import re
from typing import List

from secscan.errors import ExtractionError
from secscan.units import ScanUnit, Span, UnitKind

from .base import split_lines
from .clike import extract_clike
from .lexer import HASH_STYLE

PIN_RE = re.compile(r"^\s*(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)(?:\[[^\]]*\])?\s*==\s*(?P<version>[^\s;,#]+)")
NPM_VERSION_RE = re.compile(r"^[\^~=v]*(?P<version>\d+(?:\.\d+)*(?:[-+][\w.]+)?)$")
NPM_SECTIONS = ("dependencies", "devDependencies", "optionalDependencies", "peerDependencies")


def _dependency(path: str, file_kind: str, line_number: int, line: str, name: str, version: str, ecosystem: str) -> ScanUnit:
    column = max(line.find(name), 0) + 1
    return ScanUnit(
        kind=UnitKind.DEPENDENCY,
        path=path,
        file_kind=file_kind,
        text=f"{name}=={version}",
        source=line,
        span=Span(line_number, column, line_number, column + len(name)),
        name=name,
        version=version,
        ecosystem=ecosystem,
    )


def extract_requirements(path: str, content: str, file_kind: str = "requirements") -> List[ScanUnit]:
    units = extract_clike(path, content, file_kind, HASH_STYLE)
    for unit in list(units):
        if unit.kind != UnitKind.LINE:
            continue
        match = PIN_RE.match(unit.text)
        if match:
            units.append(
                _dependency(
                    path, file_kind, unit.span.line, unit.source,
                    match.group("name").lower(), match.group("version"), "pypi",
                )
            )
    return units


def extract_package_json(path: str, content: str, file_kind: str = "npm-manifest") -> List[ScanUnit]:
    try:
        document = json.loads(content)
    except ValueError as exc:
        raise ExtractionError(f"invalid package.json: {exc}", context={"path": path}) from exc
    if not isinstance(document, dict):
        raise ExtractionError("package.json is not an object", context={"path": path})

    lines = split_lines(content)
    units: List[ScanUnit] = []
    for number, line in enumerate(lines, start=1):
        if line.strip():
            units.append(
                ScanUnit(
                    kind=UnitKind.LINE,
                    path=path,
                    file_kind=file_kind,
                    text=line,
                    source=line,
                    span=Span.of_line(number, line),
                )
            )

    for section in NPM_SECTIONS:
        dependencies = document.get(section)
        if not isinstance(dependencies, dict):
            continue
        for name, spec in sorted(dependencies.items()):
            match = NPM_VERSION_RE.match(str(spec).strip())
            if not match:
                continue
            number = _line_of(lines, f'"{name}"')
            units.append(
                _dependency(path, file_kind, number, lines[number - 1] if lines else "", name, match.group("version"), "npm")
            )
    return units


def _line_of(lines: List[str], needle: str) -> int:
    for number, line in enumerate(lines, start=1):
        if needle in line:
            return number
    return 1
