"""Load declarative YAML rule sources into a validated :class:`RuleSet`."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

import yaml

from secscan.errors import RuleLoadError
from secscan.severity import Severity
from secscan.units import UnitKind
from secscan.utils.fileio import read_yaml_file

from . import structural
from .model import (
    ALL_LANGUAGES,
    AdvisoryPattern,
    Category,
    PathPattern,
    RegexPattern,
    Remediation,
    Rule,
    RuleSet,
    StructuralPattern,
)

logger = logging.getLogger(__name__)

BASELINE_PATH = Path(__file__).resolve().parent / "baseline.yaml"

RuleSource = Union[str, Path, Mapping[str, Any]]

_REGEX_FLAGS = {
    "ignorecase": re.IGNORECASE,
    "multiline": re.MULTILINE,
    "dotall": re.DOTALL,
}
_REGEX_UNITS = (UnitKind.LINE, UnitKind.LITERAL, UnitKind.CALL)


def load(sources: Iterable[RuleSource]) -> RuleSet:
    """Build a RuleSet from YAML files or parsed mappings.

    Raises :class:`RuleLoadError` on the first malformed rule or id collision;
    nothing is returned for a partially valid input.
    """

    rules: List[Rule] = []
    seen: Dict[str, str] = {}
    versions: List[str] = []
    for source in sources:
        document, origin = _read_source(source)
        versions.append(f"{document.get('name') or Path(origin).stem}@{document.get('version', '0')}")
        entries = document.get("rules")
        if not isinstance(entries, list):
            raise RuleLoadError(
                "rule source has no 'rules' list",
                context={"source": origin},
                suggestion="Declare rules as a YAML list under the top-level 'rules' key.",
            )
        for position, entry in enumerate(entries):
            rule = _parse_rule(entry, origin, position, order=len(rules))
            if rule.id in seen:
                raise RuleLoadError(
                    f"duplicate rule id {rule.id!r}",
                    context={"source": origin, "first_defined_in": seen[rule.id]},
                    suggestion="Give every rule a unique id or disable one of them.",
                )
            seen[rule.id] = origin
            rules.append(rule)
    ruleset = RuleSet(rules, version="+".join(versions) or "empty")
    logger.debug("loaded %d rules (%s)", len(ruleset), ruleset.version)
    return ruleset


def load_baseline() -> RuleSet:
    return load([BASELINE_PATH])


def _read_source(source: RuleSource) -> Tuple[Mapping[str, Any], str]:
    if isinstance(source, Mapping):
        return source, str(source.get("name", "<inline>"))
    path = Path(source)
    try:
        document = read_yaml_file(path)
    except (OSError, yaml.YAMLError) as exc:
        raise RuleLoadError(f"cannot parse rule file: {exc}", context={"source": path}) from exc
    if document is None:
        raise RuleLoadError(
            "rule file not found or empty",
            context={"source": path},
            suggestion="Check the --rules path.",
        )
    if not isinstance(document, Mapping):
        raise RuleLoadError("rule file must contain a mapping", context={"source": path})
    return document, str(path)


def _fail(message: str, origin: str, rule_id: Any, position: int) -> RuleLoadError:
    return RuleLoadError(
        message,
        context={"source": origin, "rule": rule_id if rule_id is not None else f"#{position}"},
        suggestion="Fix or remove the malformed rule; the scan does not start with an unreliable rule set.",
    )


def _parse_rule(entry: Any, origin: str, position: int, order: int) -> Rule:
    if not isinstance(entry, Mapping):
        raise _fail("rule entry must be a mapping", origin, None, position)
    rule_id = entry.get("id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise _fail("rule is missing an id", origin, rule_id, position)

    category_value = entry.get("category")
    if category_value is None:
        raise _fail("rule is missing a category", origin, rule_id, position)
    try:
        category = Category(str(category_value).strip().lower())
    except ValueError:
        allowed = ", ".join(item.value for item in Category)
        raise _fail(f"unknown category {category_value!r} (allowed: {allowed})", origin, rule_id, position) from None

    try:
        severity = Severity.parse(entry.get("severity"))
    except ValueError as exc:
        raise _fail(str(exc), origin, rule_id, position) from None

    try:
        pattern = _parse_pattern(entry.get("pattern"))
    except ValueError as exc:
        raise _fail(f"unparsable pattern: {exc}", origin, rule_id, position) from None

    remediation = _parse_remediation(entry.get("remediation") or {}, origin, rule_id, position)
    languages = entry.get("languages") or [ALL_LANGUAGES]
    if isinstance(languages, str):
        languages = [languages]
    if not isinstance(languages, list):
        raise _fail("languages must be a list", origin, rule_id, position)

    return Rule(
        id=rule_id.strip(),
        title=str(entry.get("title") or rule_id),
        category=category,
        severity=severity,
        pattern=pattern,
        remediation=remediation,
        languages=frozenset(str(language).lower() for language in languages),
        scan_fixtures=bool(entry.get("scan_fixtures", False)),
        scan_docs=bool(entry.get("scan_docs", False)),
        order=order,
    )


def _parse_pattern(spec: Any):
    if not isinstance(spec, Mapping):
        raise ValueError("pattern must be a mapping with a 'kind'")
    kind = spec.get("kind")
    if kind == "regex":
        return _parse_regex(spec)
    if kind == "structural":
        name = spec.get("predicate")
        if not isinstance(name, str):
            raise ValueError("structural pattern needs a 'predicate' name")
        params = spec.get("params") or {}
        if not isinstance(params, Mapping):
            raise ValueError("structural 'params' must be a mapping")
        return StructuralPattern(predicate=name, params=structural.bind(name, params))
    if kind == "path":
        globs = _string_list(spec.get("globs"), "globs")
        if not globs:
            raise ValueError("path pattern needs at least one glob")
        return PathPattern(globs=globs, exclude=_string_list(spec.get("exclude"), "exclude"))
    if kind == "advisory":
        return AdvisoryPattern(ecosystems=_string_list(spec.get("ecosystems"), "ecosystems"))
    raise ValueError(f"unknown pattern kind {kind!r}")


def _parse_regex(spec: Mapping[str, Any]) -> RegexPattern:
    expression = spec.get("regex")
    if not isinstance(expression, str) or not expression:
        raise ValueError("regex pattern needs a non-empty 'regex'")
    flags = 0
    for flag in _string_list(spec.get("flags"), "flags"):
        if flag.lower() not in _REGEX_FLAGS:
            raise ValueError(f"unknown regex flag {flag!r}")
        flags |= _REGEX_FLAGS[flag.lower()]
    units: List[UnitKind] = []
    for name in _string_list(spec.get("units"), "units") or ("line",):
        try:
            unit = UnitKind(name)
        except ValueError:
            raise ValueError(f"unknown unit kind {name!r}") from None
        if unit not in _REGEX_UNITS:
            raise ValueError(f"regex patterns cannot target {name!r} units")
        units.append(unit)
    try:
        regex = re.compile(expression, flags)
        exclude = re.compile(spec["exclude"], flags) if spec.get("exclude") else None
    except re.error as exc:
        raise ValueError(f"invalid regular expression: {exc}") from None
    return RegexPattern(regex=regex, units=tuple(units), exclude=exclude)


def _parse_remediation(spec: Any, origin: str, rule_id: str, position: int) -> Remediation:
    if not isinstance(spec, Mapping):
        raise _fail("remediation must be a mapping", origin, rule_id, position)
    what = spec.get("what")
    risk = spec.get("risk")
    if not what or not risk:
        raise _fail("remediation needs 'what' and 'risk' templates", origin, rule_id, position)
    rewrite = spec.get("rewrite")
    if rewrite is not None:
        # Imported here: remediation depends on the rule model.
        from secscan.remediation import REWRITES

        if rewrite not in REWRITES:
            raise _fail(f"unknown rewrite {rewrite!r}", origin, rule_id, position)
    return Remediation(
        what=str(what).strip(),
        risk=str(risk).strip(),
        fix=str(spec.get("fix") or "").strip(),
        rewrite=rewrite,
        blast_radius=str(spec.get("blast_radius") or "").strip(),
    )


def _string_list(value: Any, key: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key!r} must be a list of strings")
    return tuple(value)
