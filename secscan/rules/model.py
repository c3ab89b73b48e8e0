"""Rule model: categories, the tagged pattern variant, remediation, RuleSet."""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Optional, Tuple

from secscan.severity import Severity
from secscan.units import UnitKind

ALL_LANGUAGES = "*"


class Category(str, Enum):
    CREDENTIAL = "credential"
    INJECTION = "injection"
    XSS = "xss"
    CSRF = "csrf"
    AUTH = "auth"
    LOGGING = "logging"
    VALIDATION = "validation"
    PATH_TRAVERSAL = "path-traversal"
    CONFIG = "config"
    DEPENDENCY = "dependency"
    DEPRECATED_API = "deprecated-api"


@dataclass(frozen=True)
class RegexPattern:
    """Textual matcher over the text of selected unit kinds."""

    regex: re.Pattern
    units: Tuple[UnitKind, ...] = (UnitKind.LINE,)
    exclude: Optional[re.Pattern] = None

    kind = "regex"


@dataclass(frozen=True)
class StructuralPattern:
    """Named predicate over the parsed shape of a call unit."""

    predicate: str
    # Compiled, validated parameters (see ``secscan.rules.structural``).
    params: Any

    kind = "structural"
    units = (UnitKind.CALL,)


@dataclass(frozen=True)
class PathPattern:
    """Glob set over the file's path relative to the scan root."""

    globs: Tuple[str, ...]
    exclude: Tuple[str, ...] = ()

    kind = "path"
    units = (UnitKind.FILE,)

    def matches(self, relative_path: str) -> bool:
        name = relative_path.rsplit("/", 1)[-1]

        def hit(pattern: str) -> bool:
            target = relative_path if "/" in pattern else name
            return fnmatch.fnmatchcase(target, pattern)

        return any(hit(glob) for glob in self.globs) and not any(hit(glob) for glob in self.exclude)


@dataclass(frozen=True)
class AdvisoryPattern:
    """Dependency pins checked against the vulnerability oracle."""

    ecosystems: Tuple[str, ...] = ()

    kind = "advisory"
    units = (UnitKind.DEPENDENCY,)


Pattern = Any  # RegexPattern | StructuralPattern | PathPattern | AdvisoryPattern


@dataclass(frozen=True)
class Remediation:
    """Templates rendered per finding; ``{snippet}`` and friends are filled verbatim."""

    what: str
    risk: str
    fix: str = ""
    rewrite: Optional[str] = None
    blast_radius: str = ""


@dataclass(frozen=True)
class Rule:
    id: str
    title: str
    category: Category
    severity: Severity
    pattern: Pattern
    remediation: Remediation
    languages: FrozenSet[str] = field(default_factory=frozenset)
    scan_fixtures: bool = False
    scan_docs: bool = False
    # Declaration order within the RuleSet; tie-break for reporting.
    order: int = 0

    def applies_to(self, file_kind: str) -> bool:
        return not self.languages or ALL_LANGUAGES in self.languages or file_kind in self.languages


class RuleSet:
    """Immutable, ordered collection of rules with unique ids."""

    def __init__(self, rules: Iterable[Rule], version: str = "custom") -> None:
        self._rules: Tuple[Rule, ...] = tuple(rules)
        self._by_id: Dict[str, Rule] = {rule.id: rule for rule in self._rules}
        if len(self._by_id) != len(self._rules):
            raise ValueError("rule ids must be unique")
        self._version = version
        self._by_kind: Dict[str, Tuple[Rule, ...]] = {}

    @property
    def version(self) -> str:
        return self._version

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def get(self, rule_id: str) -> Optional[Rule]:
        return self._by_id.get(rule_id)

    def rules_for(self, file_kind: str) -> Tuple[Rule, ...]:
        """Rules applicable to ``file_kind`` in declaration order."""

        cached = self._by_kind.get(file_kind)
        if cached is None:
            cached = tuple(rule for rule in self._rules if rule.applies_to(file_kind))
            self._by_kind[file_kind] = cached
        return cached

    def without(self, rule_ids: Iterable[str]) -> "RuleSet":
        disabled = set(rule_ids)
        return RuleSet((rule for rule in self._rules if rule.id not in disabled), self._version)
