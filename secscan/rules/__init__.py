"""Rule model and loading.

Rules are declarative data (see ``baseline.yaml``); the engine never special
cases a rule id.
"""

from __future__ import annotations

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
from .loader import BASELINE_PATH, load, load_baseline

__all__ = [
    "ALL_LANGUAGES",
    "AdvisoryPattern",
    "BASELINE_PATH",
    "Category",
    "PathPattern",
    "RegexPattern",
    "Remediation",
    "Rule",
    "RuleSet",
    "StructuralPattern",
    "load",
    "load_baseline",
]
