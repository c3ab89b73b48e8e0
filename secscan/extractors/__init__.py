"""Per-file-kind content normalization into scan units.

``extract`` dispatches on the detected file kind. A normalizer that cannot
parse its input raises :class:`~secscan.errors.ExtractionError`; the file is
then extracted as raw lines so generic rules still apply.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from secscan.errors import ExtractionError
from secscan.filekinds import detect_kind
from secscan.units import ScanUnit

from .base import file_unit, raw_line_units
from .clike import extract_clike
from .lexer import STYLES
from .manifest import extract_package_json, extract_requirements
from .python import extract_python

logger = logging.getLogger(__name__)

DOCUMENTATION_KINDS = frozenset({"markdown"})

_NORMALIZERS: Dict[str, Callable[[str, str, str], List[ScanUnit]]] = {
    "python": extract_python,
    "requirements": extract_requirements,
    "npm-manifest": extract_package_json,
}


@dataclass(frozen=True)
class Extraction:
    file_kind: str
    units: List[ScanUnit]
    # Why the normalizer fell back to raw lines, if it did.
    degraded: Optional[str] = None


def extract_file(path: str, content: str, file_kind: Optional[str] = None) -> Extraction:
    kind = file_kind or detect_kind(path, content[:256])
    units = [file_unit(path, kind)]
    if kind in DOCUMENTATION_KINDS:
        units.extend(raw_line_units(path, kind, content, in_doc_block=True))
        return Extraction(kind, units)

    normalizer = _NORMALIZERS.get(kind)
    style = STYLES.get(kind)
    if normalizer is None and style is None:
        units.extend(raw_line_units(path, kind, content))
        return Extraction(kind, units)
    try:
        if normalizer is not None:
            units.extend(normalizer(path, content, kind))
        else:
            units.extend(extract_clike(path, content, kind, style))
    except ExtractionError as exc:
        logger.warning("falling back to raw lines for %s: %s", path, exc.message)
        units = [file_unit(path, kind)] + raw_line_units(path, kind, content)
        return Extraction(kind, units, degraded=exc.message)
    return Extraction(kind, units)


def extract(path: str, content: str, file_kind: Optional[str] = None) -> List[ScanUnit]:
    """Return the scan units of one file; spans refer to ``content``."""

    return extract_file(path, content, file_kind).units


__all__ = ["Extraction", "extract", "extract_file"]
