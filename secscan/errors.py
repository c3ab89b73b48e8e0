"""Error taxonomy for the scanner.

Only :class:`RuleLoadError` and :class:`ConfigError` abort a scan. The other
errors are recovered where they are raised and end up in the report footer.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional


def sanitize_path(path: object) -> str:
    """Replace the user's home directory with ``~`` so reports don't leak it."""

    text = str(path)
    home = os.path.expanduser("~")
    if home and home != "~" and (text == home or text.startswith(home + os.sep)):
        return "~" + text[len(home):]
    return text


class ScanError(Exception):
    """Base class carrying structured context and a suggested fix."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestion: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.suggestion = suggestion

    def format(self) -> str:
        parts = [f"Error: {self.message}"]
        if self.context:
            parts.append("")
            parts.append("Context:")
            for key, value in self.context.items():
                if isinstance(value, Path):
                    value = sanitize_path(value)
                parts.append(f"  {key}: {json.dumps(value, default=str)}")
        if self.suggestion:
            parts.append("")
            parts.append("Suggested fix:")
            parts.append(f"  {self.suggestion}")
        return "\n".join(parts)


class RuleLoadError(ScanError):
    """A rule is malformed or two rules collide on id."""


class ConfigError(ScanError):
    """The scan configuration file is malformed."""


class FileAccessError(ScanError):
    """A file under the scan root could not be read."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(
            f"cannot read {sanitize_path(path)}: {reason}",
            context={"path": path},
            suggestion="Check file permissions or add the path to .scanignore.",
        )
        self.path = path
        self.reason = reason


class ExtractionError(ScanError):
    """File content could not be parsed for its detected kind."""


class OracleTimeoutError(ScanError):
    """A dependency vulnerability lookup exceeded its time bound."""

    def __init__(self, package: str, version: str, timeout: float) -> None:
        super().__init__(
            f"vulnerability lookup for {package}=={version} timed out after {timeout:g}s",
            context={"package": package, "version": version},
        )
        self.package = package
        self.version = version
        self.timeout = timeout
