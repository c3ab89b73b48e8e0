"""File kind detection by name, extension and content sniffing."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

UNKNOWN = "unknown"

EXTENSION_KINDS = {
    ".py": "python",
    ".pyw": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".vue": "vue",
    ".svelte": "vue",
    ".php": "php",
    ".phtml": "php",
    ".inc": "php",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".go": "go",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "c",
    ".cc": "c",
    ".hpp": "c",
    ".rs": "rust",
    ".swift": "swift",
    ".scala": "scala",
    ".rb": "ruby",
    ".erb": "ruby",
    ".sh": "shell",
    ".bash": "shell",
    ".zsh": "shell",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".ini": "ini",
    ".cfg": "ini",
    ".conf": "ini",
    ".properties": "ini",
    ".sql": "sql",
    ".rpgle": "rpg",
    ".sqlrpgle": "rpg",
    ".clle": "rpg",
    ".html": "html",
    ".htm": "html",
    ".jinja": "html",
    ".j2": "html",
    ".md": "markdown",
    ".markdown": "markdown",
    ".rst": "markdown",
    ".txt": "text",
    ".pem": "key",
    ".key": "key",
    ".p12": "key",
    ".pfx": "key",
    ".crt": "key",
}

FILENAME_KINDS = {
    "Dockerfile": "dockerfile",
    "Makefile": "shell",
    "Gemfile": "ruby",
    "Rakefile": "ruby",
    "package.json": "npm-manifest",
    "Pipfile": "toml",
}

_REQUIREMENTS_RE = re.compile(r"\A(?:requirements[\w.-]*|constraints)\.(?:txt|in)\Z", re.IGNORECASE)
_ENV_RE = re.compile(r"\A\.env(?:\..+)?\Z")
_SHEBANG_RE = re.compile(r"\A#!\s*(?:\S*/)?(?:env\s+(?:-\S+\s+)*)?(?P<interpreter>[\w.-]+)")

_SHEBANG_KINDS = {
    "python": "python",
    "python3": "python",
    "node": "javascript",
    "bash": "shell",
    "sh": "shell",
    "zsh": "shell",
    "ruby": "ruby",
    "php": "php",
}


def detect_kind(relative_path: str, head: str = "") -> str:
    """Return the file kind for ``relative_path``; ``head`` is the first bytes of content."""

    name = PurePosixPath(relative_path).name
    if name in FILENAME_KINDS:
        return FILENAME_KINDS[name]
    if _REQUIREMENTS_RE.match(name):
        return "requirements"
    if _ENV_RE.match(name):
        return "env"
    if name.startswith("Dockerfile"):
        return "dockerfile"
    suffix = PurePosixPath(name).suffix.lower()
    kind = EXTENSION_KINDS.get(suffix)
    if kind is not None:
        return kind
    return sniff(head)


def sniff(head: str) -> str:
    """Guess a kind from content for extensionless or unknown files."""

    if not head:
        return UNKNOWN
    if head.lstrip().startswith("<?php"):
        return "php"
    match = _SHEBANG_RE.match(head)
    if match:
        interpreter = re.sub(r"[\d.]+\Z", "", match.group("interpreter")) or match.group("interpreter")
        return _SHEBANG_KINDS.get(match.group("interpreter"), _SHEBANG_KINDS.get(interpreter, UNKNOWN))
    return UNKNOWN
