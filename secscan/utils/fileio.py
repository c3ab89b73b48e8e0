"""Basic file IO helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from secscan.errors import FileAccessError

SNIFF_BYTES = 8192
DEFAULT_MAX_FILE_BYTES = 1024 * 1024


class RuleYamlLoader(yaml.SafeLoader):
    """Safe YAML loader that keeps dates as plain strings."""


# Allowlist expiry dates and rule-set versions are handled as text.
RuleYamlLoader.yaml_implicit_resolvers = {
    key: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for key, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class SourceFile:
    """Decoded file content plus what sniffing learned about it."""

    path: Path
    text: str
    size: int
    binary: bool


def read_yaml_file(path: Path) -> Any:
    """Return the parsed YAML if the file exists, otherwise ``None``."""

    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as handle:
        return yaml.load(handle, Loader=RuleYamlLoader)


def read_source(path: Path, max_bytes: int = DEFAULT_MAX_FILE_BYTES) -> SourceFile:
    """Read a file under the scan root.

    Raises :class:`FileAccessError` when the file cannot be read or exceeds
    ``max_bytes``. Undecodable bytes are replaced rather than rejected.
    """

    try:
        size = path.stat().st_size
    except OSError as exc:
        raise FileAccessError(path, exc.strerror or str(exc)) from exc
    if max_bytes and size > max_bytes:
        raise FileAccessError(path, f"file too large ({size} bytes > {max_bytes})")
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FileAccessError(path, exc.strerror or str(exc)) from exc
    binary = b"\x00" in data[:SNIFF_BYTES]
    text = "" if binary else data.decode("utf-8", errors="replace")
    return SourceFile(path=path, text=text, size=size, binary=binary)
