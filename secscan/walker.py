"""Lazy, cycle-safe enumeration of candidate files under a scan root."""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from .errors import sanitize_path
from .result import SkippedFile

logger = logging.getLogger(__name__)

IGNORE_FILE = ".scanignore"

SKIP_DIRS = {
    ".git", ".hg", ".svn", "node_modules", "vendor", "bower_components",
    "venv", ".venv", "virtualenv", "__pycache__", ".mypy_cache", ".pytest_cache",
    ".ruff_cache", ".tox", ".nox", ".eggs", "dist", "build", "target", ".next",
    ".nuxt", "coverage", ".gradle", ".terraform", ".serverless", ".idea",
}

BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".pdf", ".zip",
    ".gz", ".tgz", ".bz2", ".xz", ".7z", ".tar", ".jar", ".war", ".class",
    ".so", ".dll", ".dylib", ".exe", ".o", ".a", ".pyc", ".pyo", ".whl",
    ".woff", ".woff2", ".ttf", ".otf", ".eot", ".mp3", ".mp4", ".mov",
    ".avi", ".wav", ".sqlite", ".sqlite3",
}


@dataclass(frozen=True)
class IgnorePattern:
    pattern: str
    directory_only: bool
    anchored: bool

    def matches(self, relative_path: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        if self.anchored:
            return fnmatch.fnmatchcase(relative_path, self.pattern)
        return fnmatch.fnmatchcase(relative_path.rsplit("/", 1)[-1], self.pattern)


def parse_ignore_patterns(lines: Iterable[str]) -> Tuple[IgnorePattern, ...]:
    """Parse the gitignore-like subset used by ``.scanignore`` and ``--exclude``."""

    patterns: List[IgnorePattern] = []
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            logger.warning("negated ignore pattern %r is not supported; ignoring it", line)
            continue
        directory_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = "/" in line
        line = line.lstrip("/")
        if line.startswith("**/"):
            line = line[3:]
            anchored = "/" in line
        if line:
            patterns.append(IgnorePattern(line, directory_only, anchored))
    return tuple(patterns)


class FileWalker:
    """Yield files under ``root`` in lexicographic order of path components.

    Symlinked directories are followed once: each real directory is entered
    at most one time, and a file reachable through several links is yielded
    once.
    """

    def __init__(
        self,
        root: Path,
        exclude_patterns: Sequence[str] = (),
        ignore_file: Optional[str] = IGNORE_FILE,
    ) -> None:
        self.root = Path(root)
        lines = list(exclude_patterns)
        if ignore_file:
            ignore_path = self.root / ignore_file
            try:
                lines.extend(ignore_path.read_text(encoding="utf-8").splitlines())
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("cannot read %s: %s", sanitize_path(ignore_path), exc.strerror)
        self.patterns = parse_ignore_patterns(lines)
        self.skipped: List[SkippedFile] = []

    def ignored(self, relative_path: str, is_dir: bool) -> bool:
        return any(pattern.matches(relative_path, is_dir) for pattern in self.patterns)

    def walk(self) -> Iterator[Path]:
        visited_dirs: Set[str] = set()
        yielded: Set[str] = set()
        root_real = os.path.realpath(self.root)
        visited_dirs.add(root_real)
        yield from self._walk_dir(self.root, "", visited_dirs, yielded)

    def _walk_dir(self, directory: Path, prefix: str, visited_dirs: Set[str], yielded: Set[str]) -> Iterator[Path]:
        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda entry: entry.name)
        except OSError as exc:
            logger.warning("cannot list %s: %s", sanitize_path(directory), exc.strerror or exc)
            self.skipped.append(SkippedFile(prefix.rstrip("/") or ".", f"unreadable directory: {exc.strerror or exc}"))
            return

        for entry in entries:
            relative = prefix + entry.name
            try:
                is_dir = entry.is_dir(follow_symlinks=True)
                is_file = entry.is_file(follow_symlinks=True)
            except OSError:
                continue
            if is_dir:
                if entry.name in SKIP_DIRS or self.ignored(relative, True):
                    continue
                real = os.path.realpath(entry.path)
                if real in visited_dirs:
                    logger.debug("skipping already visited directory %s", relative)
                    continue
                visited_dirs.add(real)
                yield from self._walk_dir(Path(entry.path), relative + "/", visited_dirs, yielded)
            elif is_file:
                if entry.name == IGNORE_FILE and not prefix:
                    continue
                if self.ignored(relative, False):
                    continue
                if os.path.splitext(entry.name)[1].lower() in BINARY_EXTENSIONS:
                    self.skipped.append(SkippedFile(relative, "binary extension"))
                    continue
                real = os.path.realpath(entry.path)
                if real in yielded:
                    continue
                yielded.add(real)
                yield Path(entry.path)


def walk(root: Path, exclude_patterns: Sequence[str] = ()) -> Iterator[Path]:
    """Iterate candidate files under ``root``; see :class:`FileWalker`."""

    return FileWalker(root, exclude_patterns).walk()
