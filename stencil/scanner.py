"""
Project Scanning

Turns a directory on disk into a FileStateSnapshot. Ignore handling and
binary detection happen here so the engine only ever sees snapshots.

Ignore patterns follow .gitignore conventions closely enough for
templates: "*" stays within one path segment, "**" crosses segments,
a trailing "/" restricts a pattern to directories, a leading "/"
anchors it at the root, and "!" re-includes. Patterns are evaluated in
order and the last one that matches decides.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

from .config import ScanConfig
from .snapshot import FileStateSnapshot

logger = logging.getLogger(__name__)

# Bytes inspected for a NUL when sniffing binary content
BINARY_SNIFF_BYTES = 8000


@lru_cache(maxsize=512)
def _compile(pattern: str) -> tuple[re.Pattern, bool]:
    """Compile one pattern; returns (regex, directory_only)."""
    directory_only = pattern.endswith("/")
    pattern = pattern.rstrip("/")
    anchored = pattern.startswith("/") or "/" in pattern
    pattern = pattern.lstrip("/")

    out = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                if pattern.startswith("/", i):
                    # "a/**/b" also matches "a/b"
                    out[-1] = "(?:.*/)?"
                    i += 1
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(c))
        i += 1
    body = "".join(out)

    prefix = "^" if anchored else "^(?:.*/)?"
    return re.compile(f"{prefix}{body}(?:/.*)?$"), directory_only


def matches_pattern(rel_path: str, pattern: str, is_dir: bool = False) -> bool:
    """True if a single ignore pattern matches a relative posix path."""
    pattern = pattern.strip()
    if not pattern or pattern.startswith("#") or pattern.startswith("!"):
        return False
    regex, directory_only = _compile(pattern)
    m = regex.match(rel_path)
    if m is None:
        return False
    if directory_only and not is_dir:
        # "build/" ignores files under build/, not a file named build
        bare = pattern.rstrip("/").lstrip("/")
        return rel_path != bare and not rel_path.endswith("/" + bare)
    return True


def should_ignore(rel_path: str, patterns: list[str], is_dir: bool = False) -> bool:
    ignored = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if matches_pattern(rel_path, pattern[1:], is_dir):
                ignored = False
        elif matches_pattern(rel_path, pattern, is_dir):
            ignored = True
    return ignored


def is_binary_content(data: bytes) -> bool:
    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


def scan(root: Path, config: ScanConfig | None = None) -> FileStateSnapshot:
    """
    Snapshot every non-ignored regular file under root.

    Symlinks are skipped so a scan never reads outside the project.
    Paths are relative, "/"-separated.
    """
    root = Path(root)
    config = config or ScanConfig.for_project(root)
    files: dict[str, str | bytes] = {}
    binary: set[str] = set()

    def walk(directory: Path, prefix: str):
        try:
            items = sorted(directory.iterdir())
        except OSError as e:
            logger.warning(f"Cannot read directory {directory}: {e}")
            return
        for item in items:
            if item.is_symlink():
                logger.debug(f"Skipping symlink: {item}")
                continue
            rel_path = f"{prefix}{item.name}"
            if item.is_dir():
                # "dir/**" patterns prune the whole directory
                if (should_ignore(rel_path, config.patterns, is_dir=True)
                        or should_ignore(f"{rel_path}/", config.patterns, is_dir=True)):
                    continue
                walk(item, f"{rel_path}/")
            elif item.is_file():
                if should_ignore(rel_path, config.patterns):
                    continue
                try:
                    data = item.read_bytes()
                except OSError as e:
                    logger.warning(f"Cannot read {rel_path}: {e}")
                    continue
                if is_binary_content(data):
                    files[rel_path] = data
                    binary.add(rel_path)
                else:
                    files[rel_path] = data.decode("utf-8")

    walk(root, "")
    return FileStateSnapshot(files, binary)
