"""
File State Snapshots

A snapshot is the whole project at one point in history: path -> content,
plus the set of paths whose content is binary. Text content is str,
binary content is bytes and is never diffed or compared line by line.

Snapshots are values. Replaying a record works on a WorkingState copy
and freezes it into a new snapshot, so every historical snapshot can be
held at once and looked up without replaying anything.
"""

from types import MappingProxyType


class FileStateSnapshot:
    """Immutable path -> content map with a binary marker set."""

    __slots__ = ("_files", "_binary")

    def __init__(self, files: dict | None = None, binary=()):
        self._files: dict[str, str | bytes] = dict(files or {})
        self._binary = frozenset(p for p in binary if p in self._files)

    @property
    def files(self):
        return MappingProxyType(self._files)

    @property
    def binary(self) -> frozenset:
        return self._binary

    def paths(self) -> set[str]:
        return set(self._files)

    def is_binary(self, path: str) -> bool:
        return path in self._binary

    def get(self, path: str, default=None):
        return self._files.get(path, default)

    def text(self, path: str) -> str | None:
        """Text content of a path, or None if absent or binary."""
        if path in self._binary:
            return None
        return self._files.get(path)

    def text_files(self) -> dict[str, str]:
        return {p: c for p, c in self._files.items() if p not in self._binary}

    def working_copy(self) -> "WorkingState":
        return WorkingState(self._files, self._binary)

    def __contains__(self, path) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self):
        return iter(sorted(self._files))

    def __eq__(self, other) -> bool:
        if not isinstance(other, FileStateSnapshot):
            return NotImplemented
        return self._files == other._files and self._binary == other._binary

    def __repr__(self) -> str:
        return f"FileStateSnapshot({len(self._files)} files, {len(self._binary)} binary)"


EMPTY_SNAPSHOT = FileStateSnapshot()


class WorkingState:
    """Mutable copy used while replaying one record."""

    def __init__(self, files: dict | None = None, binary=()):
        self.files: dict[str, str | bytes] = dict(files or {})
        self.binary: set[str] = set(binary)

    def set_text(self, path: str, content: str):
        self.files[path] = content
        self.binary.discard(path)

    def set_binary(self, path: str, content: bytes):
        self.files[path] = content
        self.binary.add(path)

    def remove(self, path: str):
        self.files.pop(path, None)
        self.binary.discard(path)

    def move(self, old_path: str, new_path: str):
        was_binary = old_path in self.binary
        content = self.files.pop(old_path)
        self.binary.discard(old_path)
        self.files[new_path] = content
        if was_binary:
            self.binary.add(new_path)
        else:
            self.binary.discard(new_path)

    def freeze(self) -> FileStateSnapshot:
        return FileStateSnapshot(self.files, self.binary)
