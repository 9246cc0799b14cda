"""
Blob Storage

Migration operations never embed payloads. They carry a BlobRef, an
opaque (record, key) handle that a BlobResolver turns into bytes:

- new file content   -> key "<path>.template"
- binary content     -> key "<path>.binary"
- modify/move diffs  -> key "<path>.diff"

FileBlobStore is the on-disk layout, one blob area per migration
directory (migrations/<record>/__files/<key>). MemoryBlobStore holds
payloads for records that exist only in memory, such as a freshly
generated record or a test fixture.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import UnresolvableBlobReference

logger = logging.getLogger(__name__)

BLOB_DIR_NAME = "__files"


@dataclass(frozen=True)
class BlobRef:
    """Handle to a payload in a record's blob area."""
    record: str
    key: str

    def __str__(self) -> str:
        return f"{self.record}:{self.key}"


def template_key(path: str) -> str:
    return f"{path}.template"


def binary_key(path: str) -> str:
    return f"{path}.binary"


def diff_key(path: str) -> str:
    return f"{path}.diff"


class BlobResolver(Protocol):
    def resolve(self, ref: BlobRef) -> bytes:
        """Return the payload, or raise UnresolvableBlobReference."""
        ...


class MemoryBlobStore:
    """Dictionary-backed resolver."""

    def __init__(self, blobs: dict[BlobRef, bytes] | None = None):
        self._blobs: dict[BlobRef, bytes] = dict(blobs or {})

    def put(self, ref: BlobRef, data: bytes | str) -> BlobRef:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._blobs[ref] = data
        return ref

    def resolve(self, ref: BlobRef) -> bytes:
        try:
            return self._blobs[ref]
        except KeyError:
            raise UnresolvableBlobReference(ref) from None

    def discard(self, ref: BlobRef):
        self._blobs.pop(ref, None)

    def refs(self):
        return self._blobs.keys()

    def items(self):
        return self._blobs.items()

    def __len__(self) -> int:
        return len(self._blobs)


class FileBlobStore:
    """
    Resolver over a migrations directory.

    Keys are relative paths inside the record's blob area; keys that
    would escape it are treated as unresolvable.
    """

    def __init__(self, migrations_dir: Path):
        self.migrations_dir = Path(migrations_dir)

    def blob_path(self, ref: BlobRef) -> Path:
        return self.migrations_dir / ref.record / BLOB_DIR_NAME / ref.key

    def resolve(self, ref: BlobRef) -> bytes:
        area = (self.migrations_dir / ref.record / BLOB_DIR_NAME).resolve()
        path = self.blob_path(ref).resolve()
        try:
            path.relative_to(area)
        except ValueError:
            raise UnresolvableBlobReference(ref) from None
        try:
            return path.read_bytes()
        except OSError:
            raise UnresolvableBlobReference(ref) from None

    def write(self, ref: BlobRef, data: bytes | str):
        if isinstance(data, str):
            data = data.encode("utf-8")
        atomic_write(self.blob_path(ref), data)


def atomic_write(path: Path, data: bytes):
    """Write a file atomically via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=".stencil.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        Path(tmp_path).replace(path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
