"""
Migration Records

A template's history is an append-only list of migration records,
ordered by name. Names start with a sortable UTC timestamp
(``2025-06-23T06-46-18_add-auth``), so sorting by name IS replay order.
There are no parent pointers: the lineage is a single line.

Each record maps a path to one operation:

    New(blob)                 create or replace a text file
    Modify(diff)              patch an existing text file
    Delete                    remove a file
    Moved(old, new, diff?)    relocate a file, optionally patching it
    Binary(blob)              create or replace a binary file wholesale

On disk a record is a directory:

    migrations/<name>/migration.json   {"name", "timestamp", "entries"}
    migrations/<name>/__files/...      payloads, see blobs.py

Records are written once and never edited afterwards.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .blobs import (
    BLOB_DIR_NAME,
    BlobRef,
    FileBlobStore,
    MemoryBlobStore,
    atomic_write,
    binary_key,
    diff_key,
    template_key,
)
from .errors import MalformedMigrationRecord

logger = logging.getLogger(__name__)

MIGRATIONS_DIR_NAME = "migrations"
RECORD_FILE_NAME = "migration.json"

# Sentinel name for the empty state before any record is applied
INITIAL_STATE = "initial-state"

_LABEL_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


# ── Operations ────────────────────────────────────────────────────


@dataclass(frozen=True)
class NewFile:
    path: str
    blob: BlobRef
    kind = "new"

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path}


@dataclass(frozen=True)
class ModifyFile:
    path: str
    diff: BlobRef
    kind = "modify"

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path, "diffRef": self.diff.key}


@dataclass(frozen=True)
class DeleteFile:
    path: str
    kind = "delete"

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path}


@dataclass(frozen=True)
class MoveFile:
    old_path: str
    new_path: str
    diff: BlobRef | None = None
    is_binary: bool = False
    kind = "moved"

    @property
    def path(self) -> str:
        return self.new_path

    def to_dict(self) -> dict:
        d: dict = {"type": self.kind, "oldPath": self.old_path, "newPath": self.new_path}
        if self.diff is not None:
            d["diffRef"] = self.diff.key
        if self.is_binary:
            d["isBinary"] = True
        return d


@dataclass(frozen=True)
class BinaryFile:
    path: str
    blob: BlobRef
    kind = "binary"

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path}


Operation = NewFile | ModifyFile | DeleteFile | MoveFile | BinaryFile


def operation_from_dict(record: str, path: str, d: dict) -> Operation:
    """Decode one entry descriptor; raises MalformedMigrationRecord."""
    if not isinstance(d, dict):
        raise MalformedMigrationRecord(record, f"entry for '{path}' is not an object")
    kind = d.get("type")
    diff_ref = d.get("diffRef")
    if diff_ref is not None and not isinstance(diff_ref, str):
        raise MalformedMigrationRecord(record, f"entry for '{path}' has a non-string diffRef")

    if kind == "new":
        return NewFile(path, BlobRef(record, template_key(path)))
    if kind == "binary":
        return BinaryFile(path, BlobRef(record, binary_key(path)))
    if kind == "delete":
        return DeleteFile(path)
    if kind == "modify":
        if not diff_ref:
            raise MalformedMigrationRecord(record, f"modify entry for '{path}' has no diffRef")
        return ModifyFile(path, BlobRef(record, diff_ref))
    if kind == "moved":
        old_path = d.get("oldPath")
        if not old_path:
            raise MalformedMigrationRecord(record, f"moved entry for '{path}' has no oldPath")
        return MoveFile(
            old_path=old_path,
            new_path=d.get("newPath") or path,
            diff=BlobRef(record, diff_ref) if diff_ref else None,
            is_binary=bool(d.get("isBinary", False)),
        )
    raise MalformedMigrationRecord(record, f"entry for '{path}' has unknown type {kind!r}")


# ── Records ───────────────────────────────────────────────────────


def timestamp_of(name: str) -> str:
    """The sortable timestamp prefix of a record name."""
    return name.split("_", 1)[0]


def make_record_name(label: str = "migration", now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    label = _LABEL_UNSAFE.sub("-", label).strip("-") or "migration"
    return f"{stamp}_{label}"


@dataclass(frozen=True)
class MigrationRecord:
    """One named, immutable unit of template change."""
    name: str
    entries: dict[str, Operation] = field(default_factory=dict)

    @property
    def timestamp(self) -> str:
        return timestamp_of(self.name)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "timestamp": self.timestamp,
            "entries": {path: op.to_dict() for path, op in self.entries.items()},
        }

    @classmethod
    def from_dict(cls, name: str, d: dict) -> "MigrationRecord":
        if not isinstance(d, dict):
            raise MalformedMigrationRecord(name, "record is not a JSON object")
        entries = d.get("entries")
        if not isinstance(entries, dict):
            raise MalformedMigrationRecord(name, "record has no 'entries' object")
        return cls(
            name=name,
            entries={path: operation_from_dict(name, path, e) for path, e in entries.items()},
        )


def sort_records(records) -> list[MigrationRecord]:
    return sorted(records, key=lambda r: r.name)


# ── On-disk store ─────────────────────────────────────────────────


class MigrationStore:
    """
    The migrations directory of a template.

    Listing never fails on a bad record; loading does. Callers that
    must be correct (the apply path) load one record at a time and stop
    on error; callers that explore (reconstruction) use load_history(),
    which skips bad records with a warning.
    """

    def __init__(self, template_root: Path):
        self.template_root = Path(template_root)
        self.migrations_dir = self.template_root / MIGRATIONS_DIR_NAME
        self.blobs = FileBlobStore(self.migrations_dir)

    def exists(self) -> bool:
        return self.migrations_dir.is_dir()

    def names(self) -> list[str]:
        """Record names in replay order."""
        if not self.migrations_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.migrations_dir.iterdir()
            if p.is_dir() and "_" in p.name
        )

    def load(self, name: str) -> MigrationRecord:
        path = self.migrations_dir / name / RECORD_FILE_NAME
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise MalformedMigrationRecord(name, f"{RECORD_FILE_NAME} is missing") from None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedMigrationRecord(name, str(e)) from None
        return MigrationRecord.from_dict(name, data)

    def load_history(self) -> list[MigrationRecord]:
        records = []
        for name in self.names():
            try:
                records.append(self.load(name))
            except MalformedMigrationRecord as e:
                logger.warning(f"Skipping malformed migration: {e}")
        return records

    def write(self, record: MigrationRecord, payloads: MemoryBlobStore) -> Path:
        """Persist a record and the payloads it references."""
        record_dir = self.migrations_dir / record.name
        if record_dir.exists():
            raise ValueError(f"Migration already exists: {record.name}")
        (record_dir / BLOB_DIR_NAME).mkdir(parents=True)
        for ref, data in payloads.items():
            self.blobs.write(BlobRef(record.name, ref.key), data)
        atomic_write(
            record_dir / RECORD_FILE_NAME,
            json.dumps(record.to_dict(), indent=2).encode("utf-8"),
        )
        logger.info(f"Wrote migration {record.name} ({len(record.entries)} entries)")
        return record_dir
