"""Migration records, their descriptors and the on-disk store."""

import json
from datetime import datetime, timezone

import pytest

from stencil.blobs import BlobRef, MemoryBlobStore
from stencil.errors import MalformedMigrationRecord, UnresolvableBlobReference
from stencil.migration import (
    BinaryFile,
    DeleteFile,
    MigrationRecord,
    MigrationStore,
    ModifyFile,
    MoveFile,
    NewFile,
    make_record_name,
    operation_from_dict,
    timestamp_of,
)

NAME = "2025-06-23T06-46-18_add-auth"


class TestNames:
    def test_make_record_name(self):
        now = datetime(2025, 6, 23, 6, 46, 18, tzinfo=timezone.utc)
        assert make_record_name("add auth!", now) == "2025-06-23T06-46-18_add-auth"

    def test_empty_label_falls_back(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert make_record_name("///", now).endswith("_migration")

    def test_timestamp_of(self):
        assert timestamp_of(NAME) == "2025-06-23T06-46-18"

    def test_names_sort_in_time_order(self):
        early = make_record_name("z", datetime(2024, 12, 31, tzinfo=timezone.utc))
        late = make_record_name("a", datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert sorted([late, early]) == [early, late]


class TestDescriptors:
    def test_new_binary_delete(self):
        assert operation_from_dict(NAME, "a.txt", {"type": "new"}) == NewFile(
            "a.txt", BlobRef(NAME, "a.txt.template"))
        assert operation_from_dict(NAME, "logo.png", {"type": "binary"}) == BinaryFile(
            "logo.png", BlobRef(NAME, "logo.png.binary"))
        assert operation_from_dict(NAME, "old.txt", {"type": "delete"}) == DeleteFile("old.txt")

    def test_modify_needs_diff_ref(self):
        op = operation_from_dict(NAME, "a.txt", {"type": "modify", "diffRef": "a.txt.diff"})
        assert op == ModifyFile("a.txt", BlobRef(NAME, "a.txt.diff"))
        with pytest.raises(MalformedMigrationRecord):
            operation_from_dict(NAME, "a.txt", {"type": "modify"})

    def test_moved(self):
        op = operation_from_dict(NAME, "docs/new.md", {
            "type": "moved", "oldPath": "docs/old.md", "newPath": "docs/new.md",
            "diffRef": "docs/new.md.diff",
        })
        assert op.path == "docs/new.md"
        assert op.old_path == "docs/old.md"
        assert op.diff == BlobRef(NAME, "docs/new.md.diff")
        assert not op.is_binary

    def test_moved_without_old_path(self):
        with pytest.raises(MalformedMigrationRecord):
            operation_from_dict(NAME, "b", {"type": "moved"})

    def test_unknown_type(self):
        with pytest.raises(MalformedMigrationRecord, match="unknown type"):
            operation_from_dict(NAME, "a", {"type": "rename"})

    def test_descriptor_round_trip(self):
        op = MoveFile("a.png", "b.png", is_binary=True)
        assert op.to_dict() == {"type": "moved", "oldPath": "a.png", "newPath": "b.png", "isBinary": True}
        assert operation_from_dict(NAME, "b.png", op.to_dict()) == op

    def test_record_without_entries(self):
        with pytest.raises(MalformedMigrationRecord):
            MigrationRecord.from_dict(NAME, {"name": NAME})


class TestStore:
    def _record(self, name=NAME):
        payloads = MemoryBlobStore()
        ref = payloads.put(BlobRef("pending", "src/app.py.template"), "print('hi')\n")
        return MigrationRecord(name, {"src/app.py": NewFile("src/app.py", ref)}), payloads

    def test_write_and_load(self, tmp_path):
        store = MigrationStore(tmp_path)
        record, payloads = self._record()
        record_dir = store.write(record, payloads)

        assert (record_dir / "__files" / "src" / "app.py.template").read_text() == "print('hi')\n"
        data = json.loads((record_dir / "migration.json").read_text())
        assert data["entries"] == {"src/app.py": {"type": "new", "path": "src/app.py"}}

        loaded = store.load(NAME)
        assert loaded.entries["src/app.py"].blob == BlobRef(NAME, "src/app.py.template")
        assert store.blobs.resolve(loaded.entries["src/app.py"].blob) == b"print('hi')\n"

    def test_records_are_write_once(self, tmp_path):
        store = MigrationStore(tmp_path)
        record, payloads = self._record()
        store.write(record, payloads)
        with pytest.raises(ValueError, match="already exists"):
            store.write(record, payloads)

    def test_names_only_lists_record_directories(self, tmp_path):
        store = MigrationStore(tmp_path)
        assert store.names() == []
        (tmp_path / "migrations" / "2025-02-01T00-00-00_b").mkdir(parents=True)
        (tmp_path / "migrations" / "2025-01-01T00-00-00_a").mkdir()
        (tmp_path / "migrations" / "notes").mkdir()
        (tmp_path / "migrations" / "README_md").write_text("")
        assert store.names() == ["2025-01-01T00-00-00_a", "2025-02-01T00-00-00_b"]

    def test_load_missing_or_corrupt_record(self, tmp_path):
        store = MigrationStore(tmp_path)
        (tmp_path / "migrations" / NAME).mkdir(parents=True)
        with pytest.raises(MalformedMigrationRecord, match="missing"):
            store.load(NAME)
        (tmp_path / "migrations" / NAME / "migration.json").write_text("{not json")
        with pytest.raises(MalformedMigrationRecord):
            store.load(NAME)

    def test_load_history_skips_bad_records(self, tmp_path, caplog):
        store = MigrationStore(tmp_path)
        record, payloads = self._record()
        store.write(record, payloads)
        bad = tmp_path / "migrations" / "2025-07-01T00-00-00_bad"
        bad.mkdir()
        (bad / "migration.json").write_text('{"entries": []}')

        history = store.load_history()
        assert [r.name for r in history] == [NAME]
        assert "2025-07-01T00-00-00_bad" in caplog.text

    def test_blob_keys_cannot_escape_record(self, tmp_path):
        store = MigrationStore(tmp_path)
        (tmp_path / "secret.txt").write_text("x")
        with pytest.raises(UnresolvableBlobReference):
            store.blobs.resolve(BlobRef(NAME, "../../../secret.txt"))
