"""
Migration Generation

Compares the state a template's history reconstructs to with the
template as it is on disk, and turns the difference into a new record.

Text files get patches; binary files are carried wholesale. Deleted
files may really have been moved: when a chooser is supplied, each
deleted path is offered the new paths as possible destinations, and a
confirmed move replaces that path's "new" entry.
"""

import logging

from .blobs import BlobRef, MemoryBlobStore, binary_key, diff_key, template_key
from .conflict import InteractiveChoice
from .diffcodec import generate_patch
from .migration import (
    BinaryFile,
    DeleteFile,
    MigrationRecord,
    ModifyFile,
    MoveFile,
    NewFile,
)
from .snapshot import FileStateSnapshot

logger = logging.getLogger(__name__)

NOT_MOVED = "(not moved, it was deleted)"


def calculate_differences(
    name: str,
    old: FileStateSnapshot,
    new: FileStateSnapshot,
    chooser: InteractiveChoice | None = None,
) -> tuple[MigrationRecord, MemoryBlobStore]:
    """Return the record turning old into new, and the payloads it references."""
    entries: dict = {}
    payloads = MemoryBlobStore()

    for path in sorted(new.paths()):
        content = new.get(path)
        if path not in old:
            entries[path] = _added(name, path, content, new.is_binary(path), payloads)
            continue
        before = old.get(path)
        if before == content:
            continue
        if old.is_binary(path) or new.is_binary(path):
            # Binary content is replaced wholesale, never diffed
            entries[path] = _added(name, path, content, new.is_binary(path), payloads)
            continue
        patch = generate_patch(before, content, path, path)
        if patch:
            ref = payloads.put(BlobRef(name, diff_key(path)), patch)
            entries[path] = ModifyFile(path, ref)

    added = [p for p in sorted(new.paths()) if p not in old]
    for path in sorted(old.paths() - new.paths()):
        target = _ask_move_target(chooser, path, added)
        if target is not None and _binary_changed(path, target, old, new):
            logger.warning(
                f"Binary file {path} moved to {target} with new content, "
                f"recording it as delete + add"
            )
            target = None
        if target is None:
            entries[path] = DeleteFile(path)
            continue
        added.remove(target)
        entries[target] = _moved(name, path, target, old, new, payloads)

    # Drop payloads superseded by a move
    for ref in list(payloads.refs()):
        if not any(_references(op, ref) for op in entries.values()):
            payloads.discard(ref)

    return MigrationRecord(name=name, entries=entries), payloads


def _added(name, path, content, is_binary, payloads) -> NewFile | BinaryFile:
    if is_binary:
        return BinaryFile(path, payloads.put(BlobRef(name, binary_key(path)), content))
    return NewFile(path, payloads.put(BlobRef(name, template_key(path)), content))


def _moved(name, old_path, new_path, old, new, payloads) -> MoveFile:
    before = old.get(old_path)
    after = new.get(new_path)
    if old.is_binary(old_path) or new.is_binary(new_path):
        return MoveFile(old_path, new_path, is_binary=True)
    patch = generate_patch(before, after, old_path, new_path)
    if not patch:
        return MoveFile(old_path, new_path)
    ref = payloads.put(BlobRef(name, diff_key(new_path)), patch)
    return MoveFile(old_path, new_path, diff=ref)


def _ask_move_target(chooser, path: str, candidates: list[str]) -> str | None:
    if chooser is None or not candidates:
        return None
    answer = chooser.ask(
        f"File '{path}' was deleted. Was it moved or renamed? Pick its new location.",
        [NOT_MOVED, *candidates],
    )
    return answer if answer in candidates else None


def _references(op, ref: BlobRef) -> bool:
    return ref in (getattr(op, "blob", None), getattr(op, "diff", None))


def _binary_changed(old_path: str, new_path: str, old: FileStateSnapshot, new: FileStateSnapshot) -> bool:
    if not (old.is_binary(old_path) or new.is_binary(new_path)):
        return False
    return old.get(old_path) != new.get(new_path)
