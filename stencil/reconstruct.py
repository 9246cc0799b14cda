"""
State Reconstruction

Replays an ordered list of migration records into full snapshots.

Reconstruction is exploratory: it builds comparison material for the
similarity matcher and baselines for conflict resolution. It never
touches a project on disk, so it favors availability. A record that
cannot be replayed (a payload that does not resolve, a patch that does
not apply, undecodable content) is skipped with a warning and the replay
continues from the state before that record. Each record is applied to
a working copy and only frozen once every entry succeeded, so a skipped
record leaves no partial trace.
"""

import logging
from collections.abc import Iterable

from .blobs import BlobResolver
from .diffcodec import apply_patch
from .errors import (
    DiffContextMismatch,
    MalformedMigrationRecord,
    MalformedPatch,
    UnresolvableBlobReference,
)
from .migration import (
    INITIAL_STATE,
    BinaryFile,
    DeleteFile,
    MigrationRecord,
    ModifyFile,
    MoveFile,
    NewFile,
    sort_records,
)
from .snapshot import EMPTY_SNAPSHOT, FileStateSnapshot, WorkingState

logger = logging.getLogger(__name__)

# Failures that make a single record unreplayable
REPLAY_ERRORS = (
    MalformedMigrationRecord,
    MalformedPatch,
    DiffContextMismatch,
    UnresolvableBlobReference,
)


class StateReconstructor:
    """Replays migration records against payloads from a BlobResolver."""

    def __init__(self, blobs: BlobResolver):
        self.blobs = blobs

    def reconstruct_cumulative(self, records: Iterable[MigrationRecord]) -> FileStateSnapshot:
        """State after every replayable record, in name order."""
        state = EMPTY_SNAPSHOT
        for record in sort_records(records):
            state = self._replay_or_skip(state, record)
        return state

    def reconstruct_incremental(
        self, records: Iterable[MigrationRecord],
    ) -> dict[str, FileStateSnapshot]:
        """
        Snapshot after each record, keyed by record name, in replay order.

        The first key is always INITIAL_STATE (the empty snapshot). A
        skipped record gets no entry of its own.
        """
        states: dict[str, FileStateSnapshot] = {INITIAL_STATE: EMPTY_SNAPSHOT}
        state = EMPTY_SNAPSHOT
        for record in sort_records(records):
            try:
                state = self.replay(state, record)
            except REPLAY_ERRORS as e:
                logger.warning(f"Skipping migration {record.name}: {e}")
                continue
            states[record.name] = state
        return states

    def _replay_or_skip(self, state: FileStateSnapshot, record: MigrationRecord) -> FileStateSnapshot:
        try:
            return self.replay(state, record)
        except REPLAY_ERRORS as e:
            logger.warning(f"Skipping migration {record.name}: {e}")
            return state

    # ── Single record ─────────────────────────────────────────────

    def replay(self, state: FileStateSnapshot, record: MigrationRecord) -> FileStateSnapshot:
        """Apply one record to a snapshot. Raises on the first failing entry."""
        work = state.working_copy()
        for path, op in record.entries.items():
            self._apply_operation(work, record, path, op)
        return work.freeze()

    def _apply_operation(self, work: WorkingState, record: MigrationRecord, path: str, op):
        if isinstance(op, NewFile):
            work.set_text(path, self._text(record, op.blob))
        elif isinstance(op, BinaryFile):
            work.set_binary(path, self.blobs.resolve(op.blob))
        elif isinstance(op, DeleteFile):
            work.remove(path)
        elif isinstance(op, ModifyFile):
            if path in work.binary:
                raise MalformedMigrationRecord(record.name, f"modify entry targets binary file '{path}'")
            current = work.files.get(path, "")
            work.set_text(path, apply_patch(current, self._text(record, op.diff)))
        elif isinstance(op, MoveFile):
            self._apply_move(work, record, op)
        else:
            raise MalformedMigrationRecord(record.name, f"unknown operation for '{path}'")

    def _apply_move(self, work: WorkingState, record: MigrationRecord, op: MoveFile):
        if op.old_path not in work.files:
            logger.warning(
                f"Migration {record.name}: cannot move '{op.old_path}' to "
                f"'{op.new_path}', source is not present"
            )
            return
        work.move(op.old_path, op.new_path)
        if op.diff is not None and not op.is_binary and op.new_path not in work.binary:
            patched = apply_patch(work.files[op.new_path], self._text(record, op.diff))
            work.set_text(op.new_path, patched)

    def _text(self, record: MigrationRecord, ref) -> str:
        data = self.blobs.resolve(ref)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedMigrationRecord(record.name, f"payload {ref.key} is not UTF-8 text") from None
