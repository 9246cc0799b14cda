"""
Templates and Derived Projects

The high-level API the CLI talks to. A *template* is a directory whose
history lives in migrations/; a *target* is a project derived from it,
carrying an applied-migrations.json ledger.

    template = Template("/path/to/template")
    template.generate("add-auth")          # record what changed

    init(template_root, target)            # new project from the history
    check(target)                          # which migrations are pending
    update(target, resolver)               # apply them, fail-fast
    sync(template_root, target, chooser)   # adopt an existing project

Applying is the one place that writes into a user's project, so it
favors correctness over progress. Each record is staged completely in
memory before anything is written: every payload must resolve and every
conflict must be resolved first. Records are applied strictly in name
order, the ledger is saved after each one, and the run stops at the
first record that fails. Records already applied stay applied.
"""

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .blobs import BlobResolver, atomic_write
from .config import CONFIG_FILE_NAME, StencilConfig
from .conflict import (
    AutoChoice,
    Conflict,
    ConflictAction,
    ConflictResolution,
    ConflictResolver,
    InteractiveChoice,
)
from .diffcodec import apply_patch, generate_patch
from .differences import calculate_differences
from .errors import (
    DiffContextMismatch,
    LedgerError,
    MalformedMigrationRecord,
    StencilError,
    TemplateError,
)
from .ledger import LEDGER_FILE_NAME, Ledger
from .merge import ExternalMergeService
from .migration import (
    INITIAL_STATE,
    MIGRATIONS_DIR_NAME,
    BinaryFile,
    DeleteFile,
    MigrationRecord,
    MigrationStore,
    ModifyFile,
    MoveFile,
    NewFile,
    make_record_name,
    timestamp_of,
)
from .reconstruct import StateReconstructor
from .scanner import is_binary_content, scan
from .similarity import (
    SimilarityScore,
    find_best_match,
    rank,
    score_history,
)
from .snapshot import FileStateSnapshot

logger = logging.getLogger(__name__)

# Never copied from a template into a new project
TEMPLATE_META_NAMES = frozenset({MIGRATIONS_DIR_NAME, LEDGER_FILE_NAME, ".git", CONFIG_FILE_NAME})

_DELETE = object()


class Template:
    """A template directory and its migration history."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise TemplateError(f"Template directory does not exist: {self.root}")
        self.store = MigrationStore(self.root)
        self.config = StencilConfig.load(self.root)
        self.reconstructor = StateReconstructor(self.store.blobs)
        self._history: list[MigrationRecord] | None = None

    def names(self) -> list[str]:
        return self.store.names()

    def history(self) -> list[MigrationRecord]:
        """Every loadable record, in replay order. Bad records are skipped."""
        if self._history is None:
            self._history = self.store.load_history()
        return self._history

    def reconstruct(self) -> FileStateSnapshot:
        return self.reconstructor.reconstruct_cumulative(self.history())

    def incremental(self) -> dict[str, FileStateSnapshot]:
        return self.reconstructor.reconstruct_incremental(self.history())

    def baseline_before(self, name: str) -> FileStateSnapshot:
        """State produced by every record that sorts before name."""
        return self.reconstructor.reconstruct_cumulative(
            r for r in self.history() if r.name < name
        )

    def generate(
        self,
        label: str = "migration",
        chooser: InteractiveChoice | None = None,
        now=None,
    ) -> MigrationRecord | None:
        """
        Record the difference between the history and the template on disk.

        Returns the new record, or None when nothing changed.
        """
        current = scan(self.root, self.config.scan_config(self.root))
        name = make_record_name(label, now)
        record, payloads = calculate_differences(name, self.reconstruct(), current, chooser)
        if not record.entries:
            logger.info("No changes detected, no migration generated")
            return None
        self.store.write(record, payloads)
        self._history = None
        return record


def generate_migration(
    template_root: Path,
    label: str = "migration",
    chooser: InteractiveChoice | None = None,
    now=None,
) -> MigrationRecord | None:
    return Template(template_root).generate(label, chooser, now)


# ── Applying records ──────────────────────────────────────────────


@dataclass
class ConflictOutcome:
    record: str
    path: str
    resolution: ConflictResolution

    def to_dict(self) -> dict:
        return {"record": self.record, "path": self.path, **self.resolution.to_dict()}


class _TargetView:
    """The target project as seen through the changes staged so far."""

    def __init__(self, target: Path):
        self.target = target
        self.staged: dict[str, object] = {}

    def file_path(self, rel_path: str) -> Path:
        path = (self.target / rel_path).resolve()
        try:
            path.relative_to(self.target.resolve())
        except ValueError:
            raise TemplateError(f"Migration path escapes the project: {rel_path}") from None
        return path

    def read(self, rel_path: str) -> str | bytes | None:
        if rel_path in self.staged:
            value = self.staged[rel_path]
            return None if value is _DELETE else value
        path = self.file_path(rel_path)
        if not path.is_file():
            return None
        data = path.read_bytes()
        return data if is_binary_content(data) else data.decode("utf-8")

    def read_text(self, rel_path: str) -> str | None:
        content = self.read(rel_path)
        if isinstance(content, bytes):
            raise TemplateError(f"Cannot patch binary file: {rel_path}")
        return content

    def stage(self, rel_path: str, value):
        self.file_path(rel_path)
        self.staged[rel_path] = value

    def commit(self):
        for rel_path, value in self.staged.items():
            path = self.file_path(rel_path)
            if value is _DELETE:
                if path.is_file():
                    path.unlink()
            elif isinstance(value, bytes):
                atomic_write(path, value)
            else:
                atomic_write(path, value.encode("utf-8"))


def apply_record(
    record: MigrationRecord,
    blobs: BlobResolver,
    target: Path,
    resolver: ConflictResolver | None = None,
    baseline: Callable[[], FileStateSnapshot | None] | None = None,
) -> list[ConflictOutcome]:
    """
    Apply one record to a project on disk.

    Raises before writing anything if a payload does not resolve, a patch
    is malformed, or a patch conflicts and there is no resolver. Returns
    the conflicts that were resolved along the way.
    """
    view = _TargetView(Path(target))
    conflicts: list[ConflictOutcome] = []

    def patched(path: str, current: str, patch: str) -> str:
        try:
            return apply_patch(current, patch)
        except DiffContextMismatch as e:
            if resolver is None:
                raise
            conflict = Conflict(
                path=path,
                current_content=current,
                failed_patch=patch,
                error=e,
                record_name=record.name,
                baseline=baseline() if baseline else None,
            )
            resolution = resolver.resolve(conflict)
            conflicts.append(ConflictOutcome(record.name, path, resolution))
            return resolution.content

    for path, op in record.entries.items():
        if isinstance(op, NewFile):
            view.stage(path, _text(record, blobs, op.blob))
        elif isinstance(op, BinaryFile):
            view.stage(path, blobs.resolve(op.blob))
        elif isinstance(op, DeleteFile):
            view.stage(path, _DELETE)
        elif isinstance(op, ModifyFile):
            current = view.read_text(path)
            if current is None:
                logger.warning(f"Migration {record.name}: {path} no longer exists, skipping its changes")
                continue
            view.stage(path, patched(path, current, _text(record, blobs, op.diff)))
        elif isinstance(op, MoveFile):
            _stage_move(record, blobs, view, op, patched)
        else:
            raise MalformedMigrationRecord(record.name, f"unknown operation for '{path}'")

    view.commit()
    return conflicts


def _stage_move(record, blobs, view: _TargetView, op: MoveFile, patched):
    content = view.read(op.old_path)
    if content is None:
        if view.read(op.new_path) is None:
            logger.warning(
                f"Migration {record.name}: cannot move {op.old_path} to {op.new_path}, "
                f"source no longer exists"
            )
            return
        # Already moved by the user; still bring over the content changes
        content = view.read(op.new_path)
    else:
        view.stage(op.old_path, _DELETE)

    if op.diff is not None and not op.is_binary and isinstance(content, str):
        content = patched(op.new_path, content, _text(record, blobs, op.diff))
    view.stage(op.new_path, content)


def _text(record: MigrationRecord, blobs: BlobResolver, ref) -> str:
    try:
        return blobs.resolve(ref).decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedMigrationRecord(record.name, f"payload {ref.key} is not UTF-8 text") from None


# ── Flows ─────────────────────────────────────────────────────────


@dataclass
class UpdateResult:
    pending: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    failed: str | None = None
    error: str | None = None
    conflicts: list[ConflictOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed is None

    def to_dict(self) -> dict:
        return {
            "pending": self.pending,
            "applied": self.applied,
            "failed": self.failed,
            "error": self.error,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def _apply_names(
    template: Template,
    names: list[str],
    target: Path,
    ledger: Ledger,
    resolver: ConflictResolver | None,
) -> UpdateResult:
    result = UpdateResult(pending=list(names))
    for name in names:
        logger.info(f"Applying {name}")
        try:
            record = template.store.load(name)
            outcomes = apply_record(
                record, template.store.blobs, target, resolver,
                baseline=lambda n=name: template.baseline_before(n),
            )
        except (StencilError, OSError) as e:
            logger.error(f"Failed to apply migration {name}: {e}")
            result.failed = name
            result.error = str(e)
            break
        ledger.mark_applied(name)
        ledger.save(target)
        result.applied.append(name)
        result.conflicts.extend(outcomes)
    return result


def check(target: Path) -> list[str]:
    """Pending migration names for a derived project."""
    target = Path(target)
    ledger = Ledger.load(target)
    template = Template(Path(ledger.template_location))
    return ledger.pending(template.names())


def update(target: Path, resolver: ConflictResolver | None = None) -> UpdateResult:
    """Apply every pending migration, stopping at the first failure."""
    target = Path(target)
    ledger = Ledger.load(target)
    template = Template(Path(ledger.template_location))
    pending = ledger.pending(template.names())
    if not pending:
        logger.info("No pending migrations")
        return UpdateResult()
    return _apply_names(template, pending, target, ledger, resolver)


@dataclass
class InitResult:
    applied: list[str] = field(default_factory=list)
    copied: int = 0
    failed: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "copied": self.copied,
            "failed": self.failed,
            "error": self.error,
        }


def init(template_root: Path, target: Path) -> InitResult:
    """
    Create a new project from a template.

    With a history, every migration is applied in order; without one
    the template's files are copied as they are.
    """
    template = Template(template_root)
    target = Path(target).resolve()
    if target.exists():
        if not target.is_dir():
            raise TemplateError(f"Target path exists but is not a directory: {target}")
        if any(target.iterdir()):
            raise TemplateError(f"Target directory is not empty: {target}")
    target.mkdir(parents=True, exist_ok=True)

    ledger = Ledger(template_location=str(template.root))
    names = template.names()
    if names:
        ledger.save(target)
        applied = _apply_names(template, names, target, ledger, resolver=None)
        return InitResult(applied=applied.applied, failed=applied.failed, error=applied.error)

    copied = copy_template(template.root, target)
    ledger.save(target)
    return InitResult(copied=copied)


def copy_template(source: Path, dest: Path) -> int:
    """Copy a template's files, skipping its metadata. Returns files copied."""
    count = 0
    for item in sorted(source.iterdir()):
        if item.name in TEMPLATE_META_NAMES or item.is_symlink():
            continue
        if item.is_dir():
            (dest / item.name).mkdir(exist_ok=True)
            count += copy_template(item, dest / item.name)
        elif item.is_file():
            shutil.copy2(item, dest / item.name)
            count += 1
    return count


@dataclass
class SyncResult:
    scores: list[SimilarityScore] = field(default_factory=list)
    match: SimilarityScore | None = None
    pending: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)
    merged: list[str] = field(default_factory=list)
    written: bool = False

    def to_dict(self) -> dict:
        return {
            "match": self.match.to_dict() if self.match else None,
            "pending": self.pending,
            "added": self.added,
            "replaced": self.replaced,
            "merged": self.merged,
            "written": self.written,
            "scores": [s.to_dict() for s in self.scores],
        }


def pending_after(names: list[str], match_name: str) -> list[str]:
    """Migrations still to apply once a project is synced at match_name."""
    if match_name == INITIAL_STATE or match_name not in names:
        return list(names)
    return names[names.index(match_name) + 1:]


def sync(
    template_root: Path,
    target: Path,
    chooser: InteractiveChoice,
    merge_service: ExternalMergeService | None = None,
) -> SyncResult:
    """
    Adopt an existing project that has no ledger yet.

    Finds the point in the template's history the project most resembles,
    offers to add missing files and reconcile differing ones, and on
    confirmation writes a ledger marking everything up to that point as
    applied. A result without a match means the project does not fit the
    history at all and should be started fresh.
    """
    target = Path(target).resolve()
    if Ledger.exists(target):
        raise LedgerError(f"{target} already has a {LEDGER_FILE_NAME}. Use 'update' instead.")
    template = Template(template_root)
    names = template.names()
    if not names:
        raise TemplateError(f"Template has no migrations: {template.root}. Use 'init' instead.")

    evaluated = scan(target, StencilConfig.load(target).scan_config(target))
    if len(evaluated) == 0:
        raise TemplateError(f"{target} appears to be empty. Use 'init' instead.")

    history = template.incremental()
    timestamps = {name: timestamp_of(name) for name in history if name != INITIAL_STATE}
    scores = score_history(evaluated, history, timestamps)
    result = SyncResult(scores=rank(scores), match=find_best_match(scores))
    if result.match is None:
        logger.info("No acceptable match in the template history")
        return result

    match = result.match
    result.pending = pending_after(names, match.candidate_name)
    snapshot = history[match.candidate_name]

    for path in match.missing_files:
        answer = chooser.ask(f"{path} exists in the template but not in your project.", ["skip", "add"])
        if answer == "add":
            _write(target, path, snapshot.get(path))
            result.added.append(path)

    for path in match.partial_matches:
        options = ["skip", "replace"]
        mergeable = (merge_service is not None
                     and not snapshot.is_binary(path) and not evaluated.is_binary(path))
        if mergeable:
            options.append("merge")
        answer = chooser.ask(f"{path} differs from the template version.", options)
        if answer == "replace":
            _write(target, path, snapshot.get(path))
            result.replaced.append(path)
        elif answer == "merge":
            merged = _merge_partial(path, evaluated.get(path), snapshot, merge_service)
            if merged.action is ConflictAction.EXTERNAL_MERGE:
                _write(target, path, merged.content)
                result.merged.append(path)

    confirm = chooser.ask(
        f"Create {LEDGER_FILE_NAME} marking {match.candidate_name} as the sync point "
        f"({len(result.pending)} migration(s) left to apply)?",
        ["no", "yes"],
    )
    if confirm != "yes":
        logger.info("Synchronization cancelled")
        return result

    ledger = Ledger(template_location=str(template.root))
    for name in names:
        if name not in result.pending:
            ledger.mark_applied(name)
    ledger.save(target)
    result.written = True
    return result


def _merge_partial(path, current, snapshot, merge_service) -> ConflictResolution:
    template_content = snapshot.get(path)
    conflict = Conflict(
        path=path,
        current_content=current,
        failed_patch=generate_patch(current, template_content, path, path),
        error=ValueError(f"{path} differs from the template"),
        baseline=snapshot,
    )
    resolver = ConflictResolver(AutoChoice([ConflictAction.EXTERNAL_MERGE.value]), merge_service)
    return resolver.resolve(conflict)


def _write(target: Path, rel_path: str, content: str | bytes):
    view = _TargetView(target)
    view.stage(rel_path, content)
    view.commit()
