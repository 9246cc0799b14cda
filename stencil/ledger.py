"""
Applied-Migrations Ledger

applied-migrations.json at the root of a derived project records which
template it follows and which migrations it already has:

    {
        "version": "1.0.0",
        "templateLocation": "/path/to/template",
        "appliedMigrations": [
            {"name": "...", "timestamp": "...", "appliedAt": "2025-06-23T06:46:18+00:00"}
        ]
    }

The apply path saves the ledger after every record that landed, so the
file always lists exactly the migrations that were applied.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .blobs import atomic_write
from .errors import LedgerError
from .migration import timestamp_of

LEDGER_FILE_NAME = "applied-migrations.json"
LEDGER_VERSION = "1.0.0"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class AppliedMigration:
    name: str
    timestamp: str
    applied_at: str

    def to_dict(self) -> dict:
        return {"name": self.name, "timestamp": self.timestamp, "appliedAt": self.applied_at}

    @classmethod
    def from_dict(cls, d: dict) -> "AppliedMigration":
        return cls(
            name=d["name"],
            timestamp=d.get("timestamp", timestamp_of(d["name"])),
            applied_at=d.get("appliedAt", ""),
        )


@dataclass
class Ledger:
    template_location: str
    applied: list[AppliedMigration] = field(default_factory=list)
    version: str = LEDGER_VERSION

    def applied_names(self) -> set[str]:
        return {m.name for m in self.applied}

    def pending(self, all_names: list[str]) -> list[str]:
        """Names not applied yet, in replay order."""
        done = self.applied_names()
        return [name for name in sorted(all_names) if name not in done]

    def mark_applied(self, name: str, applied_at: str | None = None) -> AppliedMigration:
        entry = AppliedMigration(name, timestamp_of(name), applied_at or utc_now_iso())
        self.applied.append(entry)
        return entry

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "templateLocation": self.template_location,
            "appliedMigrations": [m.to_dict() for m in self.applied],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Ledger":
        return cls(
            template_location=d["templateLocation"],
            applied=[AppliedMigration.from_dict(m) for m in d.get("appliedMigrations", [])],
            version=d.get("version", LEDGER_VERSION),
        )

    # ── Persistence ───────────────────────────────────────────────

    @staticmethod
    def path_for(target: Path) -> Path:
        return Path(target) / LEDGER_FILE_NAME

    @classmethod
    def exists(cls, target: Path) -> bool:
        return cls.path_for(target).exists()

    @classmethod
    def load(cls, target: Path) -> "Ledger":
        path = cls.path_for(target)
        if not path.exists():
            raise LedgerError(
                f"No {LEDGER_FILE_NAME} found in {target}\n"
                f"  Run 'stencil init' to create a project from a template, "
                f"or 'stencil sync' to adopt one."
            )
        try:
            return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise LedgerError(f"Unreadable ledger {path}: {e}") from None

    def save(self, target: Path):
        atomic_write(self.path_for(target), json.dumps(self.to_dict(), indent=2).encode("utf-8"))
