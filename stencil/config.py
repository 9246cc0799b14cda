"""
Configuration

An optional stencil.json at the root of a template or target project:

    {
        "ignore": ["build/", "*.tmp"],
        "merge": {"args": ["my-merge-tool"], "timeout_seconds": 300},
        "context_lines": 3
    }

Every field is optional. Configuration is read once and handed to the
collaborators that need it as explicit values (ScanConfig, MergeConfig);
nothing inside the engine reads files behind the caller's back.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .diffcodec import CONTEXT_LINES

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "stencil.json"

DEFAULT_MERGE_TIMEOUT = 300

# Always ignored when scanning a project
DEFAULT_IGNORE_PATTERNS = (
    "migrations/**",
    ".git/**",
    "node_modules/**",
    "__pycache__/**",
    ".DS_Store",
    "*.log",
    ".env*",
    ".migrateignore",
    "applied-migrations.json",
    CONFIG_FILE_NAME,
)


@dataclass
class MergeConfig:
    """External merge command.

    Like evaluator commands: an explicit `args` list wins over `command`,
    which is split with shlex on POSIX.
    """
    command: str = ""
    args: list[str] | None = None
    timeout_seconds: int = DEFAULT_MERGE_TIMEOUT

    @property
    def configured(self) -> bool:
        return bool(self.args or self.command)

    def to_dict(self) -> dict:
        d: dict = {"timeout_seconds": self.timeout_seconds}
        if self.args:
            d["args"] = self.args
        if self.command:
            d["command"] = self.command
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "MergeConfig":
        timeout = d.get("timeout_seconds", DEFAULT_MERGE_TIMEOUT)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError(
                f"Invalid config: merge.timeout_seconds must be > 0, got {timeout!r}\n"
                f"  Default is {DEFAULT_MERGE_TIMEOUT} seconds"
            )
        return cls(
            command=d.get("command", ""),
            args=d.get("args"),
            timeout_seconds=timeout,
        )


@dataclass
class ScanConfig:
    """Ignore patterns applied when enumerating a project's files."""
    patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))

    @classmethod
    def for_project(cls, root: Path, extra: list[str] | None = None) -> "ScanConfig":
        """
        Defaults, then .gitignore, then .migrateignore, then extra.

        Later patterns win, so a "!pattern" in .migrateignore can
        re-include something .gitignore excluded.
        """
        patterns = list(DEFAULT_IGNORE_PATTERNS)
        for name in (".gitignore", ".migrateignore"):
            patterns.extend(_read_pattern_file(Path(root) / name))
        patterns.extend(extra or [])
        return cls(patterns=patterns)


@dataclass
class StencilConfig:
    ignore: list[str] = field(default_factory=list)
    merge: MergeConfig = field(default_factory=MergeConfig)
    context_lines: int = CONTEXT_LINES

    def to_dict(self) -> dict:
        return {
            "ignore": self.ignore,
            "merge": self.merge.to_dict(),
            "context_lines": self.context_lines,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StencilConfig":
        context_lines = d.get("context_lines", CONTEXT_LINES)
        if context_lines != CONTEXT_LINES:
            raise ValueError(
                f"Invalid config: context_lines must be {CONTEXT_LINES}, got {context_lines!r}\n"
                f"  The patch format uses a fixed context window"
            )
        ignore = d.get("ignore", [])
        if not isinstance(ignore, list):
            raise ValueError(f"Invalid config: ignore must be a list, got {type(ignore).__name__}")
        return cls(
            ignore=ignore,
            merge=MergeConfig.from_dict(d.get("merge", {})),
            context_lines=context_lines,
        )

    @classmethod
    def load(cls, root: Path) -> "StencilConfig":
        """Read stencil.json from root, or return defaults when absent."""
        path = Path(root) / CONFIG_FILE_NAME
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid config: {path} is not valid JSON: {e}") from None
        if not isinstance(data, dict):
            raise ValueError(f"Invalid config: {path} must contain a JSON object")
        return cls.from_dict(data)

    def scan_config(self, root: Path) -> ScanConfig:
        return ScanConfig.for_project(root, self.ignore)


def _read_pattern_file(path: Path) -> list[str]:
    if not path.is_file():
        return []
    patterns = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return patterns
