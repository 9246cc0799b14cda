"""
Shared pytest configuration and fixtures.

On Windows CI runners a spurious KeyboardInterrupt can reach the main
thread during subprocess-heavy tests, so SIGINT is ignored there.

The `template_history` fixture builds a template whose history has three
migrations:

    base     README.md, src/main.py, config.json
    update   src/main.py line 1 changed, docs/guide.md added
    cleanup  config.json deleted, docs/guide.md moved to docs/manual.md
"""

import os
import signal
from datetime import datetime, timezone
from pathlib import Path

import pytest

from stencil.template import Template

_WINDOWS_CI = os.name == "nt" and os.environ.get("CI") == "true"

MAIN_V1 = "print('v1')\nline2\nline3\nline4\nline5\n"
MAIN_V2 = "print('v2')\nline2\nline3\nline4\nline5\n"
GUIDE = "# Guide\n\nRead me first.\n"


def pytest_configure(config):
    if _WINDOWS_CI:
        try:
            signal.signal(signal.SIGINT, signal.SIG_IGN)
        except (OSError, ValueError):
            pass


def write_tree(root: Path, files: dict):
    """Write {relative path: str | bytes} under root."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8", newline="")


def read_tree(root: Path) -> dict:
    """Every regular file under root as {relative path: text}."""
    return {
        p.relative_to(root).as_posix(): p.read_text(encoding="utf-8")
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def at(month: int) -> datetime:
    return datetime(2025, month, 1, tzinfo=timezone.utc)


class MoveAnswers:
    """Chooser that confirms specific moves and declines everything else."""

    def __init__(self, moves: dict[str, str]):
        self.moves = moves

    def ask(self, prompt: str, options: list[str]) -> str:
        for old, new in self.moves.items():
            if f"'{old}'" in prompt and new in options:
                return new
        return options[0]


class TemplateHistory:
    """Builds the three-step history one stage at a time."""

    def __init__(self, root: Path):
        self.root = root
        self.names: list[str] = []

    def template(self) -> Template:
        return Template(self.root)

    def base(self):
        write_tree(self.root, {
            "README.md": "# App\n",
            "src/main.py": MAIN_V1,
            "config.json": '{"debug": false}\n',
        })
        return self._generate("base", 1)

    def update(self):
        write_tree(self.root, {"src/main.py": MAIN_V2, "docs/guide.md": GUIDE})
        return self._generate("update", 2)

    def cleanup(self):
        (self.root / "config.json").unlink()
        (self.root / "docs/guide.md").rename(self.root / "docs/manual.md")
        return self._generate("cleanup", 3, MoveAnswers({"docs/guide.md": "docs/manual.md"}))

    def build(self):
        self.base()
        self.update()
        self.cleanup()
        return self

    def _generate(self, label, month, chooser=None):
        record = self.template().generate(label, chooser, now=at(month))
        assert record is not None
        self.names.append(record.name)
        return record


@pytest.fixture
def history(tmp_path):
    """A template directory with no migrations yet; call its stages."""
    root = tmp_path / "template"
    root.mkdir()
    return TemplateHistory(root)


@pytest.fixture
def template_history(history):
    """A template with the full three-migration history."""
    return history.build()
