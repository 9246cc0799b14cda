"""
External Merge

The ExternalMerge branch of conflict resolution hands a file to an
outside tool. CommandMergeService runs a configured command via
subprocess, the way evaluator commands are run:

- the request is written to the command's stdin as JSON:
  {"path", "current", "template_diff", "user_diff"}
- the merged file content is read from stdout
- a non-zero exit, empty output or exceeding the timeout is a failure

Failures surface as ExternalMergeFailure; the resolver turns them into
a Keep.
"""

import json
import logging
import os
import shlex
import subprocess
import time
from pathlib import Path
from typing import Protocol

from .config import MergeConfig
from .errors import ExternalMergeFailure

logger = logging.getLogger(__name__)


class ExternalMergeService(Protocol):
    def merge(self, path: str, current_content: str, template_diff: str, user_diff: str | None) -> str:
        """Return merged content, or raise ExternalMergeFailure."""
        ...


class CommandMergeService:
    """Runs an external merge command with a bounded timeout."""

    def __init__(self, config: MergeConfig, cwd: Path | None = None):
        if not config.configured:
            raise ValueError("Merge command has no command or args specified")
        self.config = config
        self.cwd = cwd

    def _command(self) -> str | list[str]:
        if self.config.args:
            return list(self.config.args)
        return self.config.command if os.name == "nt" else shlex.split(self.config.command)

    def merge(self, path: str, current_content: str, template_diff: str, user_diff: str | None) -> str:
        request = json.dumps({
            "path": path,
            "current": current_content,
            "template_diff": template_diff,
            "user_diff": user_diff,
        })
        start = time.monotonic()
        try:
            result = subprocess.run(
                self._command(),
                shell=False,
                input=request,
                capture_output=True,
                text=True,
                cwd=str(self.cwd) if self.cwd else None,
                timeout=self.config.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            raise ExternalMergeFailure(
                f"Merge command timed out after {self.config.timeout_seconds}s for {path}"
            ) from None
        except OSError as e:
            raise ExternalMergeFailure(f"Merge command could not be started: {e}") from None

        duration_ms = (time.monotonic() - start) * 1000
        logger.debug(f"Merge command for {path} finished in {duration_ms:.0f}ms")

        if result.returncode != 0:
            raise ExternalMergeFailure(
                f"Merge command exited with code {result.returncode}: {result.stderr.strip()}"
            )
        if not result.stdout:
            raise ExternalMergeFailure(f"Merge command produced no output for {path}")
        return result.stdout
