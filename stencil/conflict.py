"""
Conflict Resolution

A conflict is what happens when a template patch no longer fits a file
the user has changed. The resolver walks one conflict through

    Idle -> Presenting -> {Keep, Template, ExternalMerge} -> Resolved

Presenting blocks on an InteractiveChoice (a console prompt, or a
scripted chooser in automation and tests). The outcomes:

- Keep: the user's current content, untouched.
- Template: forced extraction of the patch's target side (context and
  insertion lines). If nothing can be extracted the user's content is
  kept instead of writing an empty file.
- ExternalMerge: an ExternalMergeService gets the current content, the
  failed template patch and the user's own diff from the baseline. Any
  failure or timeout falls back to Keep.

Fallbacks are final: the resolver never retries Template or
ExternalMerge on its own.
"""

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .diffcodec import extract_target_lines, generate_patch
from .errors import ExternalMergeFailure
from .merge import ExternalMergeService
from .snapshot import FileStateSnapshot

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_LINES = 10
PATCH_PREVIEW_LINES = 20


class ConflictAction(Enum):
    KEEP = "keep"
    TEMPLATE = "template"
    EXTERNAL_MERGE = "merge"


class ResolverState(Enum):
    IDLE = "idle"
    PRESENTING = "presenting"
    RESOLVED = "resolved"


@dataclass
class Conflict:
    """A patch that failed to apply to a file."""
    path: str
    current_content: str
    failed_patch: str
    error: Exception
    record_name: str = ""
    baseline: FileStateSnapshot | None = None


@dataclass
class ConflictResolution:
    action: ConflictAction
    content: str
    fell_back: bool = False

    def to_dict(self) -> dict:
        return {"action": self.action.value, "fell_back": self.fell_back}


# ── Choosers ──────────────────────────────────────────────────────


class InteractiveChoice(Protocol):
    def ask(self, prompt: str, options: list[str]) -> str:
        """Block until one of options is chosen and return it."""
        ...


class ConsoleChoice:
    """
    Numbered prompt on a terminal.

    Options are listed safest-first; anything other than a valid number
    or option name selects the first one.
    """

    def __init__(self, input_fn=input, out=None):
        self.input_fn = input_fn
        self.out = out or sys.stdout

    def ask(self, prompt: str, options: list[str]) -> str:
        print(prompt, file=self.out)
        for i, option in enumerate(options, 1):
            print(f"  {i}. {option}", file=self.out)
        answer = self.input_fn(f"Enter your choice (1-{len(options)}): ").strip()
        if answer in options:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        logger.warning(f"Invalid choice {answer!r}, using '{options[0]}'")
        return options[0]


class AutoChoice:
    """Answers from a preference list, for non-interactive runs."""

    def __init__(self, preferences: list[str] | None = None):
        self.preferences = list(preferences or [])
        self.asked: list[tuple[str, list[str], str]] = []

    def ask(self, prompt: str, options: list[str]) -> str:
        choice = next((p for p in self.preferences if p in options), options[0])
        self.asked.append((prompt, list(options), choice))
        return choice


# ── Resolver ──────────────────────────────────────────────────────


def preview(text: str, max_lines: int) -> str:
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[:max_lines]) + f"\n... ({len(lines) - max_lines} more lines)"


def compute_user_diff(path: str, current_content: str, baseline: FileStateSnapshot | None) -> str | None:
    """
    What the user changed relative to the last common baseline.

    None when the file still matches the baseline. A file the baseline
    does not know (or cannot provide) is reported as user-created.
    """
    if baseline is None:
        logger.warning(f"Could not calculate user diff for {path}: no baseline available")
        return generate_patch("", current_content, "/dev/null", path)
    base = baseline.text(path)
    if base is None:
        return generate_patch("", current_content, "/dev/null", path)
    if base == current_content:
        return None
    return generate_patch(base, current_content, f"{path}.baseline", path)


class ConflictResolver:
    """Turns a Conflict into the content that will be written."""

    def __init__(self, chooser: InteractiveChoice, merge_service: ExternalMergeService | None = None):
        self.chooser = chooser
        self.merge_service = merge_service
        self.state = ResolverState.IDLE

    def options(self) -> list[str]:
        options = [ConflictAction.KEEP.value, ConflictAction.TEMPLATE.value]
        if self.merge_service is not None:
            options.append(ConflictAction.EXTERNAL_MERGE.value)
        return options

    def describe(self, conflict: Conflict) -> str:
        rule = "=" * 50
        lines = [
            "",
            "Merge conflict",
            rule,
            f"File:  {conflict.path}",
        ]
        if conflict.record_name:
            lines.append(f"Migration: {conflict.record_name}")
        lines += [
            f"Error: {conflict.error}",
            rule,
            "",
            "Current content:",
            "-" * 30,
            preview(conflict.current_content, CONTENT_PREVIEW_LINES),
            "",
            "Template patch (failed to apply):",
            "-" * 30,
            preview(conflict.failed_patch, PATCH_PREVIEW_LINES),
            "",
            "keep: keep your version; template: use the template's version"
            + ("; merge: run the external merge tool" if self.merge_service else ""),
        ]
        return "\n".join(lines)

    def resolve(self, conflict: Conflict) -> ConflictResolution:
        self.state = ResolverState.PRESENTING
        try:
            answer = self.chooser.ask(self.describe(conflict), self.options())
            try:
                action = ConflictAction(answer)
            except ValueError:
                logger.warning(f"Unknown conflict choice {answer!r} for {conflict.path}, keeping your version")
                action = ConflictAction.KEEP
            if action is ConflictAction.EXTERNAL_MERGE and self.merge_service is None:
                logger.warning(f"No merge tool configured for {conflict.path}, keeping your version")
                return ConflictResolution(ConflictAction.KEEP, conflict.current_content, fell_back=True)

            if action is ConflictAction.KEEP:
                return ConflictResolution(action, conflict.current_content)
            if action is ConflictAction.TEMPLATE:
                return self._take_template(conflict)
            return self._external_merge(conflict)
        finally:
            self.state = ResolverState.RESOLVED

    def _take_template(self, conflict: Conflict) -> ConflictResolution:
        lines = extract_target_lines(conflict.failed_patch)
        if not lines:
            logger.warning(
                f"Could not extract template content for {conflict.path}, keeping your version"
            )
            return ConflictResolution(ConflictAction.TEMPLATE, conflict.current_content, fell_back=True)
        return ConflictResolution(ConflictAction.TEMPLATE, "\n".join(lines))

    def _external_merge(self, conflict: Conflict) -> ConflictResolution:
        user_diff = compute_user_diff(conflict.path, conflict.current_content, conflict.baseline)
        try:
            merged = self.merge_service.merge(
                conflict.path, conflict.current_content, conflict.failed_patch, user_diff,
            )
        except (ExternalMergeFailure, TimeoutError) as e:
            logger.warning(f"External merge failed for {conflict.path}: {e}; keeping your version")
            return ConflictResolution(ConflictAction.KEEP, conflict.current_content, fell_back=True)
        return ConflictResolution(ConflictAction.EXTERNAL_MERGE, merged)
