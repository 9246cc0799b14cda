"""
Diff Codec

Line-based patches in unified form:

    --- old
    +++ new
    @@ -oldStart,oldLen +newStart,newLen @@
     context
    -deleted
    +inserted

Generation is deliberately NOT a minimal edit script. Both line streams
are walked in lock-step; a hunk opens at the first position where the
streams disagree (with up to three lines of leading context) and closes
once three consecutive positions agree again. Patches written by one run
must stay re-appliable by every later run, so the walk is part of the
format and must not be swapped for a smarter diff.

Application is strict: every context and deletion line is checked
against the target before anything is returned.
"""

import logging
import re
from dataclasses import dataclass, field

from .errors import DiffContextMismatch, MalformedPatch

logger = logging.getLogger(__name__)

# Lines of context around each change. Part of the patch format.
CONTEXT_LINES = 3

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass
class Hunk:
    """One changed region of a patch, with its marker-prefixed lines."""
    old_start: int
    old_len: int
    new_start: int
    new_len: int
    lines: list[str] = field(default_factory=list)

    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_len} +{self.new_start},{self.new_len} @@"

    def render(self) -> list[str]:
        return [self.header(), *self.lines]

    @property
    def target_index(self) -> int:
        """0-based index of the first original line the hunk covers.

        Pure insertions (old_len == 0) name the line *after which* they
        go, following the usual unified-diff convention.
        """
        return self.old_start - 1 if self.old_len > 0 else self.old_start


def split_lines(text: str) -> list[str]:
    """Split on newlines, keeping a trailing empty line for a final newline."""
    return text.split("\n")


# ── Generation ────────────────────────────────────────────────────


class _HunkBuilder:
    """Accumulates one hunk while the lock-step walk is inside it."""

    def __init__(self, old_index: int, new_index: int):
        self.old_index = old_index
        self.new_index = new_index
        self.lines: list[str] = []
        self.old_len = 0
        self.new_len = 0
        self._deleted: list[str] = []
        self._inserted: list[str] = []

    def context(self, line: str):
        self.flush()
        self.lines.append(" " + line)
        self.old_len += 1
        self.new_len += 1

    def delete(self, line: str):
        self._deleted.append(line)

    def insert(self, line: str):
        self._inserted.append(line)

    def flush(self):
        """Emit buffered changes, deletions before insertions."""
        for line in self._deleted:
            self.lines.append("-" + line)
        for line in self._inserted:
            self.lines.append("+" + line)
        self.old_len += len(self._deleted)
        self.new_len += len(self._inserted)
        self._deleted = []
        self._inserted = []

    def build(self) -> Hunk:
        self.flush()
        old_start = self.old_index + 1 if self.old_len > 0 else self.old_index
        new_start = self.new_index + 1 if self.new_len > 0 else self.new_index
        return Hunk(old_start, self.old_len, new_start, self.new_len, self.lines)


def diff_hunks(old_text: str, new_text: str) -> list[Hunk]:
    """Walk both texts in lock-step and collect the hunks between them."""
    old = split_lines(old_text)
    new = split_lines(new_text)
    hunks: list[Hunk] = []
    pending: list[str] = []  # matching lines seen since the last hunk closed
    builder: _HunkBuilder | None = None
    run = 0  # consecutive matching lines inside the open hunk
    i = j = 0

    while i < len(old) or j < len(new):
        same = i < len(old) and j < len(new) and old[i] == new[j]

        if builder is None:
            if same:
                pending.append(old[i])
                i += 1
                j += 1
                continue
            lead = pending[-CONTEXT_LINES:] if pending else []
            builder = _HunkBuilder(i - len(lead), j - len(lead))
            for line in lead:
                builder.context(line)
            pending = []
            run = 0

        if same:
            builder.context(old[i])
            i += 1
            j += 1
            run += 1
            if run >= CONTEXT_LINES:
                hunks.append(builder.build())
                builder = None
        else:
            run = 0
            if i < len(old):
                builder.delete(old[i])
                i += 1
            if j < len(new):
                builder.insert(new[j])
                j += 1

    if builder is not None:
        hunks.append(builder.build())
    return hunks


def generate_patch(old_text: str, new_text: str, old_label: str = "a", new_label: str = "b") -> str:
    """
    Produce patch text turning old_text into new_text.

    Returns an empty string when the texts are identical, so callers can
    test ``if patch:`` to decide whether anything changed.
    """
    hunks = diff_hunks(old_text, new_text)
    if not hunks:
        return ""
    out = [f"--- {old_label}", f"+++ {new_label}"]
    for hunk in hunks:
        out.extend(hunk.render())
    return "\n".join(out) + "\n"


# ── Parsing ───────────────────────────────────────────────────────


def parse_patch(patch_text: str) -> list[Hunk]:
    """
    Parse patch text into hunks.

    Hunk bodies are consumed by their header counts, so a deleted line
    that happens to start with "--" is never mistaken for a file header.
    Anything outside a hunk (file headers, blank trailer) is ignored.
    """
    lines = split_lines(patch_text)
    hunks: list[Hunk] = []
    pos = 0

    while pos < len(lines):
        line = lines[pos]
        pos += 1
        if not line.startswith("@@"):
            continue
        m = _HUNK_HEADER.match(line)
        if m is None:
            raise MalformedPatch(f"Bad hunk header: {line!r}")
        hunk = Hunk(
            old_start=int(m.group(1)),
            old_len=int(m.group(2)) if m.group(2) is not None else 1,
            new_start=int(m.group(3)),
            new_len=int(m.group(4)) if m.group(4) is not None else 1,
        )

        old_seen = new_seen = 0
        while old_seen < hunk.old_len or new_seen < hunk.new_len:
            if pos >= len(lines):
                raise MalformedPatch(
                    f"Hunk {hunk.header()} is truncated "
                    f"({old_seen}/{hunk.old_len} old, {new_seen}/{hunk.new_len} new lines)"
                )
            body = lines[pos]
            pos += 1
            marker = body[:1]
            if marker == "\\":
                continue  # "\ No newline at end of file"
            if marker == "" or marker == " ":
                # An empty body line is a context line whose space was stripped
                hunk.lines.append(" " + body[1:])
                old_seen += 1
                new_seen += 1
            elif marker == "-":
                hunk.lines.append(body)
                old_seen += 1
            elif marker == "+":
                hunk.lines.append(body)
                new_seen += 1
            else:
                raise MalformedPatch(f"Unexpected line in hunk {hunk.header()}: {body!r}")

        if old_seen != hunk.old_len or new_seen != hunk.new_len:
            raise MalformedPatch(f"Hunk {hunk.header()} line counts do not match its body")
        hunks.append(hunk)

    return hunks


def has_hunks(patch_text: str) -> bool:
    return any(line.startswith("@@") for line in split_lines(patch_text))


# ── Application ───────────────────────────────────────────────────


def apply_patch(original_text: str, patch_text: str) -> str:
    """
    Apply patch text to original_text and return the patched text.

    Hunks are applied left to right against a private working copy; each
    hunk's position is shifted by the net growth of the hunks before it.
    Raises DiffContextMismatch on the first context or deletion line that
    disagrees with the target, before any result is produced.
    """
    buffer = split_lines(original_text)
    offset = 0

    for index, hunk in enumerate(parse_patch(patch_text)):
        start = hunk.target_index + offset
        if start < 0 or start > len(buffer):
            raise DiffContextMismatch(index, start + 1, hunk.lines[0][1:] if hunk.lines else "", None)

        cursor = start
        replacement: list[str] = []
        for line in hunk.lines:
            marker, text = line[:1], line[1:]
            if marker == "+":
                replacement.append(text)
                continue
            actual = buffer[cursor] if cursor < len(buffer) else None
            if actual != text:
                raise DiffContextMismatch(index, cursor + 1, text, actual)
            if marker == " ":
                replacement.append(text)
            cursor += 1

        buffer[start:cursor] = replacement
        offset += len(replacement) - (cursor - start)

    return "\n".join(buffer)


def extract_target_lines(patch_text: str) -> list[str]:
    """
    Best-effort reconstruction of a patch's target side.

    Keeps context and insertion lines (marker stripped) and drops
    headers and deletions. A malformed patch yields no lines.
    """
    try:
        hunks = parse_patch(patch_text)
    except MalformedPatch as e:
        logger.warning(f"Cannot extract target content from malformed patch: {e}")
        return []
    kept = []
    for hunk in hunks:
        for line in hunk.lines:
            if line[:1] in (" ", "+"):
                kept.append(line[1:])
    return kept
