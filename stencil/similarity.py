"""
Similarity Matching

Locates where in a template's history a project best fits. The project
(the "evaluated" snapshot) is scored against every historical snapshot
(a "candidate"):

    candidate path missing from the project     -3   missing_files
    identical content                           +10  exact_matches
    different content, >= 80% lines in place    +5   partial_matches
    different content, otherwise                +1   partial_matches
    project path the candidate lacks            -1   extra_files
    directory present on both sides             +2   each

A path present on both sides is always an exact or partial match, never
"missing", however little of it survived. Binary files are compared by
bytes only and never count as more than a weak partial match.
"""

import hashlib
from dataclasses import dataclass, field

from .diffcodec import split_lines
from .snapshot import FileStateSnapshot

EXACT_MATCH_POINTS = 10
STRONG_PARTIAL_POINTS = 5
WEAK_PARTIAL_POINTS = 1
MISSING_FILE_PENALTY = -3
EXTRA_FILE_PENALTY = -1
SHARED_DIRECTORY_POINTS = 2

# Line-overlap ratio at which a partial match counts as strong
PARTIAL_MATCH_THRESHOLD = 0.8


@dataclass
class SimilarityScore:
    candidate_name: str
    timestamp: str
    score: int = 0
    exact_matches: list[str] = field(default_factory=list)
    partial_matches: list[str] = field(default_factory=list)
    missing_files: list[str] = field(default_factory=list)
    extra_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "candidate_name": self.candidate_name,
            "timestamp": self.timestamp,
            "score": self.score,
            "exact_matches": self.exact_matches,
            "partial_matches": self.partial_matches,
            "missing_files": self.missing_files,
            "extra_files": self.extra_files,
        }


def line_overlap(a: str, b: str) -> float:
    """Fraction of line positions holding the same line in both texts."""
    if a == b:
        return 1.0
    lines_a = split_lines(a)
    lines_b = split_lines(b)
    longest = max(len(lines_a), len(lines_b))
    same = sum(1 for x, y in zip(lines_a, lines_b) if x == y)
    return same / longest


def directories_of(paths) -> set[str]:
    """Every proper ancestor directory implied by a set of file paths."""
    dirs = set()
    for path in paths:
        parts = [p for p in path.split("/")[:-1] if p]
        for i in range(1, len(parts) + 1):
            dirs.add("/".join(parts[:i]))
    return dirs


def score(
    evaluated: FileStateSnapshot,
    candidate: FileStateSnapshot,
    candidate_name: str = "",
    timestamp: str = "",
) -> SimilarityScore:
    """Score how closely evaluated matches candidate."""
    result = SimilarityScore(candidate_name=candidate_name, timestamp=timestamp)

    for path in sorted(candidate.paths()):
        if path not in evaluated:
            result.missing_files.append(path)
            result.score += MISSING_FILE_PENALTY
            continue

        ours = evaluated.get(path)
        theirs = candidate.get(path)
        if ours == theirs:
            result.exact_matches.append(path)
            result.score += EXACT_MATCH_POINTS
            continue

        result.partial_matches.append(path)
        if evaluated.is_binary(path) or candidate.is_binary(path):
            result.score += WEAK_PARTIAL_POINTS
        elif line_overlap(ours, theirs) >= PARTIAL_MATCH_THRESHOLD:
            result.score += STRONG_PARTIAL_POINTS
        else:
            result.score += WEAK_PARTIAL_POINTS

    for path in sorted(evaluated.paths() - candidate.paths()):
        result.extra_files.append(path)
        result.score += EXTRA_FILE_PENALTY

    shared = directories_of(evaluated.paths()) & directories_of(candidate.paths())
    result.score += SHARED_DIRECTORY_POINTS * len(shared)
    return result


def score_history(
    evaluated: FileStateSnapshot,
    history: dict[str, FileStateSnapshot],
    timestamps: dict[str, str] | None = None,
) -> list[SimilarityScore]:
    """Score evaluated against every snapshot of an incremental replay."""
    timestamps = timestamps or {}
    return [
        score(evaluated, snapshot, name, timestamps.get(name, ""))
        for name, snapshot in history.items()
    ]


def find_best_match(scores: list[SimilarityScore]) -> SimilarityScore | None:
    """
    Highest-scoring candidate, or None when nothing is acceptable.

    A negative best score means the project does not fit the history at
    all; the caller has to start fresh rather than force a pick. Equal
    scores go to the most recent timestamp, since a later sync point
    leaves fewer migrations to re-apply.
    """
    if not scores:
        return None
    best = max(scores, key=lambda s: (s.score, s.timestamp))
    if best.score < 0:
        return None
    return best


def rank(scores: list[SimilarityScore]) -> list[SimilarityScore]:
    """Scores best-first, using the same tie-break as find_best_match."""
    return sorted(scores, key=lambda s: (s.score, s.timestamp), reverse=True)


def state_hash(snapshot: FileStateSnapshot) -> str:
    """Order-independent SHA-256 of a snapshot's paths and contents."""
    h = hashlib.sha256()
    for path in sorted(snapshot.paths()):
        content = snapshot.get(path)
        if isinstance(content, str):
            content = content.encode("utf-8")
        h.update(path.encode("utf-8") + b":" + content)
    return h.hexdigest()


def format_score(s: SimilarityScore) -> str:
    attainable = len(s.exact_matches) * EXACT_MATCH_POINTS + len(s.partial_matches) * STRONG_PARTIAL_POINTS
    percentage = max(0, round(s.score / attainable * 100)) if attainable else 0
    lines = [
        f"{s.candidate_name} ({percentage}% similarity, score: {s.score})",
        f"   - {len(s.exact_matches)} exact file matches",
        f"   - {len(s.partial_matches)} files with differences",
    ]
    if s.missing_files:
        lines.append(f"   - {len(s.missing_files)} files missing from your project")
    if s.extra_files:
        lines.append(f"   - {len(s.extra_files)} files only in your project")
    return "\n".join(lines)
