"""
Error Taxonomy

Reconstruction recovers from MalformedMigrationRecord and keeps going.
The apply path never recovers on its own: a DiffContextMismatch is
handed to the ConflictResolver, anything else stops the run.
"""


class StencilError(Exception):
    """Base class for every error raised by stencil."""


class MalformedMigrationRecord(StencilError, ValueError):
    """Raised when a migration record cannot be read or decoded."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Malformed migration record '{name}': {reason}")
        self.name = name
        self.reason = reason


class MalformedPatch(StencilError, ValueError):
    """Raised when patch text has a bad hunk header or a truncated hunk."""


class DiffContextMismatch(StencilError):
    """Raised when a patch's context or deletion line disagrees with the target."""

    def __init__(self, hunk_index: int, line: int, expected: str, actual: str | None):
        shown = "<end of file>" if actual is None else repr(actual)
        super().__init__(
            f"Hunk #{hunk_index + 1} does not apply at line {line}: "
            f"expected {expected!r}, found {shown}"
        )
        self.hunk_index = hunk_index
        self.line = line
        self.expected = expected
        self.actual = actual


class UnresolvableBlobReference(StencilError, LookupError):
    """Raised when a blob or diff reference does not resolve to bytes."""

    def __init__(self, ref):
        super().__init__(f"Unresolvable blob reference: {ref}")
        self.ref = ref


class ExternalMergeFailure(StencilError):
    """Raised when the external merge collaborator fails or times out."""


class LedgerError(StencilError, ValueError):
    """Raised when the applied-migrations ledger is missing, present or unreadable."""


class TemplateError(StencilError, ValueError):
    """Raised when a template or target directory is unusable."""
