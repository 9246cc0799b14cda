"""
Stencil: Template Migrations for Derived Projects

A template's evolution is recorded as an ordered history of immutable
migrations. Projects created from the template replay that history to
pick up later changes, and projects that predate the history can be
synced into it by similarity matching.
"""

__version__ = "0.1.0"

__all__ = [
    # Flows
    "Template",
    "generate_migration",
    "init",
    "check",
    "update",
    "sync",
    "apply_record",
    # History
    "MigrationRecord",
    "MigrationStore",
    "StateReconstructor",
    "FileStateSnapshot",
    # Patches
    "generate_patch",
    "apply_patch",
    # Conflicts
    "ConflictResolver",
    "ConsoleChoice",
    "AutoChoice",
    # Errors
    "StencilError",
]

_FLOWS = ("Template", "generate_migration", "init", "check", "update", "sync", "apply_record")


# Lazy imports: only resolve when accessed
def __getattr__(name):
    if name in _FLOWS:
        from . import template
        return getattr(template, name)
    if name in ("MigrationRecord", "MigrationStore"):
        from .migration import MigrationRecord, MigrationStore
        return MigrationRecord if name == "MigrationRecord" else MigrationStore
    if name == "StateReconstructor":
        from .reconstruct import StateReconstructor
        return StateReconstructor
    if name == "FileStateSnapshot":
        from .snapshot import FileStateSnapshot
        return FileStateSnapshot
    if name in ("generate_patch", "apply_patch"):
        from .diffcodec import apply_patch, generate_patch
        return generate_patch if name == "generate_patch" else apply_patch
    if name in ("ConflictResolver", "ConsoleChoice", "AutoChoice"):
        from .conflict import AutoChoice, ConflictResolver, ConsoleChoice
        return {"ConflictResolver": ConflictResolver, "ConsoleChoice": ConsoleChoice,
                "AutoChoice": AutoChoice}[name]
    if name == "StencilError":
        from .errors import StencilError
        return StencilError
    raise AttributeError(f"module 'stencil' has no attribute {name!r}")
