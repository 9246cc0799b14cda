"""
Stencil CLI

Keeps projects in step with the template they were created from.
Every command outputs structured JSON when --json is passed; human
readable output is the default.

Usage:
    stencil init TEMPLATE [TARGET]
    stencil generate [--name LABEL]
    stencil check
    stencil update [--on-conflict ask|keep|template|merge]
    stencil sync TEMPLATE [--yes]
    stencil history

generate and history run inside a template, the other commands inside a
derived project; -C PATH points them elsewhere.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import __version__
from .config import StencilConfig
from .conflict import AutoChoice, ConflictResolver, ConsoleChoice
from .errors import MalformedMigrationRecord, StencilError
from .ledger import Ledger
from .merge import CommandMergeService
from .similarity import format_score
from .template import Template, check, init, sync, update


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


def get_verbosity(args) -> int:
    """Return verbosity level: 0=quiet, 1=normal, 2=verbose."""
    if getattr(args, 'json', False):
        return 1
    if getattr(args, 'verbose', False):
        return 2
    if getattr(args, 'quiet', False):
        return 0
    return 1


def configure_logging(args):
    level = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}[get_verbosity(args)]
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", stream=sys.stderr)


def merge_service_for(root: Path):
    """CommandMergeService from root's stencil.json, or None if none is configured."""
    config = StencilConfig.load(root)
    if not config.merge.configured:
        return None
    return CommandMergeService(config.merge, cwd=root)


def chooser_for(args):
    """--yes confirms and leaves files alone; --json without it only reports."""
    if args.yes:
        return AutoChoice(["yes"])
    if args.json:
        return AutoChoice()
    return ConsoleChoice()


def cmd_init(args):
    v = get_verbosity(args)
    template_root = Path(args.template).resolve()
    target = Path(args.target or args.path or ".").resolve()
    result = init(template_root, target)

    if args.json:
        print_json({"template": str(template_root), "target": str(target), **result.to_dict()})
        return
    if result.failed:
        raise StencilError(f"Migration {result.failed} failed: {result.error}")
    if v == 0:
        return
    print(f"✓ Created project at {target}")
    if result.applied:
        print(f"  Applied {len(result.applied)} migration(s)")
        if v >= 2:
            for name in result.applied:
                print(f"    {name}")
    else:
        print(f"  Copied {result.copied} file(s) (template has no migrations)")


def cmd_generate(args):
    v = get_verbosity(args)
    template = Template(Path(args.path or "."))
    chooser = AutoChoice() if args.json else ConsoleChoice()
    record = template.generate(args.name, chooser)

    if args.json:
        print_json({"migration": record.to_dict() if record else None})
        return
    if record is None:
        if v > 0:
            print("No changes detected")
        return
    if v == 0:
        print(record.name)
        return
    print(f"✓ Generated migration {record.name}")
    for path, op in record.entries.items():
        print(f"  {op.kind:<8} {path}")


def cmd_check(args):
    v = get_verbosity(args)
    pending = check(Path(args.path or "."))

    if args.json:
        print_json({"pending": pending})
    elif not pending:
        if v > 0:
            print("✓ Up to date")
    else:
        if v > 0:
            print(f"{len(pending)} pending migration(s):")
        for name in pending:
            print(f"  {name}" if v > 0 else name)


def cmd_update(args):
    v = get_verbosity(args)
    target = Path(args.path or ".").resolve()
    ledger = Ledger.load(target)

    if args.on_conflict == "ask" and not args.json:
        chooser = ConsoleChoice()
    else:
        choice = "keep" if args.on_conflict == "ask" else args.on_conflict
        chooser = AutoChoice([choice])
    resolver = ConflictResolver(chooser, merge_service_for(Path(ledger.template_location)))
    result = update(target, resolver)

    if args.json:
        print_json(result.to_dict())
    elif v > 0:
        if not result.pending:
            print("✓ Up to date")
        for name in result.applied:
            print(f"✓ Applied {name}")
        for c in result.conflicts:
            note = " (fell back)" if c.resolution.fell_back else ""
            print(f"  conflict in {c.path}: {c.resolution.action.value}{note}")
    if not result.ok:
        if not args.json:
            print(f"Error: migration {result.failed} failed: {result.error}", file=sys.stderr)
        sys.exit(1)


def cmd_sync(args):
    v = get_verbosity(args)
    template_root = Path(args.template).resolve()
    target = Path(args.path or ".").resolve()
    chooser = chooser_for(args)
    result = sync(template_root, target, chooser, merge_service_for(template_root))

    if args.json:
        print_json(result.to_dict())
        return
    if result.match is None:
        print("No acceptable match found in the template history.")
        print("  Your project has diverged too far; consider 'stencil init' into a new directory.")
        sys.exit(1)
    if v > 0:
        print("Best match:")
        print(format_score(result.match))
        if v >= 2:
            for s in result.scores[1:]:
                print(format_score(s))
    if result.written:
        if v > 0:
            print(f"✓ Synced at {result.match.candidate_name}; "
                  f"{len(result.pending)} migration(s) pending. Run 'stencil update'.")
    elif v > 0:
        print("Synchronization cancelled")


def cmd_history(args):
    v = get_verbosity(args)
    template = Template(Path(args.path or "."))
    entries = []
    for name in template.names():
        try:
            record = template.store.load(name)
        except MalformedMigrationRecord as e:
            entries.append({"name": name, "error": e.reason})
            continue
        entries.append({"name": name, "timestamp": record.timestamp, "entries": len(record.entries)})

    if args.json:
        print_json({"migrations": entries})
        return
    if not entries:
        if v > 0:
            print("No migrations")
        return
    for e in entries:
        if v == 0:
            print(e["name"])
        elif "error" in e:
            print(f"  {e['name']}  (malformed: {e['error']})")
        else:
            print(f"  {e['name']}  {e['entries']} change(s)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stencil",
        description="Stencil: template migrations for derived projects",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--path", "-C", default=".", help="Project or template path")
    parser.add_argument("--json", "-j", action="store_true", help="JSON output")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Quiet output")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # init
    p = sub.add_parser("init", help="Create a new project from a template")
    p.add_argument("template", help="Template directory")
    p.add_argument("target", nargs="?", default=None, help="New project directory (default: .)")
    p.set_defaults(func=cmd_init)

    # generate
    p = sub.add_parser("generate", help="Record template changes as a new migration")
    p.add_argument("--name", "-n", default="migration", help="Migration label")
    p.set_defaults(func=cmd_generate)

    # check
    p = sub.add_parser("check", help="List pending migrations")
    p.set_defaults(func=cmd_check)

    # update
    p = sub.add_parser("update", help="Apply pending migrations")
    p.add_argument("--on-conflict", choices=["ask", "keep", "template", "merge"], default="ask",
                   help="How to resolve conflicts (default: ask)")
    p.set_defaults(func=cmd_update)

    # sync
    p = sub.add_parser("sync", help="Adopt an existing project into a template's history")
    p.add_argument("template", help="Template directory")
    p.add_argument("--yes", "-y", action="store_true",
                   help="Confirm without prompting; missing and differing files are left alone")
    p.set_defaults(func=cmd_sync)

    # history
    p = sub.add_parser("history", help="List a template's migrations")
    p.set_defaults(func=cmd_history)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args)
    try:
        args.func(args)
    except (KeyboardInterrupt, EOFError):
        print("\nAborted", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        if getattr(args, "json", False):
            print_json({"error": str(e)})
        else:
            print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
