#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
shutterbox: command line front end.

Examples:
  # import a card (moves files into the store; --copy keeps them)
  shutterbox import /media/card/DCIM
  shutterbox import --copy --dry-run ~/Downloads/IMG_0001.JPG

  # which layer knows about these files? (--recover trusts the journal)
  shutterbox check ~/old-backup
  shutterbox check --recover ~/old-backup/IMG_0042.JPG

  # previews: all, some, or the last 20 imports; --force rebuilds existing ones
  shutterbox previews
  shutterbox previews 42 43 --force
  shutterbox previews --last 20

  # lookups (keys are ids/fids or 32-char fingerprints)
  shutterbox list
  shutterbox recent -n 10
  shutterbox master 000042
  shutterbox preview 9e107d9d372bb6826bd81d3542a419d6
  shutterbox view 42 43

Config: shutterbox.toml (see shutterbox.example.toml); --root overrides [paths].root.
Exit status: 0 all good, 1 some item failed, 2 fatal setup error.
"""

import argparse
import sys
from typing import List, Sequence

from shutterbox.core.config import load_settings
from shutterbox.core.context import ArchiveContext
from shutterbox.core.errors import CatalogError, InputError, NotFoundError
from shutterbox.core.log import setup_logging
from shutterbox.schemas.photo import Photo
from shutterbox.services.importer import import_paths
from shutterbox.services.library import (
    find_photo, list_photos, locate_master, locate_preview, recent, view,
)
from shutterbox.services.previews import generate_previews
from shutterbox.services.reconcile import check_paths

EXIT_OK, EXIT_ITEMS_FAILED, EXIT_FATAL = 0, 1, 2

# ------- tiny table printer (stdlib only) -------

def _stringify(x) -> str:
    if x is None:
        return ""
    if hasattr(x, "value"):
        return str(x.value)
    return str(x)


def print_table(headers: Sequence[str], rows: Sequence[Sequence[object]], tsv: bool = False) -> None:
    srows = [[_stringify(v) for v in row] for row in rows]
    if tsv:
        print("\t".join(headers))
        for r in srows:
            print("\t".join(r))
        return
    widths = [len(h) for h in headers]
    for r in srows:
        for i, v in enumerate(r):
            widths[i] = max(widths[i], len(v))

    def fmt_row(vals):
        return "  " + " | ".join(v.ljust(widths[i]) for i, v in enumerate(vals))

    print(fmt_row(headers))
    print("  " + "-+-".join("-" * w for w in widths))
    for r in srows:
        print(fmt_row(r))


def _photo_rows(photos: List[Photo]):
    return [(p.fid, p.fingerprint, p.taken, p.width, p.height, p.rotation) for p in photos]


PHOTO_HEADERS = ("fid", "fingerprint", "taken", "width", "height", "rotation")

# ------- commands -------

def cmd_import(ctx: ArchiveContext, args) -> int:
    move = False if args.copy else (True if args.move else None)
    report = import_paths(ctx, args.paths, move=move, dry_run=args.dry_run,
                          recursive=False if args.no_recursive else None,
                          heartbeat=args.heartbeat)
    interesting = [r for r in report.items if args.verbose or r.status.value != "imported"]
    if interesting:
        print_table(("status", "fid", "source", "detail"),
                    [(r.status, r.fid, r.source, r.message or r.preview_path or "") for r in interesting])
    print(f"\nTOTALS: {report.summary()}")
    return EXIT_ITEMS_FAILED if report.failed else EXIT_OK


def cmd_check(ctx: ArchiveContext, args) -> int:
    report = check_paths(ctx, args.paths, recover=args.recover,
                         recursive=False if args.no_recursive else None)
    print_table(("status", "fid", "catalog", "master", "journal", "source", "detail"),
                [(r.status, r.fid, "y" if r.in_catalog else "-", "y" if r.in_masters else "-",
                  "y" if r.in_journal else "-", r.source, r.message or "") for r in report.items],
                tsv=args.tsv)
    print(f"\nTOTALS: {report.summary()}")
    return EXIT_ITEMS_FAILED if report.failed else EXIT_OK


def cmd_previews(ctx: ArchiveContext, args) -> int:
    ids = None
    if args.keys:
        ids = [find_photo(ctx, k).id for k in args.keys]
    elif args.last:
        ids = ctx.catalog.most_recent(args.last)
    report = generate_previews(ctx, ids, force=args.force)
    changed = [r for r in report.items if r.status.value != "skipped"]
    if changed:
        print_table(("status", "fid", "path", "detail"),
                    [(r.status, r.fid, r.path,
                      r.message or (f"removed {r.stale_removed}" if r.stale_removed else ""))
                     for r in changed])
    print(f"\nTOTALS: {report.summary()}")
    return EXIT_ITEMS_FAILED if report.failed else EXIT_OK


def cmd_list(ctx: ArchiveContext, args) -> int:
    photos = list_photos(ctx, args.keys or None)
    if not photos:
        print("(no photos)")
        return EXIT_OK
    print_table(PHOTO_HEADERS, _photo_rows(photos), tsv=args.tsv)
    return EXIT_OK


def cmd_recent(ctx: ArchiveContext, args) -> int:
    photos = recent(ctx, args.limit)
    if not photos:
        print("(no photos)")
        return EXIT_OK
    print_table(PHOTO_HEADERS, _photo_rows(photos), tsv=args.tsv)
    return EXIT_OK


def cmd_master(ctx: ArchiveContext, args) -> int:
    print(locate_master(ctx, args.key))
    return EXIT_OK


def cmd_preview(ctx: ArchiveContext, args) -> int:
    print(locate_preview(ctx, args.key))
    return EXIT_OK


def cmd_view(ctx: ArchiveContext, args) -> int:
    rc = view(ctx, args.keys, args.command.split() if args.command else None)
    return EXIT_OK if rc == 0 else EXIT_ITEMS_FAILED

# ------- main -------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="shutterbox",
                                 description="Deduplicated photo archive: import, check, previews, lookups.")
    ap.add_argument("--config", help="Path to shutterbox.toml (default: discovered)")
    ap.add_argument("--root", help="Archive root (overrides [paths].root and SHUTTERBOX_ROOT)")
    ap.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    help="Force console and file log level (overrides -v/-q)")
    ap.add_argument("-v", "--verbose", action="count", default=0,
                    help="Increase console verbosity (repeatable)")
    ap.add_argument("-q", "--quiet", action="store_true", help="Errors only on the console")
    ap.add_argument("--json-logs", action="store_true", help="Write JSON-formatted logs to the log file")
    sub = ap.add_subparsers(dest="cmd", required=True)

    spi = sub.add_parser("import", help="Import files or directories into the archive")
    spi.add_argument("paths", nargs="+")
    mode = spi.add_mutually_exclusive_group()
    mode.add_argument("--copy", action="store_true", help="Copy sources into the store (keep originals)")
    mode.add_argument("--move", action="store_true", help="Move sources into the store")
    spi.add_argument("--dry-run", action="store_true", help="Hash, dedup and read metadata only; write nothing")
    spi.add_argument("--no-recursive", action="store_true", help="Reject directory arguments")
    spi.add_argument("--heartbeat", type=int, default=500,
                     help="Emit a progress line every N inputs (default 500)")
    spi.set_defaults(func=cmd_import, writes=True)

    spc = sub.add_parser("check", help="Report which of catalog/masters/journal know each file")
    spc.add_argument("paths", nargs="+")
    spc.add_argument("--recover", action="store_true",
                     help="Trust the master journal: restore missing catalog rows / journal lines")
    spc.add_argument("--no-recursive", action="store_true", help="Reject directory arguments")
    spc.add_argument("--tsv", action="store_true")
    spc.set_defaults(func=cmd_check, writes=True)

    spp = sub.add_parser("previews", help="Generate missing previews (all, by key, or --last N)")
    spp.add_argument("keys", nargs="*")
    spp.add_argument("--last", type=int, default=0, help="Only the N most recent photos")
    spp.add_argument("--force", action="store_true", help="Rebuild previews that already exist")
    spp.set_defaults(func=cmd_previews, writes=True)

    spl = sub.add_parser("list", help="List photos (all or by key)")
    spl.add_argument("keys", nargs="*")
    spl.add_argument("--tsv", action="store_true")
    spl.set_defaults(func=cmd_list, writes=False)

    spr = sub.add_parser("recent", help="Most recently imported photos, oldest first")
    spr.add_argument("-n", "--limit", type=int, default=10)
    spr.add_argument("--tsv", action="store_true")
    spr.set_defaults(func=cmd_recent, writes=False)

    spm = sub.add_parser("master", help="Print the master path for a key")
    spm.add_argument("key")
    spm.set_defaults(func=cmd_master, writes=False)

    spv = sub.add_parser("preview", help="Print the preview path for a key")
    spv.add_argument("key")
    spv.set_defaults(func=cmd_preview, writes=False)

    spw = sub.add_parser("view", help="Open previews in the configured viewer")
    spw.add_argument("keys", nargs="+")
    spw.add_argument("--command", help="Viewer command (overrides [viewer].command)")
    spw.set_defaults(func=cmd_view, writes=False)

    return ap


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config, root=args.root)
    except (OSError, ValueError) as e:
        sys.stderr.write(f"FATAL: bad configuration: {e}\n")
        sys.exit(EXIT_FATAL)

    setup_logging(settings.logs_dir if args.writes else None, verbose=args.verbose,
                  quiet=args.quiet, log_level=args.log_level, json_logs=args.json_logs)

    try:
        ctx = ArchiveContext(settings)
    except (CatalogError, FileNotFoundError) as e:
        sys.stderr.write(f"FATAL: {e}\n")
        sys.exit(EXIT_FATAL)

    try:
        rc = args.func(ctx, args)
    except (InputError, NotFoundError, ValueError) as e:
        sys.stderr.write(f"error: {e}\n")
        rc = EXIT_ITEMS_FAILED
    finally:
        ctx.close()
    sys.exit(rc)


if __name__ == "__main__":
    main()
