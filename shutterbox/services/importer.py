# shutterbox/services/importer.py
"""
Import pipeline: one file at a time, start to finish.

    Pending -> Hashed -> DedupChecked -> MetadataExtracted -> MasterWritten
            -> Journaled -> CatalogInserted -> PreviewWritten -> Done
                          \\-> Skipped (fingerprint already cataloged)

The id is reserved in the catalog before anything is written. Once the
master is stored its journal line goes out, and only then is the row
inserted under that id. A failed insert therefore leaves a journaled master
that `check --recover` restores under the same id; a crash before the
journal line leaves an orphan master, which the next import adopts.
Failures are recorded on the item's ImportResult; the batch carries on.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, Optional, Set, Tuple

from shutterbox.core.errors import (
    DuplicateError, EmptyDirectoryError, InputError, ShutterboxError,
)
from shutterbox.schemas.photo import Photo, PhotoDraft, format_fid
from shutterbox.schemas.reports import ImportReport, ImportResult, ImportState, ImportStatus
from shutterbox.services.hasher import hash_file
from shutterbox.services.previews import ensure_preview

if TYPE_CHECKING:
    from shutterbox.core.context import ArchiveContext
    from shutterbox.services.metadata import Metadata

JUNK_FILES = {".DS_Store", "Thumbs.db", "desktop.ini"}
JUNK_PREFIXES = ("._",)  # AppleDouble resource forks like ._IMG_1234.JPG
DIR_IGNORE = {".Spotlight-V100", ".fseventsd", ".Trashes", ".TemporaryItems"}


# ---------- input expansion ----------

def _is_junk(name: str) -> bool:
    return name in JUNK_FILES or name.startswith(JUNK_PREFIXES)


def _walk_images(root: Path, extensions: Set[str], log) -> Iterator[Path]:
    for dirpath, dirs, files in os.walk(root):
        # prune system dirs and AppleDouble dir entries; sorted for a stable import order
        dirs[:] = sorted(d for d in dirs if d not in DIR_IGNORE and not d.startswith("._"))
        for name in sorted(files):
            if _is_junk(name):
                continue
            p = Path(dirpath) / name
            if p.suffix.lower() not in extensions:
                log.info("SKIP unsupported %s", p)
                continue
            yield p


def collect_inputs(paths: Iterable, *, extensions: Set[str], recursive: bool,
                   log) -> Iterator[Tuple[Path, Optional[InputError]]]:
    """
    Expand CLI paths into (file, None) candidates or (path, InputError) rejects.
    Directories are walked when recursive; an empty one yields EmptyDirectoryError.
    """
    for raw in paths:
        p = Path(raw).expanduser()
        if not p.exists():
            yield p, InputError("no such file or directory", path=p)
        elif p.is_dir():
            if not recursive:
                yield p, InputError("is a directory and recursive import is off", path=p)
                continue
            found = False
            for f in _walk_images(p, extensions, log):
                found = True
                yield f, None
            if not found:
                yield p, EmptyDirectoryError("no importable files", path=p)
        elif not p.is_file():
            yield p, InputError("not a regular file", path=p)
        elif p.suffix.lower() not in extensions:
            yield p, InputError("unsupported extension", path=p, ext=p.suffix.lower() or "(none)")
        else:
            yield p, None


# ---------- one file ----------

def _orientation_resetter(ctx: "ArchiveContext", meta: "Metadata"):
    """finalize() hook for MasterStore.put: normalize the stored Orientation tag."""
    def finalize(dest: Path) -> None:
        if not ctx.settings.reset_orientation or meta.orientation in (None, 1):
            return
        if not ctx.reader.can_rewrite:
            ctx.log.debug("Orientation %s left in %s (no exiftool)", meta.orientation, dest)
            return
        try:
            ctx.reader.reset_orientation(dest)
        except (RuntimeError, OSError, subprocess.SubprocessError) as e:
            # rotation is already captured in the catalog row; the tag is cosmetic from here on
            ctx.log.warning("Could not reset orientation on %s: %s", dest, e)
    return finalize


def _drive(ctx: "ArchiveContext", src: Path, res: ImportResult, *, move: bool, dry_run: bool,
           journal_index: Dict[str, int], preview_index: Dict[int, str]) -> None:
    source_abs = src.resolve()

    fp = hash_file(src)
    res.fingerprint = fp
    res.state = ImportState.HASHED
    tok = fp[:8]

    existing = ctx.catalog.find_by_fingerprint(fp)
    if existing is not None:
        raise DuplicateError("already cataloged", photo=existing, fingerprint=fp, fid=existing.fid)

    journal_id = journal_index.get(fp)
    if journal_id is not None:
        res.fid = format_fid(journal_id)
        res.state = ImportState.SKIPPED
        res.status = ImportStatus.RECOVERABLE
        res.message = (f"journaled as {res.fid} but missing from the catalog; "
                       f"run `shutterbox check --recover` on this file")
        ctx.log.warning("RECOVERABLE %s (%s)", src, res.message, extra={"file_token": tok})
        return
    res.state = ImportState.DEDUP_CHECKED

    meta = ctx.reader.extract(src)
    res.taken = meta.taken
    res.state = ImportState.METADATA_EXTRACTED
    master_path = ctx.masters.path_for(fp)
    res.master_path = ctx.relative(master_path)

    if dry_run:
        res.status = ImportStatus.PLANNED
        ctx.log.info("[DRY] %s -> %s (taken=%s rotation=%d)", src, res.master_path, meta.taken,
                     meta.rotation, extra={"file_token": tok})
        return

    draft = PhotoDraft(fingerprint=fp, taken=meta.taken, width=meta.width,
                       height=meta.height, rotation=meta.rotation)
    photo_id = ctx.catalog.reserve_id()
    res.fid = format_fid(photo_id)

    ctx.masters.put(fp, src, move=move, finalize=_orientation_resetter(ctx, meta))
    res.state = ImportState.MASTER_WRITTEN

    ctx.master_journal.append(photo_id, fp)
    journal_index[fp] = photo_id
    res.state = ImportState.JOURNALED

    ctx.catalog.insert(draft, photo_id)
    res.state = ImportState.CATALOG_INSERTED
    ctx.import_log.append(photo_id, fp, source_abs)
    ctx.log.info("IMPORTED %s as %s (taken=%s rotation=%d)", src, res.fid, meta.taken,
                 meta.rotation, extra={"file_token": tok})

    photo = Photo(id=photo_id, **draft.model_dump())
    try:
        preview = ensure_preview(ctx, photo, journaled=preview_index)
    except (ShutterboxError, OSError) as e:
        res.status = ImportStatus.ERROR
        res.message = f"imported, but preview failed: {e}"
        ctx.log.error("Preview for %s failed: %s", res.fid, e, extra={"file_token": tok})
        return
    res.preview_path = preview.path
    res.state = ImportState.PREVIEW_WRITTEN

    res.status = ImportStatus.IMPORTED
    res.state = ImportState.DONE


def import_file(ctx: "ArchiveContext", src: Path, *, move: bool = True, dry_run: bool = False,
                journal_index: Optional[Dict[str, int]] = None,
                preview_index: Optional[Dict[int, str]] = None) -> ImportResult:
    """Drive one file through the pipeline; never raises for item-level problems."""
    res = ImportResult(source=str(src), status=ImportStatus.ERROR)
    if journal_index is None:
        journal_index = ctx.master_journal.reverse()
    if preview_index is None:
        preview_index = ctx.preview_journal.load()
    try:
        _drive(ctx, src, res, move=move, dry_run=dry_run,
               journal_index=journal_index, preview_index=preview_index)
    except DuplicateError as e:
        res.status = ImportStatus.DUPLICATE
        res.state = ImportState.SKIPPED
        res.fid = e.photo.fid if e.photo is not None else res.fid
        res.message = "already present"
        ctx.log.info("= Already present: %s (%s)", src, res.fid,
                     extra={"file_token": (res.fingerprint or "-")[:8]})
    except (ShutterboxError, OSError) as e:
        res.status = ImportStatus.ERROR
        res.message = str(e)
        ctx.log.error("FAILED %s at %s: %s", src, res.state.value, e)
    except Exception as e:
        # Catch-all so one bad file doesn't kill the batch
        res.status = ImportStatus.ERROR
        res.message = f"unexpected error: {e}"
        ctx.log.exception("Unhandled error while importing %s", src)
    return res


# ---------- batch ----------

def import_paths(ctx: "ArchiveContext", paths: Iterable, *, move: Optional[bool] = None,
                 dry_run: bool = False, recursive: Optional[bool] = None,
                 heartbeat: int = 500) -> ImportReport:
    """Import every file named by `paths`, one after the other."""
    settings = ctx.settings
    move = (not settings.keep_source) if move is None else move
    recursive = settings.recursive if recursive is None else recursive

    journal_index = ctx.master_journal.reverse()
    preview_index = ctx.preview_journal.load()
    report = ImportReport()

    ctx.log.info("Import run %s: mode=%s, %s, reader=%s, root=%s", ctx.run_id,
                 "DRY-RUN" if dry_run else "WRITE", "move" if move else "copy",
                 ctx.reader.backend, ctx.root)

    for n, (p, problem) in enumerate(
            collect_inputs(paths, extensions=settings.extensions, recursive=recursive, log=ctx.log), 1):
        if problem is not None:
            status = ImportStatus.EMPTY if isinstance(problem, EmptyDirectoryError) else ImportStatus.ERROR
            if status is ImportStatus.EMPTY:
                ctx.log.info("SKIP %s: %s", p, problem.message)
            else:
                ctx.log.error("REJECT %s: %s", p, problem)
            report.items.append(ImportResult(source=str(p), status=status, message=problem.message))
        else:
            report.items.append(import_file(ctx, p, move=move, dry_run=dry_run,
                                            journal_index=journal_index, preview_index=preview_index))

        if heartbeat > 0 and n % heartbeat == 0:
            ctx.log.info("... %d inputs: %s", n, report.summary())

    ctx.log.info("Import run %s finished: %s", ctx.run_id, report.summary())
    return report
