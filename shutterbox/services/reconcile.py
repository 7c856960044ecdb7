# shutterbox/services/reconcile.py
# Backward check: raw file -> fingerprint -> catalog, master store, master journal.
# Reports which layer is missing a record. Repairs only with recover=True:
#   - cataloged but unjournaled: append the journal line
#   - stored + journaled but not cataloged: restore the row under the journaled id
# A catalog row without its master is reported, never repaired.

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from shutterbox.core.errors import DuplicateError, EmptyDirectoryError, InconsistencyError, ShutterboxError
from shutterbox.schemas.photo import Photo, format_fid
from shutterbox.schemas.reports import CheckReport, CheckResult, CheckStatus
from shutterbox.services.hasher import hash_file
from shutterbox.services.importer import collect_inputs

if TYPE_CHECKING:
    from shutterbox.core.context import ArchiveContext


def _check(ctx: "ArchiveContext", src: Path, res: CheckResult, *, recover: bool,
           journal_index: Dict[str, int]) -> None:
    fp = hash_file(src)
    res.fingerprint = fp
    photo = ctx.catalog.find_by_fingerprint(fp)
    journal_id = journal_index.get(fp)
    res.in_catalog = photo is not None
    res.in_masters = ctx.masters.exists(fp)
    res.in_journal = journal_id is not None

    if photo is not None:
        res.fid = photo.fid
        if not res.in_masters:
            err = InconsistencyError("catalog row has no master file", fid=photo.fid, fingerprint=fp)
            res.status = CheckStatus.MISSING_MASTER
            res.message = str(err)
        elif journal_id is None:
            if recover:
                ctx.master_journal.append(photo.id, fp)
                journal_index[fp] = photo.id
                res.status = CheckStatus.REPAIRED
                res.message = "master journal line appended"
            else:
                res.status = CheckStatus.UNJOURNALED
                res.message = "cataloged but missing from the master journal"
        elif journal_id != photo.id:
            res.status = CheckStatus.INCONSISTENT
            res.message = f"catalog says {photo.fid}, journal says {format_fid(journal_id)}"
        else:
            res.status = CheckStatus.OK
        return

    if journal_id is not None:
        res.fid = format_fid(journal_id)

    if res.in_masters and journal_id is not None:
        if not recover:
            res.status = CheckStatus.RECOVERABLE
            res.message = f"journal maps it to {res.fid}; rerun with --recover to restore the catalog row"
            return
        meta = ctx.reader.extract(src)
        restored = Photo(id=journal_id, fingerprint=fp, taken=meta.taken, width=meta.width,
                         height=meta.height, rotation=meta.rotation)
        ctx.catalog.restore(restored)
        res.in_catalog = True
        res.status = CheckStatus.RECOVERED
        res.message = "catalog row restored from the journal; run `shutterbox previews` to refresh"
    elif res.in_masters:
        res.status = CheckStatus.ORPHAN_MASTER
        res.message = "master stored without catalog row or journal line; import the file again to adopt it"
    elif journal_id is not None:
        res.status = CheckStatus.LOST
        res.message = f"journaled as {res.fid} but neither cataloged nor stored"
    else:
        res.status = CheckStatus.NEW


def check_file(ctx: "ArchiveContext", src: Path, *, recover: bool = False,
               journal_index: Optional[Dict[str, int]] = None) -> CheckResult:
    res = CheckResult(source=str(src), status=CheckStatus.ERROR)
    if journal_index is None:
        journal_index = ctx.master_journal.reverse()
    try:
        _check(ctx, src, res, recover=recover, journal_index=journal_index)
    except InconsistencyError as e:
        res.status = CheckStatus.INCONSISTENT
        res.message = str(e)
    except DuplicateError as e:
        # cataloged between our lookup and the restore
        res.status = CheckStatus.OK
        res.in_catalog = True
        res.fid = e.photo.fid if e.photo is not None else res.fid
    except (ShutterboxError, OSError) as e:
        res.status = CheckStatus.ERROR
        res.message = str(e)
    except Exception as e:
        res.status = CheckStatus.ERROR
        res.message = f"unexpected error: {e}"
        ctx.log.exception("Unhandled error while checking %s", src)

    tok = (res.fingerprint or "-")[:8]
    if res.status in (CheckStatus.OK, CheckStatus.NEW):
        ctx.log.debug("%s %s", res.status.value.upper(), src, extra={"file_token": tok})
    elif res.status in (CheckStatus.MISSING_MASTER, CheckStatus.INCONSISTENT, CheckStatus.ERROR):
        ctx.log.error("%s %s: %s", res.status.value.upper(), src, res.message, extra={"file_token": tok})
    else:
        ctx.log.warning("%s %s: %s", res.status.value.upper(), src, res.message, extra={"file_token": tok})
    return res


def check_paths(ctx: "ArchiveContext", paths: Iterable, *, recover: bool = False,
                recursive: Optional[bool] = None) -> CheckReport:
    settings = ctx.settings
    recursive = settings.recursive if recursive is None else recursive
    journal_index = ctx.master_journal.reverse()
    report = CheckReport()

    for p, problem in collect_inputs(paths, extensions=settings.extensions, recursive=recursive, log=ctx.log):
        if problem is not None:
            if isinstance(problem, EmptyDirectoryError):
                ctx.log.info("SKIP %s: %s", p, problem.message)
                continue
            ctx.log.error("REJECT %s: %s", p, problem)
            report.items.append(CheckResult(source=str(p), status=CheckStatus.ERROR, message=problem.message))
            continue
        report.items.append(check_file(ctx, p, recover=recover, journal_index=journal_index))

    ctx.log.info("Check run %s finished: %s", ctx.run_id, report.summary())
    return report
