# shutterbox/services/previews.py
# Display copies: preview/<YYYY>-<MM>/<DD>-<fid>.jpg
# - pixels only (no EXIF/ICC/comments), corrective rotation applied, fit in the configured box
# - the box is given in landscape terms and swapped for +/-90 so it describes the displayed image
# - regeneration removes the previously journaled file when the dated path moved

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional, Tuple

from PIL import Image

from shutterbox.core.errors import InconsistencyError
from shutterbox.schemas.photo import Photo, format_fid
from shutterbox.schemas.reports import PreviewReport, PreviewResult, PreviewStatus

if TYPE_CHECKING:
    from shutterbox.core.context import ArchiveContext

PREVIEW_QUALITY = 82

_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,   # PIL rotates counter-clockwise
    -90: Image.Transpose.ROTATE_90,
    180: Image.Transpose.ROTATE_180,
}


def preview_relpath(taken: str, photo_id: int) -> Path:
    """'<YYYY>-<MM>/<DD>-<fid>.jpg' from the capture stamp and id only."""
    return Path(f"{taken[0:4]}-{taken[4:6]}") / f"{taken[6:8]}-{format_fid(photo_id)}.jpg"


def preview_path(preview_dir: Path, photo: Photo) -> Path:
    return preview_dir / preview_relpath(photo.taken, photo.id)


def fit_box(box: Tuple[int, int], rotation: int) -> Tuple[int, int]:
    w, h = box
    return (h, w) if rotation in (90, -90) else (w, h)


def derive(master_path: Path, dest_path: Path, rotation: int, box: Tuple[int, int],
           quality: int = PREVIEW_QUALITY,
           ensure_dir: Optional[Callable[[Path], None]] = None) -> Tuple[int, int]:
    """
    Write a rotated, downscaled, metadata-free JPEG of master_path to dest_path.
    Returns the preview size. Not atomic: a crash can leave a truncated file.
    """
    target = fit_box(box, rotation)
    with Image.open(master_path) as im:
        im.draft("RGB", tuple(box))  # stored orientation: the unswapped box
        im = im.convert("RGB")
        # rebuild from raw pixels so no info/exif/icc survives into the save
        out = Image.frombytes("RGB", im.size, im.tobytes())

    if rotation:
        out = out.transpose(_TRANSPOSE[rotation])
    out.thumbnail(target, Image.Resampling.LANCZOS)

    if ensure_dir is not None:
        ensure_dir(dest_path.parent)
    else:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
    out.save(dest_path, format="JPEG", quality=quality)
    return out.size


def ensure_preview(ctx: "ArchiveContext", photo: Photo, *, force: bool = False,
                   journaled: Optional[Dict[int, str]] = None) -> PreviewResult:
    """
    Apply the regeneration policy to one photo.
    journaled: id -> last journaled relative path (updated in place).
    """
    dest = preview_path(ctx.settings.preview_dir, photo)
    rel = ctx.relative(dest)
    existed = dest.exists()
    if existed and not force:
        return PreviewResult(fid=photo.fid, status=PreviewStatus.SKIPPED, path=rel)

    master = ctx.masters.path_for(photo.fingerprint)
    if not master.is_file():
        raise InconsistencyError("catalog row has no master file", fid=photo.fid,
                                 fingerprint=photo.fingerprint)

    if existed:
        dest.unlink()
    derive(master, dest, photo.rotation, ctx.settings.preview_box,
           ctx.settings.preview_quality, ensure_dir=ctx.ensure_dir)

    stale: Optional[str] = None
    journaled = journaled if journaled is not None else ctx.preview_journal.load()
    old = journaled.get(photo.id)
    if old and old != rel:
        old_path = ctx.absolute(old)
        if old_path.exists():
            old_path.unlink()
            stale = old
            ctx.log.info("Removed stale preview %s (fid %s moved to %s)", old, photo.fid, rel)

    ctx.preview_journal.append(photo.id, rel)
    journaled[photo.id] = rel
    return PreviewResult(
        fid=photo.fid,
        status=PreviewStatus.REGENERATED if existed else PreviewStatus.WRITTEN,
        path=rel,
        stale_removed=stale,
    )


def generate_previews(ctx: "ArchiveContext", ids: Optional[Iterable[int]] = None,
                      force: bool = False) -> PreviewReport:
    """Bring previews up to date for all photos or the given ids."""
    wanted = None if ids is None else sorted(set(ids))
    photos = ctx.catalog.list(wanted)
    journaled = ctx.preview_journal.load()
    report = PreviewReport()

    if wanted is not None:
        found = {p.id for p in photos}
        for missing in (i for i in wanted if i not in found):
            report.items.append(PreviewResult(fid=format_fid(missing), status=PreviewStatus.ERROR,
                                              message="no such photo"))

    for photo in photos:
        try:
            result = ensure_preview(ctx, photo, force=force, journaled=journaled)
        except (InconsistencyError, OSError) as e:
            ctx.log.error("Preview %s failed: %s", photo.fid, e, extra={"file_token": photo.fid})
            result = PreviewResult(fid=photo.fid, status=PreviewStatus.ERROR, message=str(e))
        except Exception as e:
            # Catch-all so one undecodable master doesn't kill the batch
            ctx.log.exception("Unhandled error while rendering %s", photo.fid, extra={"file_token": photo.fid})
            result = PreviewResult(fid=photo.fid, status=PreviewStatus.ERROR, message=str(e))
        else:
            if result.status != PreviewStatus.SKIPPED:
                ctx.log.debug("PREVIEW %s -> %s", photo.fid, result.path, extra={"file_token": photo.fid})
        report.items.append(result)

    report.items.sort(key=lambda r: int(r.fid))
    return report
