# shutterbox/services/library.py
# Read-only lookups for the CLI: list, recent, locate master/preview, open in a viewer.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from shutterbox.core.errors import NotFoundError
from shutterbox.schemas.photo import FingerprintKey, Photo, parse_key
from shutterbox.services.previews import preview_path

if TYPE_CHECKING:
    from shutterbox.core.context import ArchiveContext


def find_photo(ctx: "ArchiveContext", raw_key: str) -> Photo:
    """Turn an id/fid/fingerprint string into a cataloged Photo."""
    photo = ctx.catalog.resolve(parse_key(raw_key))
    if photo is None:
        raise NotFoundError("no such photo", key=raw_key)
    return photo


def list_photos(ctx: "ArchiveContext", keys: Optional[Iterable[str]] = None) -> List[Photo]:
    if keys is None:
        return ctx.catalog.list()
    return ctx.catalog.list(find_photo(ctx, k).id for k in keys)


def recent(ctx: "ArchiveContext", n: int) -> List[Photo]:
    return ctx.catalog.list(ctx.catalog.most_recent(n))


def locate_master(ctx: "ArchiveContext", raw_key: str) -> Path:
    key = parse_key(raw_key)
    photo = ctx.catalog.resolve(key)
    if photo is not None:
        return ctx.masters.path_for(photo.fingerprint)
    # a stored but uncataloged master is still addressable by its fingerprint
    if isinstance(key, FingerprintKey) and ctx.masters.exists(key.fingerprint):
        return ctx.masters.path_for(key.fingerprint)
    raise NotFoundError("no such photo", key=raw_key)


def locate_preview(ctx: "ArchiveContext", raw_key: str) -> Path:
    """Expected dated path if present, else the last journaled one if present, else the expected path."""
    photo = find_photo(ctx, raw_key)
    expected = preview_path(ctx.settings.preview_dir, photo)
    if expected.exists():
        return expected
    journaled = ctx.preview_journal.load().get(photo.id)
    if journaled:
        p = ctx.absolute(journaled)
        if p.exists():
            return p
    return expected


def view(ctx: "ArchiveContext", keys: Sequence[str], command: Optional[Sequence[str]] = None) -> int:
    """Open the previews of `keys` in the configured viewer; returns its exit code."""
    cmd = list(command or ctx.settings.viewer_command)
    if not cmd:
        raise ValueError("no viewer configured ([viewer].command)")
    paths = [locate_preview(ctx, k) for k in keys]
    missing = [p for p in paths if not p.exists()]
    if missing:
        raise NotFoundError("preview not generated yet", paths=", ".join(map(str, missing)))
    ctx.log.debug("Viewer: %s", " ".join(cmd + [str(p) for p in paths]))
    return subprocess.run(cmd + [str(p) for p in paths], check=False).returncode
