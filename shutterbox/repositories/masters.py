# shutterbox/repositories/masters.py
# Content-addressed master store: masters/<fp[:2]>/<fp>.jpg, mode 0444.
# The path depends on the fingerprint only, never on id or metadata.

from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Callable, Optional

from shutterbox.core.errors import CopyError

logger = logging.getLogger(__name__)

READ_ONLY = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
MASTER_EXT = ".jpg"


def master_relpath(fingerprint: str) -> Path:
    """'<fp[:2]>/<fp>.jpg' for a lowercase hex fingerprint."""
    fp = fingerprint.lower()
    if len(fp) < 3:
        raise ValueError(f"fingerprint too short: {fingerprint!r}")
    return Path(fp[:2]) / f"{fp}{MASTER_EXT}"


class MasterStore:
    def __init__(self, base: Path, ensure_dir: Optional[Callable[[Path], None]] = None) -> None:
        self.base = base
        self._ensure_dir = ensure_dir or (lambda d: d.mkdir(parents=True, exist_ok=True))

    def path_for(self, fingerprint: str) -> Path:
        return self.base / master_relpath(fingerprint)

    def exists(self, fingerprint: str) -> bool:
        return self.path_for(fingerprint).is_file()

    def put(self, fingerprint: str, source: Path, *, move: bool = True,
            finalize: Optional[Callable[[Path], None]] = None) -> Path:
        """
        Place `source` at the fingerprint's path and make it read-only.
        - an existing master is adopted and made read-only (safe to retry after a crash)
        - move: try an atomic rename first, else copy then remove the source
        - finalize(dest) runs on a fresh master before it is made read-only
        Raises CopyError when neither rename nor copy works.
        """
        dest = self.path_for(fingerprint)
        if dest.exists():
            logger.info("Master already present, adopting %s", dest)
            # a crash before the final chmod can leave it writable
            os.chmod(dest, READ_ONLY)
            return dest

        self._ensure_dir(dest.parent)

        moved = False
        e1: Optional[OSError] = None
        if move:
            try:
                os.rename(source, dest)
                moved = True
            except OSError as e:
                e1 = e  # usually EXDEV (different volume)

        if not moved:
            part = dest.with_name(dest.name + ".part")
            try:
                shutil.copy2(source, part)
                os.replace(part, dest)
            except OSError as e2:
                part.unlink(missing_ok=True)
                raise CopyError("cannot store master", source=source, dest=dest,
                                move_error=e1, copy_error=e2) from e2
            if move:
                try:
                    source.unlink()
                except OSError as e:
                    logger.warning("Copied %s but could not remove the source: %s", source, e)

        if finalize is not None:
            finalize(dest)
        os.chmod(dest, READ_ONLY)
        logger.debug("%s %s -> %s", "MOVED" if moved else "COPIED", source, dest)
        return dest
