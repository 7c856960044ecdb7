# shutterbox/repositories/journals.py
"""
Append-only text journals.

They duplicate what the catalog knows on purpose: if catalog.sqlite3 is lost
or out of sync, `check` can still map a fingerprint back to the id it was
imported under. Lines are never rewritten.

    masters.txt   "<fid> <fingerprint>"
    previews.txt  "<fid> <preview path relative to the archive root>"
    imports.txt   "<YYYYMMDD> <fid> <fingerprint> <source path>"
"""

from __future__ import annotations

import logging
import os
from datetime import date
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from shutterbox.schemas.photo import format_fid

logger = logging.getLogger(__name__)


def _append_line(path: Path, line: str) -> None:
    """Write one line and push it to disk before returning."""
    if "\n" in line or "\r" in line:
        raise ValueError(f"journal values must be single-line: {line!r}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")
        f.flush()
        os.fsync(f.fileno())


class Journal:
    """(id, value) pairs; the last value seen for an id wins."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, photo_id: int, value: str) -> None:
        _append_line(self.path, f"{format_fid(photo_id)} {value}")

    def entries(self) -> Iterator[Tuple[int, str]]:
        """Yield (id, value) in file order, skipping malformed lines."""
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue
                parts = line.split(None, 1)
                if len(parts) != 2 or not parts[0].isdigit():
                    logger.warning("%s:%d: skipping malformed journal line %r", self.path, lineno, line)
                    continue
                yield int(parts[0]), parts[1]

    def load(self) -> Dict[int, str]:
        out: Dict[int, str] = {}
        for photo_id, value in self.entries():
            out[photo_id] = value
        return out

    def reverse(self) -> Dict[str, int]:
        """value -> id, for fingerprint lookups."""
        return {value: photo_id for photo_id, value in self.entries()}

    def max_id(self) -> int:
        return max((photo_id for photo_id, _ in self.entries()), default=0)


class ImportLog:
    """Observational record of where each import came from."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, photo_id: int, fingerprint: str, source: Path, when: Optional[date] = None) -> None:
        day = (when or date.today()).strftime("%Y%m%d")
        # file names may legally contain line breaks; keep the record on one line
        shown = str(source).replace("\r", "\\r").replace("\n", "\\n")
        _append_line(self.path, f"{day} {format_fid(photo_id)} {fingerprint} {shown}")
