# shutterbox/core/context.py
# One ArchiveContext per run: owns the catalog connection, the journals,
# the metadata reader and the memo of directories already created.

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional, Set

from shutterbox.core.config import Settings
from shutterbox.core.errors import CatalogError
from shutterbox.core.log import run_logger
from shutterbox.repositories.catalog import Catalog
from shutterbox.repositories.journals import ImportLog, Journal
from shutterbox.repositories.masters import MasterStore
from shutterbox.services.metadata import MetadataReader

logger = logging.getLogger(__name__)


class ArchiveContext:
    def __init__(self, settings: Settings, *, reader: Optional[MetadataReader] = None) -> None:
        self.settings = settings
        self.root = settings.root
        self.run_id = uuid.uuid4().hex[:8]
        self.log = run_logger(self.run_id)
        self._made_dirs: Set[Path] = set()

        try:
            self.ensure_dir(self.root)
        except OSError as e:
            raise CatalogError("cannot create archive root", path=self.root, error=e) from e

        journals = settings.journal_paths
        self.master_journal = Journal(journals["masters"])
        self.preview_journal = Journal(journals["previews"])
        self.import_log = ImportLog(journals["imports"])
        self.masters = MasterStore(settings.masters_dir, self.ensure_dir)
        self.reader = reader or MetadataReader(settings.metadata_reader, settings.exiftool)

        self.catalog = Catalog.open(settings.db_path)
        # A rebuilt catalog must never hand out an id the journal already used
        self.catalog.raise_sequence(self.master_journal.max_id())

    def ensure_dir(self, d: Path) -> None:
        """mkdir -p, at most once per directory per run."""
        if d in self._made_dirs:
            return
        d.mkdir(parents=True, exist_ok=True)
        self._made_dirs.add(d)

    def relative(self, p: Path) -> str:
        """Path as stored in journals: relative to root when inside it."""
        try:
            return Path(p).relative_to(self.root).as_posix()
        except ValueError:
            return str(p)

    def absolute(self, stored: str) -> Path:
        p = Path(stored)
        return p if p.is_absolute() else (self.root / p)

    def close(self) -> None:
        self.catalog.close()

    def __enter__(self) -> "ArchiveContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
