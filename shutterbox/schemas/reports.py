# shutterbox/schemas/reports.py
# Per-item results and batch reports returned by the archive operations.
# The CLI only formats these; nothing here does I/O.

from __future__ import annotations

from collections import Counter
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ImportState(str, Enum):
    """How far one file got through the import pipeline."""
    PENDING = "pending"
    HASHED = "hashed"
    DEDUP_CHECKED = "dedup_checked"
    METADATA_EXTRACTED = "metadata_extracted"
    MASTER_WRITTEN = "master_written"
    JOURNALED = "journaled"
    CATALOG_INSERTED = "catalog_inserted"
    PREVIEW_WRITTEN = "preview_written"
    DONE = "done"
    SKIPPED = "skipped"


class ImportStatus(str, Enum):
    IMPORTED = "imported"
    DUPLICATE = "duplicate"
    RECOVERABLE = "recoverable"
    EMPTY = "empty"
    PLANNED = "planned"       # dry-run
    ERROR = "error"


class CheckStatus(str, Enum):
    OK = "ok"
    UNJOURNALED = "unjournaled"
    REPAIRED = "repaired"
    INCONSISTENT = "inconsistent"
    MISSING_MASTER = "missing_master"
    RECOVERABLE = "recoverable"
    RECOVERED = "recovered"
    ORPHAN_MASTER = "orphan_master"
    LOST = "lost"
    NEW = "new"
    ERROR = "error"


class PreviewStatus(str, Enum):
    WRITTEN = "written"
    REGENERATED = "regenerated"
    SKIPPED = "skipped"
    ERROR = "error"


class ImportResult(BaseModel):
    source: str
    status: ImportStatus
    state: ImportState = ImportState.PENDING
    fid: Optional[str] = None
    fingerprint: Optional[str] = None
    taken: Optional[str] = None
    master_path: Optional[str] = None
    preview_path: Optional[str] = None
    message: Optional[str] = None


class CheckResult(BaseModel):
    source: str
    status: CheckStatus
    fingerprint: Optional[str] = None
    fid: Optional[str] = None            # catalog id if cataloged, else journal id
    in_catalog: bool = False
    in_masters: bool = False
    in_journal: bool = False
    message: Optional[str] = None


class PreviewResult(BaseModel):
    fid: str
    status: PreviewStatus
    path: Optional[str] = None
    stale_removed: Optional[str] = None
    message: Optional[str] = None


class _Report(BaseModel):
    items: List = Field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        c = Counter(item.status.value for item in self.items)
        return dict(sorted(c.items()))

    @property
    def failed(self) -> bool:
        return any(item.status.value == "error" for item in self.items)

    def summary(self) -> str:
        parts = [f"{k}={v}" for k, v in self.counts.items()]
        return ", ".join(parts) if parts else "nothing to do"


class ImportReport(_Report):
    items: List[ImportResult] = Field(default_factory=list)


class CheckReport(_Report):
    items: List[CheckResult] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        bad = {CheckStatus.ERROR, CheckStatus.MISSING_MASTER, CheckStatus.INCONSISTENT}
        return any(item.status in bad for item in self.items)


class PreviewReport(_Report):
    items: List[PreviewResult] = Field(default_factory=list)
