# shutterbox/repositories/catalog.py
# SQLite-backed catalog: the only place ids are assigned.
# - insert(): id assignment + row write in one transaction
# - UNIQUE(fingerprint) turns a racing second insert into DuplicateError
# - reserve_id() hands out an id ahead of the row so the journal can record it first
# - no update/delete here; restore() writes rows under a known id

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional

from shutterbox.core.errors import CatalogError, DuplicateError, InconsistencyError
from shutterbox.schemas.photo import FingerprintKey, IdKey, Photo, PhotoDraft, PhotoKey

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
_COLUMNS = "id, fingerprint, taken, width, height, rotation"
_IN_CHUNK = 500  # stay well under SQLITE_MAX_VARIABLE_NUMBER


def open_db(db_path: Path) -> sqlite3.Connection:
    """Connect, apply core PRAGMAs and the schema."""
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
    except (sqlite3.Error, OSError) as e:
        raise CatalogError("cannot open catalog", path=db_path, error=e) from e
    return conn


def _row_to_photo(row: Optional[sqlite3.Row]) -> Optional[Photo]:
    if row is None:
        return None
    return Photo(**dict(row))


class Catalog:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @classmethod
    def open(cls, db_path: Path) -> "Catalog":
        logger.debug("Opening catalog %s", db_path)
        return cls(open_db(db_path))

    def close(self) -> None:
        self.conn.close()

    # ---------- writes ----------

    def reserve_id(self) -> int:
        """
        Consume the next id without writing a row, so it can be journaled
        before the insert. An insert that later fails leaves a gap.
        """
        with self.conn:
            row = self.conn.execute("SELECT seq FROM sqlite_sequence WHERE name='photos'").fetchone()
            photo_id = max(row[0] if row else 0, self.max_id()) + 1
            if row is None:
                self.conn.execute("INSERT INTO sqlite_sequence (name, seq) VALUES ('photos', ?)", (photo_id,))
            else:
                self.conn.execute("UPDATE sqlite_sequence SET seq=? WHERE name='photos'", (photo_id,))
        return photo_id

    def insert(self, draft: PhotoDraft, photo_id: Optional[int] = None) -> int:
        """
        Persist all fields atomically under `photo_id` (from reserve_id), or
        under the next id when none is given. Returns the id.
        """
        if photo_id is not None:
            self.restore(Photo(id=photo_id, **draft.model_dump()))
            return photo_id
        try:
            with self.conn:
                cur = self.conn.execute(
                    """
                    INSERT INTO photos (fingerprint, taken, width, height, rotation)
                    VALUES (:fingerprint, :taken, :width, :height, :rotation)
                    """,
                    draft.model_dump(),
                )
        except sqlite3.IntegrityError as e:
            existing = self.find_by_fingerprint(draft.fingerprint)
            if existing is not None:
                raise DuplicateError("already cataloged", photo=existing,
                                     fingerprint=draft.fingerprint, fid=existing.fid) from e
            raise
        return int(cur.lastrowid)

    def restore(self, photo: Photo) -> None:
        """Write a row under a known id (reserved import or journal recovery)."""
        try:
            with self.conn:
                self.conn.execute(
                    f"INSERT INTO photos ({_COLUMNS}) "
                    "VALUES (:id, :fingerprint, :taken, :width, :height, :rotation)",
                    photo.model_dump(),
                )
        except sqlite3.IntegrityError as e:
            existing = self.find_by_fingerprint(photo.fingerprint)
            if existing is not None:
                raise DuplicateError("already cataloged", photo=existing,
                                     fingerprint=photo.fingerprint, fid=existing.fid) from e
            taken_by = self.find_by_id(photo.id)
            if taken_by is not None:
                raise InconsistencyError("id already used by another fingerprint", fid=photo.fid,
                                         fingerprint=taken_by.fingerprint) from e
            raise

    def raise_sequence(self, floor: int) -> None:
        """Make sure the next assigned id is greater than `floor`."""
        if floor <= 0:
            return
        with self.conn:
            row = self.conn.execute("SELECT seq FROM sqlite_sequence WHERE name='photos'").fetchone()
            if row is None:
                self.conn.execute("INSERT INTO sqlite_sequence (name, seq) VALUES ('photos', ?)", (floor,))
            elif row[0] < floor:
                self.conn.execute("UPDATE sqlite_sequence SET seq=? WHERE name='photos'", (floor,))
            else:
                return
        logger.info("Catalog id sequence raised to %d (journal floor)", floor)

    # ---------- reads ----------

    def find_by_id(self, photo_id: int) -> Optional[Photo]:
        row = self.conn.execute(f"SELECT {_COLUMNS} FROM photos WHERE id=?", (int(photo_id),)).fetchone()
        return _row_to_photo(row)

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Photo]:
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM photos WHERE fingerprint=?", (fingerprint.lower(),)
        ).fetchone()
        return _row_to_photo(row)

    def resolve(self, key: PhotoKey) -> Optional[Photo]:
        if isinstance(key, IdKey):
            return self.find_by_id(key.id)
        if isinstance(key, FingerprintKey):
            return self.find_by_fingerprint(key.fingerprint)
        raise TypeError(f"unsupported key type: {type(key).__name__}")

    def list(self, ids: Optional[Iterable[int]] = None) -> List[Photo]:
        """All photos, or the given subset, ascending by id. Unknown ids are ignored."""
        if ids is None:
            rows = self.conn.execute(f"SELECT {_COLUMNS} FROM photos ORDER BY id").fetchall()
            return [_row_to_photo(r) for r in rows]

        wanted = sorted({int(i) for i in ids})
        out: List[Photo] = []
        for start in range(0, len(wanted), _IN_CHUNK):
            chunk = wanted[start:start + _IN_CHUNK]
            marks = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT {_COLUMNS} FROM photos WHERE id IN ({marks}) ORDER BY id", chunk
            ).fetchall()
            out.extend(_row_to_photo(r) for r in rows)
        return out

    def most_recent(self, n: int) -> List[int]:
        """Ids of the n newest photos, oldest of them first."""
        if n <= 0:
            return []
        rows = self.conn.execute("SELECT id FROM photos ORDER BY id DESC LIMIT ?", (n,)).fetchall()
        return [r[0] for r in reversed(rows)]

    def max_id(self) -> int:
        row = self.conn.execute("SELECT MAX(id) FROM photos").fetchone()
        return int(row[0] or 0)

    def count(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM photos").fetchone()[0])
