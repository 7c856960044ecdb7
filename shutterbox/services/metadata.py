# shutterbox/services/metadata.py
# Canonical capture time + corrective rotation for one image.
# - exiftool first (JSON, dates pre-formatted with -d), Pillow EXIF as fallback
# - Date candidates: CreateDate, DateTimeOriginal, FileModifyDate; first valid one wins
# - Anything unusable resolves to the 1970 sentinel instead of a silent wrong value

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from shutterbox.core.errors import InputError

logger = logging.getLogger(__name__)

TAKEN_FORMAT = "%Y%m%dT%H%M%S"
SENTINEL_TAKEN = "19700101T000000"
MIN_YEAR = 1970

DATE_KEYS = ("CreateDate", "DateTimeOriginal", "FileModifyDate")

ORIENTATION_TO_ROTATION = {6: 90, 8: -90, 3: 180}

# EXIF tag ids (Pillow exposes raw ids; names as exiftool reports them)
_TAG_ORIENTATION = 0x0112
_TAG_EXIF_IFD = 0x8769
_TAG_DATETIME_ORIGINAL = 0x9003
_TAG_DATETIME_DIGITIZED = 0x9004   # exiftool calls this CreateDate

_strict_re = re.compile(r"^\d{8}T\d{6}$")
_exif_dt_re = re.compile(
    r"^(?P<y>\d{4}):(?P<m>\d{2}):(?P<d>\d{2})[ T]"
    r"(?P<H>\d{2}):(?P<M>\d{2}):(?P<S>\d{2})"
    r"(?:\.(?P<sub>\d+))?(?P<tz>Z|[+\-]\d{2}:?\d{2})?$"
)


@dataclass
class Metadata:
    taken: str
    rotation: int
    width: Optional[int]
    height: Optional[int]
    orientation: Optional[int] = None
    tags: dict = field(default_factory=dict)


# ---------- pure normalizers ----------

def normalize_timestamp(value) -> Optional[str]:
    """
    Return `YYYYMMDDTHHMMSS` for a strict stamp or a raw EXIF date
    ("2020:05:01 10:00:00", optional subseconds/offset), else None.
    The local wall-clock time is kept; offsets are dropped.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None

    if _strict_re.match(s):
        candidate = s
    else:
        m = _exif_dt_re.match(s)
        if not m:
            return None
        candidate = "{y}{m}{d}T{H}{M}{S}".format(**m.groupdict())

    try:
        datetime.strptime(candidate, TAKEN_FORMAT)
    except ValueError:
        return None  # 0000:00:00 00:00:00 and other impossible dates
    return candidate


def resolve_taken(meta: dict) -> str:
    """First of DATE_KEYS that normalizes and is after 1970, else the sentinel."""
    for k in DATE_KEYS:
        stamp = normalize_timestamp(meta.get(k))
        if stamp and int(stamp[:4]) > MIN_YEAR:
            return stamp
    return SENTINEL_TAKEN


def rotation_for(orientation) -> int:
    """EXIF orientation -> clockwise degrees to rotate the stored image for display."""
    try:
        return ORIENTATION_TO_ROTATION.get(int(orientation), 0)
    except (TypeError, ValueError):
        return 0


def image_size(p: Path) -> tuple:
    """(width, height) of the stored pixels; EXIF orientation is ignored."""
    try:
        with Image.open(p) as im:
            return im.size
    except (UnidentifiedImageError, OSError) as e:
        raise InputError("cannot decode image", path=p, error=e) from e


# ---------- tag readers ----------

def _via_exiftool(exe: str, p: Path) -> dict:
    """Raw exiftool tags for the fields we use; dates come back as YYYYMMDDTHHMMSS."""
    cmd = [
        exe, "-j",
        "-d", TAKEN_FORMAT,
        "-api", "largefilesupport=1",
        *[f"-{k}" for k in DATE_KEYS],
        "-Orientation#",
        str(p),
    ]
    proc = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=30)
    if proc.returncode != 0:
        raise RuntimeError(proc.stderr.strip() or f"exiftool rc={proc.returncode}")
    data = json.loads(proc.stdout or "[]") or [{}]
    row = dict(data[0])
    row.pop("SourceFile", None)
    return row


def _via_pillow(p: Path) -> dict:
    """Image-only fallback. FileModifyDate comes from the filesystem like exiftool's."""
    out: dict = {}
    st = p.stat()
    out["FileModifyDate"] = datetime.fromtimestamp(st.st_mtime).strftime(TAKEN_FORMAT)
    try:
        with Image.open(p) as im:
            exif = im.getexif()
            sub = exif.get_ifd(_TAG_EXIF_IFD) if exif else {}
    except (UnidentifiedImageError, OSError):
        return out
    if not exif:
        return out
    if _TAG_ORIENTATION in exif:
        out["Orientation"] = exif[_TAG_ORIENTATION]
    # Some writers leave the capture dates in IFD0; the Exif sub-IFD wins when both exist
    for name, tag in (("DateTimeOriginal", _TAG_DATETIME_ORIGINAL), ("CreateDate", _TAG_DATETIME_DIGITIZED)):
        value = sub.get(tag) or exif.get(tag)
        if value:
            out[name] = str(value).strip("\x00 ")
    return out


class MetadataReader:
    """
    Reads and normalizes capture metadata.
    reader: "auto" (exiftool if on PATH, else Pillow), "exiftool" (required), "pillow".
    """
    def __init__(self, reader: str = "auto", exiftool: str = "exiftool") -> None:
        self.exiftool_path = shutil.which(exiftool) if reader != "pillow" else None
        if reader == "exiftool" and not self.exiftool_path:
            raise FileNotFoundError(f"exiftool not found on PATH ({exiftool!r})")
        self.backend = "exiftool" if self.exiftool_path else "pillow"

    def read_tags(self, p: Path) -> dict:
        if self.backend == "exiftool":
            try:
                return _via_exiftool(self.exiftool_path, p)
            except (RuntimeError, ValueError, subprocess.SubprocessError) as e:
                logger.warning("exiftool failed on %s (%s); falling back to Pillow", p, e)
        return _via_pillow(p)

    def extract(self, p: Path) -> Metadata:
        tags = self.read_tags(p)
        width, height = image_size(p)
        orientation = tags.get("Orientation")
        try:
            orientation = int(orientation) if orientation is not None else None
        except (TypeError, ValueError):
            orientation = None
        return Metadata(
            taken=resolve_taken(tags),
            rotation=rotation_for(orientation),
            width=width,
            height=height,
            orientation=orientation,
            tags=tags,
        )

    @property
    def can_rewrite(self) -> bool:
        return self.backend == "exiftool"

    def reset_orientation(self, p: Path) -> None:
        """Rewrite the Orientation tag to 1 (normal) in place."""
        if not self.can_rewrite:
            raise RuntimeError("rewriting orientation needs exiftool")
        proc = subprocess.run(
            [self.exiftool_path, "-overwrite_original", "-n", "-Orientation=1", str(p)],
            capture_output=True, text=True, check=False, timeout=30,
        )
        if proc.returncode != 0:
            raise RuntimeError(proc.stderr.strip() or f"exiftool rc={proc.returncode}")
