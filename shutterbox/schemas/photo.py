# shutterbox/schemas/photo.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, field_validator

from shutterbox.core.errors import KeyFormatError

FID_WIDTH = 6
FINGERPRINT_LEN = 32
ROTATIONS = (-90, 0, 90, 180)

_FP_RE = re.compile(r"^[0-9a-f]{32}$")
_TAKEN_RE = re.compile(r"^\d{8}(T\d{6})?$")


def format_fid(photo_id: int) -> str:
    """Zero-padded external form of an id: 42 -> '000042'."""
    return str(photo_id).zfill(FID_WIDTH)


class PhotoDraft(BaseModel):
    """Everything the catalog stores except the id it assigns."""
    fingerprint: str
    taken: str
    width: Optional[int] = None
    height: Optional[int] = None
    rotation: int = 0

    @field_validator("fingerprint")
    @classmethod
    def _check_fingerprint(cls, v: str) -> str:
        v = v.lower()
        if not _FP_RE.match(v):
            raise ValueError(f"fingerprint must be {FINGERPRINT_LEN} hex characters")
        return v

    @field_validator("taken")
    @classmethod
    def _check_taken(cls, v: str) -> str:
        if not _TAKEN_RE.match(v):
            raise ValueError("taken must be YYYYMMDD or YYYYMMDDTHHMMSS")
        return v

    @field_validator("rotation")
    @classmethod
    def _check_rotation(cls, v: int) -> int:
        if v not in ROTATIONS:
            raise ValueError(f"rotation must be one of {ROTATIONS}")
        return v


class Photo(PhotoDraft):
    id: int

    @property
    def fid(self) -> str:
        return format_fid(self.id)

    @property
    def display_size(self) -> tuple:
        """(width, height) after the corrective rotation."""
        if self.rotation in (90, -90):
            return (self.height, self.width)
        return (self.width, self.height)


# ---- lookup keys: tagged at the boundary, never re-guessed later ----

@dataclass(frozen=True)
class IdKey:
    id: int

    def __str__(self) -> str:
        return format_fid(self.id)


@dataclass(frozen=True)
class FingerprintKey:
    fingerprint: str

    def __str__(self) -> str:
        return self.fingerprint


PhotoKey = Union[IdKey, FingerprintKey]


def parse_key(raw: str) -> PhotoKey:
    """
    '42' / '000042' -> IdKey(42); 32 hex chars -> FingerprintKey.
    Raises KeyFormatError for anything else.
    """
    s = (raw or "").strip()
    if s.isascii() and s.isdigit() and 1 <= len(s) <= FID_WIDTH:
        n = int(s)
        if n > 0:
            return IdKey(n)
    elif _FP_RE.match(s.lower()):
        return FingerprintKey(s.lower())
    raise KeyFormatError("not a photo id or fingerprint", key=raw)
