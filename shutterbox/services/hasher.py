# shutterbox/services/hasher.py
from __future__ import annotations

import hashlib
from pathlib import Path

CHUNK_SIZE = 1024 * 1024


def hash_file(p: Path, bufsize: int = CHUNK_SIZE) -> str:
    """
    MD5 hex digest (32 chars) of the full file content, read in chunks so
    memory use does not depend on file size. OSError propagates if the file
    cannot be opened or read.
    """
    h = hashlib.md5()
    with Path(p).open("rb", buffering=0) as f:
        while True:
            chunk = f.read(bufsize)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()
