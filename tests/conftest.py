import os
from pathlib import Path

import pytest
from PIL import Image

from shutterbox.core.config import Settings
from shutterbox.core.context import ArchiveContext

TAG_ORIENTATION = 0x0112
TAG_DATETIME_ORIGINAL = 0x9003
TAG_DATETIME_DIGITIZED = 0x9004

PREVIEW_BOX = (160, 120)


def write_jpeg(path: Path, size=(400, 300), color=(200, 30, 30), *, orientation=None,
               original=None, digitized=None, mtime=None) -> Path:
    """Solid-colour JPEG with optional EXIF orientation/dates. Distinct colours => distinct bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    im = Image.new("RGB", size, color)
    exif = Image.Exif()
    if orientation is not None:
        exif[TAG_ORIENTATION] = orientation
    if original is not None:
        exif[TAG_DATETIME_ORIGINAL] = original
    if digitized is not None:
        exif[TAG_DATETIME_DIGITIZED] = digitized
    im.save(path, format="JPEG", quality=90, exif=exif.tobytes())
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def make_jpeg(tmp_path):
    counter = {"n": 0}

    def _make(name="IMG.JPG", **kw):
        counter["n"] += 1
        kw.setdefault("color", (counter["n"] * 37 % 256, 90, 200 - counter["n"] % 100))
        return write_jpeg(tmp_path / "incoming" / name, **kw)
    return _make


@pytest.fixture
def settings(tmp_path):
    cfg = {
        "metadata": {"reader": "pillow"},
        "preview": {"width": PREVIEW_BOX[0], "height": PREVIEW_BOX[1]},
    }
    return Settings(cfg, root=str(tmp_path / "archive"))


@pytest.fixture
def ctx(settings):
    c = ArchiveContext(settings)
    yield c
    c.close()
