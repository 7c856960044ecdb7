# shutterbox/core/config.py
# Loads shutterbox settings from a TOML file (defaults + overrides).
# - Finds shutterbox.toml via --config, SHUTTERBOX_CONFIG, CWD and its parents, ~/.config
# - Normalizes extension lists (lowercase, ensure leading dot)
# - SHUTTERBOX_ROOT / --root override [paths].root
# - Returns an explicit Settings object; nothing here touches the filesystem beyond reading TOML

from __future__ import annotations
from pathlib import Path
import os
from typing import Dict, List, Optional, Tuple
import tomli as tomllib  # py3.11+: tomllib in stdlib; using tomli for compatibility

CONFIG_NAME = "shutterbox.toml"

# -------------------- Defaults (used if TOML omits keys) --------------------
_DEFAULTS = {
    "paths": {
        "root": "~/Pictures/shutterbox",
        "masters_subdir": "masters",
        "preview_subdir": "preview",
        "journal_subdir": "journal",
        "logs_subdir": "logs",
        "db_file": "catalog.sqlite3",
    },
    "import": {
        "extensions": ["jpg", "jpeg"],
        "recursive": True,
        "keep_source": False,       # True => copy into the store instead of moving
        "reset_orientation": True,  # rewrite Orientation=1 on the master (exiftool only)
    },
    "preview": {
        "width": 1600,
        "height": 1200,
        "quality": 82,
    },
    "metadata": {
        "reader": "auto",           # auto | exiftool | pillow
        "exiftool": "exiftool",
    },
    "viewer": {
        "command": ["xdg-open"],
    },
}

_READERS = {"auto", "exiftool", "pillow"}


# -------------------- Read + merge TOML --------------------

def find_config_path(explicit: Optional[str] = None) -> Optional[Path]:
    """Find shutterbox.toml without user input.
    Priority:
      1) explicit path (--config)
      2) SHUTTERBOX_CONFIG
      3) ./shutterbox.toml, then ascend parents from CWD
      4) ~/.config/shutterbox/shutterbox.toml
    """
    if explicit:
        return Path(explicit).expanduser()

    cfg_env = os.getenv("SHUTTERBOX_CONFIG")
    if cfg_env:
        p = Path(cfg_env).expanduser()
        if p.exists():
            return p

    cur = Path.cwd()
    while True:
        candidate = cur / CONFIG_NAME
        if candidate.exists():
            return candidate
        if cur.parent == cur:
            break  # reached filesystem root
        cur = cur.parent

    user_default = Path.home() / ".config" / "shutterbox" / CONFIG_NAME
    if user_default.exists():
        return user_default

    return None


def load_config_toml(path: Optional[Path]) -> dict:
    """Load TOML from path or return {} if there is none."""
    if path and path.exists():
        with path.open("rb") as f:
            return tomllib.load(f)
    return {}


def norm_ext_list(exts: List[str]) -> set[str]:
    """
    Normalize extension strings: ensure leading dot and lowercase.
    Accepts 'jpg' or '.jpg' and returns '.jpg'.
    """
    out: set[str] = set()
    for e in exts:
        e = (e or "").strip().lower()
        if not e:
            continue
        if not e.startswith("."):
            e = "." + e
        out.add(e)
    return out


def _section(cfg: dict, name: str) -> dict:
    return {**_DEFAULTS[name], **(cfg.get(name) or {})}


# -------------------- Settings --------------------
class Settings:
    """
    Effective configuration for one run.
    Relative subdirectories and the DB file are resolved under `root`.
    """
    def __init__(self, cfg: Optional[dict] = None, *, root: Optional[str] = None,
                 source: Optional[Path] = None) -> None:
        cfg = cfg or {}
        self.source = source

        paths = _section(cfg, "paths")
        root_value = root or os.getenv("SHUTTERBOX_ROOT") or paths["root"]
        self.root: Path = Path(root_value).expanduser().resolve()
        self.masters_dir: Path = self._under_root(paths["masters_subdir"])
        self.preview_dir: Path = self._under_root(paths["preview_subdir"])
        self.journal_dir: Path = self._under_root(paths["journal_subdir"])
        self.logs_dir: Path = self._under_root(paths["logs_subdir"])
        self.db_path: Path = self._under_root(paths["db_file"])

        imp = _section(cfg, "import")
        self.extensions: set[str] = norm_ext_list(list(imp.get("extensions") or []))
        self.recursive: bool = bool(imp.get("recursive", True))
        self.keep_source: bool = bool(imp.get("keep_source", False))
        self.reset_orientation: bool = bool(imp.get("reset_orientation", True))

        prev = _section(cfg, "preview")
        self.preview_box: Tuple[int, int] = (int(prev["width"]), int(prev["height"]))
        self.preview_quality: int = int(prev["quality"])
        if min(self.preview_box) <= 0:
            raise ValueError(f"[preview] width/height must be positive, got {self.preview_box}")

        meta = _section(cfg, "metadata")
        reader = str(meta.get("reader", "auto")).strip().lower()
        if reader not in _READERS:
            raise ValueError(f"[metadata] reader must be one of {sorted(_READERS)}, got {reader!r}")
        self.metadata_reader: str = reader
        self.exiftool: str = str(meta.get("exiftool", "exiftool"))

        viewer = _section(cfg, "viewer")
        command = viewer.get("command") or []
        self.viewer_command: List[str] = [command] if isinstance(command, str) else [str(c) for c in command]

    def _under_root(self, value: str) -> Path:
        p = Path(value).expanduser()
        return p if p.is_absolute() else (self.root / p)

    @property
    def journal_paths(self) -> Dict[str, Path]:
        return {
            "masters": self.journal_dir / "masters.txt",
            "previews": self.journal_dir / "previews.txt",
            "imports": self.journal_dir / "imports.txt",
        }

    def __repr__(self) -> str:
        return (
            f"Settings(root={self.root}, db_path={self.db_path}, "
            f"extensions={sorted(self.extensions)}, recursive={self.recursive}, "
            f"keep_source={self.keep_source}, reset_orientation={self.reset_orientation}, "
            f"preview_box={self.preview_box}, metadata_reader={self.metadata_reader})"
        )


def load_settings(config_path: Optional[str] = None, *, root: Optional[str] = None) -> Settings:
    """Discover, read and merge the TOML config into a Settings object."""
    path = find_config_path(config_path)
    if config_path and path and not path.exists():
        raise FileNotFoundError(f"config not found: {path}")
    return Settings(load_config_toml(path), root=root, source=path)
