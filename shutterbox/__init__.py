"""shutterbox: deduplicated photo archive with a SQLite catalog and dated previews."""

__version__ = "0.3.0"
