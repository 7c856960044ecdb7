# shutterbox/core/errors.py
# Error taxonomy shared by every operation.
# - InputError and subclasses are raised before anything is written
# - DuplicateError is a normal skip outcome, not a failure
# - CatalogError is the only one that should end the process

from __future__ import annotations
from typing import Any


class ShutterboxError(Exception):
    """
    Base error. Extra keyword context is kept on the instance and rendered
    into the message, so log lines carry the offending path/fingerprint.

    Usage:
        raise InputError("unsupported extension", path=p, ext=".txt")
    """

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.context:
            return self.message
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({ctx_str})"


class InputError(ShutterboxError):
    """Missing, unreadable or wrong-type source."""


class EmptyDirectoryError(InputError):
    """A directory argument contained no importable files."""


class KeyFormatError(InputError):
    """A lookup key is neither an id nor a fingerprint."""


class DuplicateError(ShutterboxError):
    """Fingerprint is already cataloged; `photo` is the existing row."""

    def __init__(self, message: str, photo=None, **context: Any) -> None:
        self.photo = photo
        super().__init__(message, **context)


class CopyError(ShutterboxError):
    """Master could be neither moved nor copied into the store."""


class InconsistencyError(ShutterboxError):
    """Catalog, master store and journals disagree about a fingerprint."""


class NotFoundError(ShutterboxError):
    """No photo matches the given key."""


class CatalogError(ShutterboxError):
    """The catalog database cannot be opened or initialized."""
