# src/keysmidi/errors.py
from __future__ import annotations


class KeysMidiError(Exception):
    """Base class for everything raised by keysmidi."""


class ValidationError(KeysMidiError, ValueError):
    """Input that cannot be turned into a sane value (no clamp exists)."""


class InvalidFileFormat(ValidationError):
    def __init__(self, detail: str = ""):
        msg = "invalid file format"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.detail = detail


class NoOpCondition(KeysMidiError):
    """Benign request that leaves state unchanged (e.g. undo on empty history)."""


class NothingToExport(NoOpCondition):
    def __init__(self, msg: str = "no recorded tracks to export"):
        super().__init__(msg)


class ExternalFailure(KeysMidiError):
    """A collaborator (audio engine, instrument loader) failed."""


class StaleReferenceError(KeysMidiError, LookupError):
    """A NoteRef no longer points at a note of its track."""
