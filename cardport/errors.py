"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

errors.py

Structured exceptions for the APKG import pipeline.

Every error carries a human-readable message, an optional suggestion for
the user, a context dict with the offending values, and the underlying
cause. Fatal whole-import errors (archive, format, database) are raised
to the caller; everything recoverable is collected into result-level
warning lists instead.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CardportError(Exception):
    """Base class for all Cardport errors."""

    category = "error"

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        lines = [self.message]
        if self.suggestion:
            lines.append(f"  Suggestion: {self.suggestion}")
        for key, value in self.context.items():
            lines.append(f"  {key}: {value}")
        if self.cause is not None:
            lines.append(f"  Caused by: {type(self.cause).__name__}: {self.cause}")
        return "\n".join(lines)


# ============================================================================
# Fatal, whole-import
# ============================================================================

class ArchiveError(CardportError):
    """The archive itself cannot be imported."""

    category = "archive_error"


class CorruptArchive(ArchiveError):
    """ZIP container cannot be opened or decompressed."""

    category = "corrupt_archive"


class UnsupportedFormat(ArchiveError):
    """No supported database file was found inside the archive."""

    category = "unsupported_format"

    def __init__(self, message: str, format=None, **kwargs):
        super().__init__(message, **kwargs)
        self.format = format


class CorruptDatabase(CardportError):
    """Embedded database is unreadable or lacks its configuration row."""

    category = "corrupt_database"


class ImportCancelled(CardportError):
    """The caller cancelled the import between notes."""

    category = "cancelled"


# ============================================================================
# Recoverable
# ============================================================================

class HTMLConversionError(CardportError):
    """Error during HTML to Markdown conversion"""

    category = "conversion_error"


class MediaStorageError(CardportError):
    """A single media asset could not be written."""

    category = "media_error"


class EmptyNoteError(CardportError):
    """A note has no usable field content on either side."""

    category = "empty_note"

    def __init__(self, message: str, note_id: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.note_id = note_id
