"""Custom exceptions for storypath with user-friendly error messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .structure import StructureIssue

logger = logging.getLogger(__name__)


class StorypathError(Exception):
    """Base exception for all storypath errors."""

    def __init__(self, message: str, user_message: Optional[str] = None, help_text: Optional[str] = None):
        """Initialize error with technical and user-friendly messages.

        Args:
            message: Technical error message for logs
            user_message: User-friendly message to display
            help_text: Optional help/suggestion text
        """
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.help_text = help_text

        self._log_error()

    def _log_error(self):
        """Log error with user-friendly formatting."""
        logger.error(self.user_message)
        if self.help_text:
            logger.info(self.help_text)
        logger.debug(f"Technical details: {self.message}")


class StorageError(StorypathError):
    """Base class for storage backend failures."""

    def __init__(self, location: str, message: str, **kwargs):
        self.location = location
        super().__init__(message, **kwargs)

    def _log_error(self):
        logger.warning(self.user_message)
        logger.debug(f"Technical details: {self.message}")


class StorageReadError(StorageError):
    """Persisted progress could not be read."""

    def __init__(self, location: str, details: Optional[str] = None):
        message = f"Failed to read progress from {location}"
        if details:
            message += f": {details}"

        super().__init__(
            location=location,
            message=message,
            user_message="Saved reading progress could not be loaded",
            help_text="Progress for this session starts fresh; earlier progress is left untouched on disk",
        )


class StorageWriteError(StorageError):
    """Progress could not be written to the backend."""

    def __init__(
        self,
        location: str,
        details: Optional[str] = None,
        user_message: str = "Reading progress could not be saved",
        help_text: str = "Your progress is kept for this session. Check that the storage location is writable.",
    ):
        message = f"Failed to write progress to {location}"
        if details:
            message += f": {details}"

        super().__init__(
            location=location,
            message=message,
            user_message=user_message,
            help_text=help_text,
        )


class QuotaExceededError(StorageWriteError):
    """The storage backend is out of space."""

    def __init__(self, location: str, details: Optional[str] = None):
        super().__init__(
            location,
            details,
            user_message="Storage is full, reading progress was not saved",
            help_text="Free up some space; your progress is kept for this session",
        )


class SnapshotFormatError(StorypathError):
    """A persisted progress document does not match the expected layout."""

    def __init__(self, details: str):
        super().__init__(
            f"Malformed progress document: {details}",
            user_message="Saved reading progress is damaged and was reset",
        )

    def _log_error(self):
        logger.debug(f"Technical details: {self.message}")


class SnapshotVersionError(SnapshotFormatError):
    """A persisted progress document has a version with no migration path."""

    def __init__(self, version: object, current: int):
        self.version = version
        self.current = current
        super().__init__(f"no migration from version {version!r} to {current}")


class ContentIntegrityError(StorypathError):
    """Story structure content breaks one or more authoring rules."""

    def __init__(self, source: str, issues: Sequence["StructureIssue"] = ()):
        self.source = source
        self.issues = list(issues)

        message = f"Story structure {source} has {len(self.issues)} integrity issue(s)"
        if self.issues:
            message += ": " + "; ".join(issue.message for issue in self.issues[:5])

        super().__init__(
            message,
            user_message=f"Story content in {source} is inconsistent",
            help_text="Run `storypath validate` on the story metadata for a full report",
        )
