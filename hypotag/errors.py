"""
Errors raised by hypotag, and error logging for the CLI.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class HypotagError(Exception):
    """Base class for errors caused by normal hypotag operation."""


class StorageError(HypotagError):
    """The tag index could not be read or written."""


class SearchError(HypotagError):
    """An interactive search session could not run."""

    def __init__(self, message: str = "Search failed"):
        super().__init__(f"SearchError: {message}")


class NotFoundError(HypotagError):
    """A strict lookup referenced something that isn't indexed."""


class TagNotFound(NotFoundError):
    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"You haven't tagged anything as {tag!r} yet.")


class AnnotationNotFound(NotFoundError):
    def __init__(self, id: str):
        self.id = id
        super().__init__(f"Couldn't find an annotation with ID {id!r}")


class BatchError(HypotagError):
    """
    Some annotations in a batch update failed.

    Updates to the other annotations in the batch stay committed.

    Attributes:
        failures: Maps each failed annotation ID to its exception
    """

    def __init__(self, action: str, failures: dict[str, Exception]):
        self.action = action
        self.failures = dict(failures)
        ids = ", ".join(self.failures)
        super().__init__(f"Failed to {action} {len(self.failures)} annotation(s): {ids}")


class DoingNothing(HypotagError):
    """A destructive action was not confirmed."""

    def __init__(self):
        super().__init__("I'm a coward. Doing nothing.")


class ConfigError(HypotagError):
    """The configuration file is missing, unreadable or invalid."""

    def __init__(self, message: str):
        super().__init__(f"ConfigError: {message}")


class TemplateError(HypotagError):
    """An annotation template could not be rendered."""


class RemoteError(HypotagError):
    """The Hypothesis API request failed."""


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path: the given store, else HYPOTAG_STORE_PATH."""
    if store_path is not None:
        return Path(store_path) / "hypotag-errors.log"
    store = os.environ.get("HYPOTAG_STORE_PATH")
    if store:
        return Path(store) / "hypotag-errors.log"
    return Path.home() / ".hypotag" / "hypotag-errors.log"


def log_exception(
    exc: Exception,
    context: str = "",
    store_path: Optional[Path] = None,
) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory to log into (default: from the environment)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
