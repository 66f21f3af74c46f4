#!/usr/bin/env python3
"""Common error types shared across modules.

Kept in a leaf module so handlers, the registry and the store can all raise
and catch them without circular imports.
"""

from typing import Optional


class SourceSyncError(Exception):
    """Base class for pipeline errors."""


class SourceDetectionError(SourceSyncError):
    """Raised when a URL cannot be classified into any source type.

    Attributes:
        url: The URL that failed classification.
    """

    def __init__(self, url: str, message: Optional[str] = None):
        super().__init__(message or f"Could not detect a supported source for {url}")
        self.url = url


class UnsupportedSourceTypeError(SourceSyncError):
    """Raised when no handler is registered for a source type."""

    def __init__(self, source_type: str):
        super().__init__(f"Unsupported source type: {source_type}")
        self.source_type = source_type


class FeedFetchError(SourceSyncError):
    """Network failure, timeout or non-success status while fetching a feed."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class FeedParseError(SourceSyncError):
    """Raised when a fetched body is not a parseable feed."""

    def __init__(self, url: str, message: str = "Malformed feed"):
        super().__init__(f"{message} ({url})")
        self.url = url


class StoreError(SourceSyncError):
    """Raised when a store operation fails inside the database worker."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


__all__ = [
    "SourceSyncError",
    "StoreError",
    "SourceDetectionError",
    "UnsupportedSourceTypeError",
    "FeedFetchError",
    "FeedParseError",
]
