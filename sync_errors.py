#!/usr/bin/env python3
"""
Error types for the product image sync.

Run-fatal: ConfigError, AuthError, CatalogQueryError.
Per-item (recorded as failed, run continues): GenerationError, ServiceError,
CatalogProtocolError.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync errors."""


class ConfigError(SyncError):
    """Required configuration is missing or invalid."""


class AuthError(SyncError):
    """Shopware rejected the client credentials."""

    def __init__(self, http_status: int, body: str):
        super().__init__(f"Shopware auth failed ({http_status}): {body}")
        self.http_status = http_status
        self.body = body


class NotAuthenticatedError(SyncError):
    """A catalog operation was attempted before authenticate()."""

    def __init__(self, message: str = "Not authenticated. Call authenticate() first."):
        super().__init__(message)


class CatalogQueryError(SyncError):
    """A product search page could not be fetched."""

    def __init__(self, http_status: int, body: str):
        super().__init__(f"Failed to fetch products ({http_status}): {body}")
        self.http_status = http_status
        self.body = body


class CatalogProtocolError(SyncError):
    """
    One step of the media upload / cover assignment protocol failed.

    Attributes:
        step: "create_media", "upload", "associate" or "set_cover"
        http_status: Response status, None if the response was unusable
        body: Response body or a short reason
        reached: Last UploadStage completed before the failure
    """

    def __init__(self, step: str, http_status: Optional[int], body: str, reached=None):
        if http_status is None:
            message = f"Cover upload failed at step '{step}': {body}"
        else:
            message = f"Cover upload failed at step '{step}' ({http_status}): {body}"
        super().__init__(message)
        self.step = step
        self.http_status = http_status
        self.body = body
        self.reached = reached


class GenerationError(SyncError):
    """The image service answered without a usable image."""


class ServiceError(SyncError):
    """The image service call itself failed (transport or API error)."""

    def __init__(self, message: str, status: Optional[int] = None):
        if status is not None:
            message = f"{message} (status {status})"
        super().__init__(message)
        self.status = status
