"""
Custom exceptions for the Profile Sync service.
Provides structured error handling for the dual-tier synchronization engine.
"""

from typing import Any, Dict, Optional

from fastapi import status


class ProfileSyncException(Exception):
    """Base exception for the Profile Sync service."""

    def __init__(
        self,
        message: str,
        error_code: str = "PROFILE_SYNC_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication & Authorization
class AuthenticationError(ProfileSyncException):
    """Raised when authentication fails."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTH_ERROR", details)


class AuthorizationError(ProfileSyncException):
    """Raised when the acting signer does not own the record."""

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHZ_ERROR", details)


# Identity Records
class IdentityNotFoundError(ProfileSyncException):
    """Raised when an identity record is not found."""

    def __init__(self, identity_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"Identity not found: {identity_id}"
        super().__init__(message, "IDENTITY_NOT_FOUND", details)


class RecordWriteFailedError(ProfileSyncException):
    """Raised when the record store rejects or fails a write."""

    def __init__(self, identity_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"Failed to write identity record: {identity_id}"
        super().__init__(message, "RECORD_WRITE_FAILED", details)


# Blob Store
class StoreUnavailableError(ProfileSyncException):
    """Raised when the blob store cannot be reached. Safe to retry."""

    def __init__(self, message: str = "Blob store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORE_UNAVAILABLE", details)


class BlobNotFoundError(ProfileSyncException):
    """Raised when a CID or patch is unknown to the blob store."""

    def __init__(self, cid: str, details: Optional[Dict[str, Any]] = None):
        message = f"Blob not found: {cid}"
        super().__init__(message, "BLOB_NOT_FOUND", details)


class BatchTooLargeError(ProfileSyncException):
    """Raised when a batch exceeds the item ceiling."""

    def __init__(self, size: int, max_size: int, details: Optional[Dict[str, Any]] = None):
        message = f"Batch too large: {size} items (max: {max_size})"
        super().__init__(message, "BATCH_TOO_LARGE", details)


class EmptyBatchError(ProfileSyncException):
    """Raised when a batch has no items."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Batch has no items", "EMPTY_BATCH", details)


class MediaNotFoundError(ProfileSyncException):
    """Raised when an image source cannot be fetched from any location."""

    def __init__(self, source: str, details: Optional[Dict[str, Any]] = None):
        message = f"Media source not found: {source}"
        super().__init__(message, "MEDIA_NOT_FOUND", details)


# Ledger
class TransitionRejectedError(ProfileSyncException):
    """Raised when the signer declines or the ledger rejects a pointer transition."""

    def __init__(self, message: str = "Pointer transition rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSITION_REJECTED", details)

    @property
    def orphan_cid(self) -> Optional[str]:
        return self.details.get("orphan_cid")


class SignerRejectedError(ProfileSyncException):
    """Raised by a signer when the user refuses to sign."""

    def __init__(self, message: str = "Signer rejected the transition", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SIGNER_REJECTED", details)


class BlockchainError(ProfileSyncException):
    """Raised when a read-only registry call fails."""

    def __init__(self, message: str = "Blockchain operation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "BLOCKCHAIN_ERROR", details)


# Sync
class NotPublishedError(ProfileSyncException):
    """Raised when an identity has no published pointer."""

    def __init__(self, username: str, details: Optional[Dict[str, Any]] = None):
        message = f"Identity has not been published: {username}"
        super().__init__(message, "NOT_PUBLISHED", details)


class SagaInProgressError(ProfileSyncException):
    """Raised when a second sync saga starts for an identity that already has one running."""

    def __init__(self, identity_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"A sync is already running for identity: {identity_id}"
        super().__init__(message, "SAGA_IN_PROGRESS", details)


# Validation
class ValidationError(ProfileSyncException):
    """Raised when input validation fails."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


def get_exception_status_code(exc: ProfileSyncException) -> int:
    """
    Get the appropriate HTTP status code for a ProfileSyncException.

    Args:
        exc: ProfileSyncException instance

    Returns:
        int: HTTP status code
    """
    status_mapping = {
        # Authentication & Authorization
        "AUTH_ERROR": status.HTTP_401_UNAUTHORIZED,
        "AUTHZ_ERROR": status.HTTP_403_FORBIDDEN,

        # Identity Records
        "IDENTITY_NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "RECORD_WRITE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,

        # Blob Store
        "STORE_UNAVAILABLE": status.HTTP_502_BAD_GATEWAY,
        "BLOB_NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "BATCH_TOO_LARGE": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        "EMPTY_BATCH": status.HTTP_400_BAD_REQUEST,
        "MEDIA_NOT_FOUND": status.HTTP_404_NOT_FOUND,

        # Ledger
        "TRANSITION_REJECTED": status.HTTP_409_CONFLICT,
        "SIGNER_REJECTED": status.HTTP_409_CONFLICT,
        "BLOCKCHAIN_ERROR": status.HTTP_502_BAD_GATEWAY,

        # Sync
        "NOT_PUBLISHED": status.HTTP_404_NOT_FOUND,
        "SAGA_IN_PROGRESS": status.HTTP_409_CONFLICT,

        # Validation
        "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    }

    return status_mapping.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
