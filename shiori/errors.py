"""
Error hierarchy for the board/link service.

Every error carries a code and an HTTP status; the global handlers in
main.py render them as {"error": message}.
"""
from __future__ import annotations


class ShioriError(Exception):
    """Base exception for all service errors."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": self.message}


class RequestError(ShioriError):
    """Client input rejected before any store access."""

    code = "INVALID_REQUEST"
    http_status = 400


class NotFoundError(ShioriError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(ShioriError):
    """A transaction could not commit; the caller may retry."""

    code = "CONFLICT"
    http_status = 409


class StorageError(ShioriError):
    """Transport or decoding failure in the document store."""

    code = "STORAGE_ERROR"
    http_status = 503

    def __init__(self, operation: str, detail: str = ""):
        super().__init__(f"failed to {operation}")
        self.operation = operation
        self.detail = detail


class MetadataFetchError(ShioriError):
    """Preview scrape failed. Never surfaced to clients."""

    code = "METADATA_FETCH"
    http_status = 502
