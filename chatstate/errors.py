"""Error taxonomy for the chat state core.

User-facing errors subclass FastAPI's HTTPException so the HTTP layer can
render them directly; the rest are internal.
"""

from fastapi import HTTPException


class ChatStateError(HTTPException):
    """Base for errors that are reported back to the caller."""

    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self) -> str:
        return str(self.detail)


class NotFound(ChatStateError):
    """Referenced chat, message or parent does not exist."""

    status_code = 404


class BadRequest(ChatStateError):
    """Malformed input (bad upload, attachment not allowed)."""

    status_code = 400


class StorageFailure(ChatStateError):
    """A durable read or write failed."""

    status_code = 500


class StaleResult(Exception):
    """An async load finished after a newer one superseded it."""


class TreeCorrupted(RuntimeError):
    """Message tree invariants are broken. Always a bug."""
