"""
Custom exceptions for Selo.

HTTP-facing errors are HTTPException subclasses raised straight from the
service layer. Pipeline errors are plain exceptions the audit runner turns
into a failed audit.
"""
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found"
        )


class ForbiddenError(HTTPException):
    """Access denied exception."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class BadRequestError(HTTPException):
    """Bad request exception."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class ConflictError(HTTPException):
    """Conflict exception (e.g., audit already claimed)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class UnauthorizedError(HTTPException):
    """Unauthorized exception."""

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuditError(Exception):
    """Job-level failure that should settle the audit into failed."""


class CrawlStartError(AuditError):
    """The start URL could not be fetched, so there is nothing to crawl."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Could not fetch {url}: {reason}")
