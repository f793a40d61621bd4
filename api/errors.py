"""
Error types raised by the API layer and translated by the app's exception handlers.
"""

from typing import Dict, List, Optional

from fastapi import status


class CatalogError(Exception):
    """Base error carrying the HTTP status and the public error title."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Server Error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class CatalogValidationError(CatalogError):
    """Request data failed validation."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation Error"

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidIdError(CatalogError):
    """Identifier is not a valid ObjectId."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid ID Format"

    def __init__(self, entity: str = "book"):
        super().__init__(f"Invalid {entity} ID format")


class NotFoundError(CatalogError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"

    def __init__(self, entity: str = "Book"):
        super().__init__(f"{entity} not found")


class ReferenceNotFoundError(CatalogError):
    """A referenced document (e.g. the book's author) does not exist."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid Reference"

    def __init__(self, entity: str = "Author", field: str = "author"):
        super().__init__(f"{entity} not found", field=field)


class DuplicateEntryError(CatalogError):
    """A unique index rejected the write."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Duplicate Entry"

    def __init__(self, field: str, entity: str = "book"):
        super().__init__(f"A {entity} with this {field} already exists", field=field)


class AuthenticationError(CatalogError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Authentication required"

    def __init__(self, message: str = "Please log in to access this endpoint", error: Optional[str] = None):
        super().__init__(message)
        if error:
            self.error = error


class ServiceUnavailableError(CatalogError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"


def duplicate_key_field(details: Optional[Dict]) -> str:
    """
    Extract the offending field name from a pymongo DuplicateKeyError's details.

    Args:
        details: ``DuplicateKeyError.details`` (may be None)

    Returns:
        Field name, or "key" when the server did not report one
    """
    if details:
        for key in ("keyPattern", "keyValue"):
            if details.get(key):
                return next(iter(details[key]))
        message = details.get("errmsg", "")
        if "index: " in message:
            # "... index: isbn_1 dup key: ..."
            index_name = message.split("index: ", 1)[1].split(" ", 1)[0]
            return index_name.rsplit("_", 1)[0]
    return "key"
