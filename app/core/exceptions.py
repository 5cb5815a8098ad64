"""Custom exception classes and error handling."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": code,
                    "message": message,
                    "details": details or {},
                },
            },
        )


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="AUTH_FAILED",
            message=message,
        )


class ForbiddenError(AppException):
    """Forbidden action - user is not allowed to perform this action."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            code="FORBIDDEN",
            message=message,
        )


class ValidationError(AppException):
    """Data validation failed."""

    def __init__(
        self,
        message: str = "Validation error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class UploadError(AppException):
    """File upload failed."""

    def __init__(
        self,
        message: str = "Upload failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="UPLOAD_FAILED",
            message=message,
            details=details,
        )


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: str | None = None,
    ):
        details = {}
        if identifier:
            details["identifier"] = identifier
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} not found",
            details=details,
        )


class ConflictError(AppException):
    """Request conflicts with work already in progress."""

    def __init__(self, message: str = "Conflict"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            code="CONFLICT",
            message=message,
        )


class InternalError(AppException):
    """Internal server error."""

    def __init__(
        self,
        message: str = "Internal server error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="INTERNAL_ERROR",
            message=message,
            details=details,
        )


# ==========================================
# Ingestion errors
# ==========================================
# These never reach the HTTP layer directly. The upload service turns them
# into a FAILED upload result with an "Error: " prefixed message.


class IngestionError(Exception):
    """Base class for errors that abort an ingestion run."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SheetFormatError(IngestionError):
    """Workbook is unreadable or holds no usable data rows."""


class MissingColumnsError(IngestionError):
    """One or more required columns have no matching header."""

    def __init__(self, missing: list[str], found: list[str]):
        self.missing = missing
        self.found = found
        super().__init__(
            f"Missing required columns: {', '.join(missing)}. "
            f"Found headers: {', '.join(found) if found else '(none)'}",
            details={"missing": missing, "found": found},
        )


class StoreError(IngestionError):
    """A store call failed (network, constraint, driver)."""

    def __init__(self, message: str, table: str | None = None, operation: str | None = None):
        self.table = table
        self.operation = operation
        super().__init__(message, details={"table": table, "operation": operation})


class StoreForbiddenError(StoreError):
    """The principal is not allowed to perform the store call."""


class ChunkWriteError(IngestionError):
    """A chunked write failed; earlier chunks remain committed."""

    def __init__(self, label: str, chunk_index: int, chunk_size: int, cause: Exception):
        self.label = label
        self.chunk_index = chunk_index
        self.chunk_size = chunk_size
        self.cause = cause
        cause_message = getattr(cause, "message", None) or str(cause)
        super().__init__(
            f"Error {label} batch {chunk_index}: {cause_message}",
            details={"chunk_index": chunk_index, "chunk_size": chunk_size},
        )


class IngestionCancelled(IngestionError):
    """The run was cancelled between chunks."""

    def __init__(self, completed_chunks: int):
        self.completed_chunks = completed_chunks
        super().__init__(
            f"Upload cancelled after chunk {completed_chunks}",
            details={"completed_chunks": completed_chunks},
        )
