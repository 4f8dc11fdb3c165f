from fastapi import HTTPException, status
from typing import Any

class NotFoundError(HTTPException):
    """Exception raised when an event, token or participant does not exist."""
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail
        )

class InvalidStateError(HTTPException):
    """Exception raised when a record is in a state that forbids the operation."""
    def __init__(self, detail: str = "Invalid state"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )

class UnauthorizedError(HTTPException):
    """Exception raised when a principal is required but none was resolved."""
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class ForbiddenError(HTTPException):
    """Exception raised when a principal lacks the required capability."""
    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )

class ConflictError(HTTPException):
    """Exception raised when a concurrent write invalidated the operation."""
    def __init__(self, detail: str = "Conflicting update"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )

class CustomException(Exception):
    """Base class for custom exceptions."""
    def __init__(
        self,
        detail: str | dict[str, Any] = "An error occurred",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    ) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)

class InvariantViolation(CustomException):
    """
    Raised when stored collaborator data breaks the role model, e.g. two owner
    records for one event. Never a user error; always logged as critical.
    """
    def __init__(self, detail: str, event_id: int | None = None) -> None:
        self.event_id = event_id
        self.reported = False
        super().__init__(detail=detail, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
