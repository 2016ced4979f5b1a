"""Custom HTTP and domain exceptions."""

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Exception raised when a resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} with id '{identifier}' not found",
        )


class WhatsAppAPIError(HTTPException):
    """Exception raised when WhatsApp API returns an error."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"WhatsApp API error: {detail}",
        )


class BadRequestError(HTTPException):
    """Exception raised for bad requests."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class ConflictError(HTTPException):
    """Exception raised when there's a resource conflict."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class KeywordConfigError(ValueError):
    """Raised when reply keyword sets are empty or overlap."""


class StateConflictError(RuntimeError):
    """Raised when a conversation state write loses a version race twice."""

    def __init__(self, state_id: object):
        super().__init__(f"Conversation state {state_id} was modified concurrently")
        self.state_id = state_id


class RateLimitedError(HTTPException):
    """Exception raised when a recipient's rate limit is exhausted."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
        )
