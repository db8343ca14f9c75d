"""
Custom exceptions for the application.

Every error that reaches an HTTP client is an ``AppError``; each subclass
fixes the HTTP status and the problem-details type/title it renders as.
"""

from typing import Any


class AppError(Exception):
    """Base exception for application errors."""

    status_code: int = 500
    title: str = "Internal Server Error"
    problem: str = "internal-error"

    def __init__(self, message: str, code: str = "APP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)

    def problem_details(self) -> dict[str, Any]:
        """Render as an RFC 7807 problem-details body."""
        return {
            "type": f"/errors/{self.problem}",
            "title": self.title,
            "status": self.status_code,
            "detail": self.message,
        }


class InvalidRequestError(AppError):
    """Malformed client input."""

    status_code = 400
    title = "Invalid Request"
    problem = "invalid-request"

    def __init__(self, message: str = "Request is invalid") -> None:
        super().__init__(message, "INVALID_REQUEST")


class InvalidEventError(AppError):
    """Provider event that cannot be correlated to a call."""

    status_code = 400
    title = "Invalid Event"
    problem = "invalid-event"

    def __init__(self, message: str = "CallConnectionId not found in event") -> None:
        super().__init__(message, "INVALID_EVENT")


class NotFoundError(AppError):
    """Requested resource does not exist."""

    status_code = 404
    title = "Not Found"
    problem = "not-found"

    def __init__(self, message: str = "Resource not found", code: str = "NOT_FOUND") -> None:
        super().__init__(message, code)


class MemberNotFoundError(NotFoundError):
    """Member not found."""

    title = "Member Not Found"
    problem = "member-not-found"

    def __init__(self, member_id: int) -> None:
        super().__init__(f"Member with ID {member_id} not found", "MEMBER_NOT_FOUND")
        self.member_id = member_id


class CallSessionNotFoundError(NotFoundError):
    """Call session not found."""

    title = "Call Not Found"
    problem = "call-not-found"

    def __init__(self, call_connection_id: str) -> None:
        super().__init__(
            f"Call with connection ID {call_connection_id} not found",
            "CALL_NOT_FOUND",
        )
        self.call_connection_id = call_connection_id


class MemberNotEligibleError(AppError):
    """Member exists but may not be called."""

    status_code = 422
    title = "Member Not Eligible"
    problem = "member-not-eligible"

    def __init__(self, member_id: int, status: str) -> None:
        super().__init__(
            f"Member {member_id} is not eligible for calls (status: {status})",
            "MEMBER_NOT_ELIGIBLE",
        )
        self.member_id = member_id
        self.member_status = status


class ConflictError(AppError):
    """Request conflicts with current state."""

    status_code = 409
    title = "Conflict"
    problem = "conflict"

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message, code)


class ActiveCallExistsError(ConflictError):
    """Member already has a call in a non-terminal status."""

    title = "Call In Progress"
    problem = "call-in-progress"

    def __init__(self, member_id: int, call_session_id: int) -> None:
        super().__init__(
            f"Member {member_id} already has an active call (session {call_session_id})",
            "CALL_IN_PROGRESS",
        )
        self.member_id = member_id
        self.call_session_id = call_session_id


class ProviderFailureError(AppError):
    """Telephony provider rejected or could not complete a command."""

    status_code = 502
    title = "Telephony Provider Failure"
    problem = "provider-failure"

    def __init__(self, message: str = "Telephony provider could not place the call") -> None:
        super().__init__(message, "PROVIDER_FAILURE")


class InternalError(AppError):
    """Unexpected failure; detail never exposes internals."""

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(message, "INTERNAL_ERROR")
