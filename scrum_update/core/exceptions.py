"""
Application exceptions.

Each error carries the HTTP status and machine-readable code the API
returns for it; ``main`` renders them through ``to_dict``.
"""

from typing import Any, Optional


class ScrumUpdateError(Exception):
    """Base exception for all scrum update errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(ScrumUpdateError):
    """A setting names something the application cannot build."""

    code = "CONFIGURATION_ERROR"


class InvalidRequestError(ScrumUpdateError):
    """Caller input was rejected, e.g. an unknown message role or a blank title."""

    code = "INVALID_REQUEST"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field} if field else None)


class AuthenticationError(ScrumUpdateError):
    """The caller's identity could not be resolved."""

    code = "AUTHENTICATION_REQUIRED"
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class SessionNotFoundError(ScrumUpdateError):
    """
    Chat session not found.

    Sessions owned by another user are reported the same way, so callers
    cannot probe for foreign ids.
    """

    code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: int | str) -> None:
        super().__init__(
            f"Session with ID '{session_id}' not found",
            details={"resource_type": "Session", "resource_id": str(session_id)},
        )


class JiraNotConnectedError(ScrumUpdateError):
    """No usable Jira token is linked to the caller."""

    code = "JIRA_NOT_CONNECTED"
    status_code = 409

    def __init__(self, message: str = "Jira is not connected for this user.") -> None:
        super().__init__(message)


class ExternalServiceError(ScrumUpdateError):
    """An upstream dependency failed or answered with an error."""

    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            f"{service_name} error: {message}",
            details={"service": service_name, **(details or {})},
        )


class JiraError(ExternalServiceError):
    code = "JIRA_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("Jira", message, details)


class ChatClientError(ExternalServiceError):
    code = "CHAT_CLIENT_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("Chat client", message, details)
