"""Custom exceptions for the application."""


class AmoraException(Exception):
    """Base exception for all Amora errors."""
    code = "error"

    def __init__(self, message: str, status_code: int = 400, code: str | None = None):
        self.message = message
        self.status_code = status_code
        if code:
            self.code = code
        super().__init__(self.message)


# Request Exceptions
class ValidationError(AmoraException):
    """Malformed input, rejected before touching the store."""
    code = "validation_error"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class AuthError(AmoraException):
    """Missing or invalid session."""
    code = "unauthorized"

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message, status_code=401)


# Resource Exceptions
class NotFoundError(AmoraException):
    """Resource absent or inactive."""
    code = "not_found"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ResourceNotFoundError(NotFoundError):
    """Resource not found."""

    def __init__(self, resource: str, id: object):
        self.resource = resource
        self.resource_id = id
        super().__init__(f"{resource} with id {id} not found")


class PermissionDeniedError(AmoraException):
    """Acting user is not a participant, or the chat is blocked."""
    code = "forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=403)


# State Exceptions
class ConflictError(AmoraException):
    """Request conflicts with the current state."""
    code = "conflict"

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class InvalidOperationError(ConflictError):
    """Target fails an eligibility rule for the calling context."""
    code = "invalid_operation"


# Infrastructure Exceptions
class DependencyError(AmoraException):
    """External collaborator failed."""
    code = "dependency_error"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}", status_code=502)


class ReplyGeneratorError(DependencyError):
    """Bot reply could not be produced."""

    def __init__(self, message: str):
        super().__init__("reply-generator", message)


class InternalError(AmoraException):
    """Unexpected store failure."""
    code = "internal_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, status_code=500)
