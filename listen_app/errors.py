"""
Application-specific exception classes.

Every error carries an HTTP status so the API layer can render it without
knowing which collaborator raised it.
"""


class ListenAppError(Exception):
    """Base exception for the listening companion."""
    status_code = 500

    def __init__(self, message, error_code=None, details=None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self):
        payload = {"error": self.message, "code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class EmptyContentError(ListenAppError):
    """Raised when playback is requested for blank text."""
    status_code = 400


class SessionCreateError(ListenAppError):
    """Raised when the session store could not persist a new session."""
    status_code = 502


class ServiceUnavailableError(ListenAppError):
    """Raised when the quiz generator is not configured."""
    status_code = 503


class FormatError(ListenAppError):
    """Raised when the LLM returns a quiz that is not well-formed."""
    status_code = 502


class NotFoundError(ListenAppError):
    """Raised when a session is unknown to the store or belongs to another user."""
    status_code = 404


class CoordinatorBusyError(ListenAppError):
    """Raised when an action overlaps a pending remote call or an open quiz."""
    status_code = 409


class ConflictError(ListenAppError):
    """Raised when an account with the same email already exists."""
    status_code = 409


class InvalidCredentialsError(ListenAppError):
    status_code = 401
