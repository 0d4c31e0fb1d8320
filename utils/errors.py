"""Error taxonomy shared by handlers and the domain helpers they call."""


class AppError(Exception):
    """Base class for failures that map onto a client-facing JSON response."""

    status_code = 500
    public_message = "We are experiencing technical difficulties. Please try again later."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict:
        return {"success": False, "message": self.message}


class ValidationError(AppError):
    status_code = 400
    public_message = "The request could not be validated."


class AuthenticationError(AppError):
    status_code = 401
    public_message = "Not authenticated"


class AuthorizationError(AppError):
    status_code = 403
    public_message = "You do not have permission to perform this action."


class NotFoundError(AppError):
    status_code = 404
    public_message = "Not found"


class InfrastructureError(AppError):
    """Detail goes to the log; the client only ever sees the generic message."""

    status_code = 500

    def __init__(self, detail: str | None = None):
        super().__init__(self.public_message)
        self.detail = detail


class UploadRejected(ValidationError):
    """Proof attachment failed validation; ``reason`` is ``type``, ``size`` or ``missing``."""

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason
