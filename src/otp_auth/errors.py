"""Error kinds raised by the OTP login flow.

Every error carries the HTTP status and the public message the API
returns.  Internal causes are logged server-side and never put in the
message.
"""

from __future__ import annotations


class OTPAuthError(Exception):
    """Base class for all errors surfaced at the service boundary."""

    status_code: int = 500
    message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ConfigurationError(Exception):
    """The process was started with an unusable configuration."""


class InvalidInput(OTPAuthError):
    status_code = 400
    message = "Invalid request."


class RateLimited(OTPAuthError):
    status_code = 429
    message = "Too many code requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InvalidCode(OTPAuthError):
    """Authentication failure for a submitted code.

    Subclasses exist for logging and tests only; both render the same
    response so a caller cannot tell which case occurred.
    """

    status_code = 401
    message = "Invalid or expired code."

    def __init__(self) -> None:
        super().__init__(InvalidCode.message)


class CodeNotFound(InvalidCode):
    """No live code for the identity: never issued, consumed or expired."""


class CodeMismatch(InvalidCode):
    """A live code exists but the submitted value does not match it."""


class DeliveryFailure(OTPAuthError):
    status_code = 500
    message = "Failed to send email."

    def __init__(self, detail: str = "") -> None:
        super().__init__()
        self.detail = detail


class SigningFailure(OTPAuthError):
    status_code = 401
    message = "Unauthorized."


class BackendUnavailable(OTPAuthError):
    status_code = 503
    message = "Service temporarily unavailable."
