"""Exception classes for the Audio Station API client."""

from typing import Any, Optional

# Codes shared by every SYNO.* API
COMMON_ERROR_DESCRIPTIONS = {
    100: "Unknown error",
    101: "Invalid parameter",
    102: "The requested API does not exist",
    103: "The requested method does not exist",
    104: "The requested version does not support the functionality",
    105: "The logged in session does not have permission",
    106: "Session timeout",
    107: "Session interrupted by duplicate login",
    119: "SID not found",
}

# Codes returned by SYNO.API.Auth
AUTH_ERROR_DESCRIPTIONS = {
    400: "No such account or incorrect password",
    401: "Account disabled",
    402: "Permission denied",
    403: "2-step verification code required",
    404: "Failed to authenticate 2-step verification code",
    406: "Enforce to authenticate with 2-factor authentication code",
}

# Server-reported "session invalid" class; triggers one re-login and retry
SESSION_ERROR_CODES = frozenset({106, 107, 119})


def describe_error(code: int) -> str:
    """Return a human-readable description for a Synology error code."""
    return (
        COMMON_ERROR_DESCRIPTIONS.get(code)
        or AUTH_ERROR_DESCRIPTIONS.get(code)
        or f"Error code {code}"
    )


class AudioStationError(Exception):
    """Base exception for all Audio Station client errors."""

    pass


class ApiError(AudioStationError):
    """Server-reported failure envelope.

    Attributes:
        code: Error code exactly as reported by the server
        message: Description of the code (generic for vendor-specific codes)
        details: Optional ``error.errors`` payload from the envelope
    """

    def __init__(self, code: int, message: Optional[str] = None, details: Any = None):
        """Initialize API error.

        Args:
            code: Error code from the envelope
            message: Optional override of the default description
            details: Extra error payload reported by the server
        """
        self.code = code
        self.message = message or describe_error(code)
        self.details = details
        super().__init__(f"Audio Station API error {code}: {self.message}")


class SessionExpiredError(ApiError):
    """Session was rejected as expired or invalid (codes 106, 107, 119).

    Raised when the request still fails after the automatic re-login.
    """

    pass


class AuthenticationError(AudioStationError):
    """Credentials were rejected by SYNO.API.Auth (codes 400-406)."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


class UnsupportedApiError(AudioStationError):
    """Logical API name is not allow-listed or not advertised by the server."""

    def __init__(self, api_name: str, reason: str):
        self.api_name = api_name
        super().__init__(f"API {api_name} is not supported: {reason}")


class DecodeError(AudioStationError):
    """Response body does not match the expected envelope or payload shape."""

    pass


class RequestTimeoutError(AudioStationError, TimeoutError):
    """Transport did not complete within the caller's deadline."""

    pass


class StreamCancelledError(AudioStationError):
    """Streaming read was cancelled through its CancellationToken."""

    pass


def error_for_code(code: int, details: Any = None) -> ApiError:
    """Map an envelope error code to the matching ApiError subclass.

    Args:
        code: Error code from the failure envelope
        details: Optional ``errors`` payload

    Returns:
        SessionExpiredError for session-invalid codes, ApiError otherwise
    """
    if code in SESSION_ERROR_CODES:
        return SessionExpiredError(code, details=details)
    return ApiError(code, details=details)
