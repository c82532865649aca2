"""
Error taxonomy for the gateway.
Cache misses and expired tokens are not errors; they trigger a new login.
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""

    error_code = "gateway_error"


class ConfigError(GatewayError):
    """Missing or invalid settings. Fatal at startup."""

    error_code = "config_error"


class StorageError(GatewayError):
    """Token cache could not be read or written."""

    error_code = "storage_error"


class AuthenticationError(GatewayError):
    """Login flow against the identity provider failed."""

    error_code = "authentication_failed"
    kind = "unknown"


class InvalidCredentialsError(AuthenticationError):
    """Provider rejected the account or client credentials."""

    kind = "invalid_credentials"


class AuthenticationTimeoutError(AuthenticationError):
    """Login did not finish within the configured timeout, or the network failed."""

    kind = "timeout"


class UnexpectedLoginResponseError(AuthenticationError):
    """Login page, redirect or token response did not have the expected shape."""

    kind = "unexpected_response"


class VendorError(GatewayError):
    """Non-2xx response from the vendor API. Carries status and body for diagnostics."""

    error_code = "vendor_error"

    def __init__(self, status_code: int, body: str, message: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Vendor API returned {status_code}: {body[:200]}")


class VendorAuthorizationError(VendorError):
    """Vendor API answered 401/403; the cached token is no longer accepted."""


class NotFoundError(GatewayError):
    """Requested vendor resource (e.g. active session) does not exist."""

    error_code = "not_found"
