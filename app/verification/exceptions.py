"""Verification domain errors. Each carries the HTTP status it renders as."""


class VerificationError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(VerificationError):
    """Unknown verification type or malformed payload"""

    status_code = 400


class AuthorizationError(VerificationError):
    """Caller may not act on this worker"""

    status_code = 403


class NotFoundError(VerificationError):
    status_code = 404


class ProviderUnavailable(VerificationError):
    """Provider network/HTTP failure after retries. Retryable."""

    status_code = 502

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} unavailable: {message}")
        self.provider = provider


class InvalidSignature(VerificationError):
    status_code = 401


class StaleTransition(VerificationError):
    """Update does not advance the state machine. Handled as a logged no-op."""

    status_code = 409
