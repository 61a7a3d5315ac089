"""
Error taxonomy for Matrix Python agents.

Provider failures are split into transient (retried) and permanent
(propagated without retry) branches. An unavailable price is never an
exception: it is a missing map entry or ``None``.
"""

from typing import Optional


class MatrixError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(MatrixError):
    """Invalid or missing configuration detected at construction time."""


class ProviderError(MatrixError):
    """Failure reported by, or while talking to, an external provider."""

    retryable = False

    def __init__(
        self,
        message: str,
        provider: str = "",
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.provider:
            base = f"[{self.provider}] {base}"
        if self.status is not None:
            base = f"{base} (status={self.status})"
        return base


class TransientProviderError(ProviderError):
    """Rate limit, 5xx, timeout or network blip. Safe to retry."""

    retryable = True


class RateLimitedError(TransientProviderError):
    """Provider signalled "too many requests" (HTTP 429)."""


class ProviderTimeoutError(TransientProviderError):
    """Call did not complete within its deadline."""


class PermanentProviderError(ProviderError):
    """Provider rejected the request. Retrying will not help."""


class ProviderCodeError(PermanentProviderError):
    """Envelope carried a non-"0" response code."""

    def __init__(self, code: str, msg: str, provider: str = ""):
        super().__init__(f"code {code}: {msg or 'unknown error'}", provider=provider)
        self.code = code
        self.msg = msg


class MalformedPayloadError(PermanentProviderError):
    """Payload did not match the expected response shape."""


class AuthenticationError(PermanentProviderError):
    """Credentials were rejected (HTTP 401/403)."""
