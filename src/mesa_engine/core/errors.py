from __future__ import annotations


class SessionError(Exception):
    """Base for every error the session core raises on purpose."""

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason)
        self.reason = reason


class ValidationError(SessionError):
    pass


class TurnViolation(SessionError):
    pass


class TerminalStateError(TurnViolation):
    pass


class ParseError(SessionError):
    pass


class StaleClaimError(SessionError):
    pass


class RateStoreUnavailable(SessionError):
    pass


class ProviderError(SessionError):
    def __init__(self, reason: str, message: str | None = None, *, status: int | None = None):
        super().__init__(reason, message)
        self.status = status


class QuotaExceeded(ProviderError):
    def __init__(
        self,
        reason: str = "quota_exceeded",
        message: str | None = None,
        *,
        status: int | None = 429,
        retry_after_seconds: int | None = None,
    ):
        super().__init__(reason, message, status=status)
        self.retry_after_seconds = retry_after_seconds


class TransientProviderError(ProviderError):
    pass
