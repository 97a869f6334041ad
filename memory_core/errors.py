"""Domain exceptions.

Services raise these; ``memory_core.main`` maps them to HTTP responses via
``status_code``. Pure helpers (identity, permission mapping) only ever raise
``ValidationError``.
"""

from __future__ import annotations


class MemoryCoreError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MemoryCoreError):
    status_code = 400


class AuthenticationError(MemoryCoreError):
    status_code = 401


class AuthorizationError(MemoryCoreError):
    status_code = 403


class NotFoundError(MemoryCoreError):
    status_code = 404

    def __init__(self, message: str, attempted: list[str] | None = None) -> None:
        super().__init__(message)
        # Resolution kinds tried before giving up (project resolution only)
        self.attempted = attempted or []


class GithubApiError(ValidationError):
    """Non-2xx response or transport failure talking to GitHub."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(message)
        self.github_status = status_code
        self.retryable = retryable
        self.rate_limited = rate_limited
