"""Custom exceptions for delayr.

All delayr-specific exceptions inherit from DelayrError for unified error handling.
Each exception preserves the original cause chain for debugging.
"""

from __future__ import annotations

from typing import Any


class DelayrError(Exception):
    """Base exception for all delayr errors.

    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base

    def with_context(self, **kwargs: Any) -> "DelayrError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class DelayrConfigError(DelayrError):
    """Raised when configuration is invalid or a run file cannot be loaded.

    Common causes:
    - Run file not found
    - Invalid YAML syntax
    - Non-numeric environment settings
    """


class DelayrValidationError(DelayrError):
    """Raised when run input is rejected before any run exists.

    Common causes:
    - URL is not absolute
    - HTTP method outside GET/POST/PUT/PATCH/DELETE
    - Too many endpoints or request_count out of range
    - Payload supplied for a method that carries no body
    """


class AdmissionRejected(DelayrError):
    """Raised when a caller exceeded its run-creation allowance.

    Attributes:
        retry_after: Seconds until the caller's window resets
        caller: Key the allowance was tracked under
    """

    def __init__(self, message: str, *, retry_after: int, caller: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.caller = caller


class DelayrRunnerError(DelayrError):
    """Raised when the run controller cannot do what was asked (unknown run, bad state)."""


class InvalidRunTransition(DelayrRunnerError):
    """Raised when a run status change is not a forward step of the lifecycle."""


class DelayrStoreError(DelayrError):
    """Raised by run stores on structural persistence failures.

    Common causes:
    - Writing a sample for a run that does not exist
    - Slug space exhausted after repeated collisions
    """
