"""Exceptions raised by the studio core."""

from __future__ import annotations

from typing import Literal

QuotaReason = Literal["rate_limited", "insufficient_credits", "daily_quota", "cooldown"]


class StudioError(Exception):
    """Base class for every error the core raises on purpose."""


class InvalidDimensions(StudioError, ValueError):
    """Raised when an image width or scale factor cannot be used for mapping."""


class ValidationError(StudioError):
    """Client-correctable problem detected before any provider call."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderError(StudioError):
    """An external OCR or translation provider could not be reached."""


class ProviderFormatError(ProviderError):
    """A provider answered with content that does not parse into the expected shape."""


class QuotaExceededError(StudioError):
    """Rate limiter, credit ledger, or cooldown rejected the request."""

    def __init__(self, message: str, *, reason: QuotaReason, retry_at: float | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.retry_at = retry_at


class EmptyResultWarning(UserWarning):
    """OCR found no text in any region; the run still completes."""


__all__ = [
    "StudioError",
    "InvalidDimensions",
    "ValidationError",
    "ProviderError",
    "ProviderFormatError",
    "QuotaExceededError",
    "QuotaReason",
    "EmptyResultWarning",
]
