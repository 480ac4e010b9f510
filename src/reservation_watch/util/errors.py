from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1


class ReservationWatchError(Exception):
    """Base error for the reporting pipeline."""


class AuthResolutionError(ReservationWatchError):
    """Raised when a cloud or mail session cannot be established."""


class CloudClientError(ReservationWatchError):
    """Raised when Azure SDK operations fail."""


def as_exit_code(exc: BaseException) -> int:
    # Auth, fetch and unexpected errors all share one status.
    return int(ExitCode.FAILURE)


def _azure_error_types() -> tuple[type[BaseException], ...]:
    try:
        from azure.core.exceptions import AzureError  # type: ignore
    except Exception:
        return ()
    return (AzureError,)


def is_azure_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like an Azure SDK error.
    """
    azure_types = _azure_error_types()
    if azure_types and isinstance(exc, azure_types):
        return True
    return exc.__class__.__module__.startswith("azure.")


def map_azure_error(exc: BaseException, context: str) -> CloudClientError | None:
    """
    Wrap Azure SDK errors with CloudClientError so the CLI reports them uniformly.
    """
    if not is_azure_error(exc):
        return None
    return CloudClientError(f"{context}: {exc}")


@dataclass(frozen=True)
class Outcome:
    """Result of a best-effort call (mail send, telemetry POST)."""

    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> Outcome:
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> Outcome:
        return cls(ok=False, error=reason)
