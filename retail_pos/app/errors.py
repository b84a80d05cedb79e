from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class PosError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PosError):
    """Rejected locally; no I/O was attempted and no state changed."""

    kind = "validation"


class RemoteFailure(PosError):
    """The store answered but refused the request (not found, out of stock, ...)."""

    kind = "remote"


class TransportFailure(PosError):
    kind = "transport"

    def __init__(self, message: str = "store unreachable", detail: Optional[str] = None):
        super().__init__(message)
        # Raw socket/HTTP error text, for logs only.
        self.detail = detail


@dataclass
class Outcome:
    ok: bool
    data: Any = None
    error: Optional[PosError] = None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @classmethod
    def success(cls, data: Any = None) -> "Outcome":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: PosError) -> "Outcome":
        return cls(ok=False, error=error)
