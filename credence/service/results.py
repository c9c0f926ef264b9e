"""Tagged failure values returned by the token and authorization layers.

Expected failure paths (bad signature, expiry, missing record, wrong role)
come back as a ``Failure`` instead of an exception so callers can branch on
``kind`` explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INVALID_SIGNATURE = "invalid_signature"
    AUTHENTICATION_REQUIRED = "authentication_required"
    VALIDATION_ERROR = "validation_error"


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str = ""

    @property
    def is_failure(self) -> bool:
        return True


__all__ = ["ErrorKind", "Failure"]
