"""
Typed failures returned by the service layer.

Lifecycle operations never raise for an expected precondition violation
(order already taken, code already used, ...).  They return a ``Failure``
and the API layer maps its ``kind`` to an HTTP status.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TypeVar, Union


class FailureKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    NOT_ACCEPTABLE = "not_acceptable"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INVALID_CODE = "invalid_code"


HTTP_STATUS: dict[FailureKind, int] = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.NOT_ACCEPTABLE: 400,
    FailureKind.VALIDATION: 400,
    FailureKind.CONFLICT: 409,
    FailureKind.INVALID_CODE: 400,
}


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    detail: str

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    @classmethod
    def not_found(cls, what: str) -> "Failure":
        return cls(FailureKind.NOT_FOUND, f"{what} not found")

    @classmethod
    def not_acceptable(cls, detail: str) -> "Failure":
        return cls(FailureKind.NOT_ACCEPTABLE, detail)


T = TypeVar("T")
Outcome = Union[T, Failure]
