"""Map service-layer ``Failure`` results onto ``HTTPException``."""

from __future__ import annotations

from typing import TypeVar

from fastapi import HTTPException

from taxi_dispatch.domain.results import Failure

T = TypeVar("T")


def unwrap(result: T | Failure) -> T:
    if isinstance(result, Failure):
        raise HTTPException(status_code=result.status_code, detail=result.detail)
    return result
