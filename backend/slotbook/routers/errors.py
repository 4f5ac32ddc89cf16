from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status

from ..domain.errors import DomainError, ErrorKind
from ..utils.time import to_utc_naive

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.CAPACITY_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.RECURRENCE_RULE_INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def http_error(exc: DomainError) -> HTTPException:
    headers = {"Retry-After": "1"} if exc.retryable else None
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(exc.kind, status.HTTP_409_CONFLICT),
        detail=exc.message,
        headers=headers,
    )


def audit_failure() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")


def utc_naive_or_400(value: Optional[datetime], *, field: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return to_utc_naive(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field} must include a timezone offset",
        ) from exc
