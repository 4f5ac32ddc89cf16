import pytest
from slotbook.domain.errors import InvalidInputError, StoreConflictError
from slotbook.infrastructure.transactions import atomic
from slotbook.routers.errors import http_error
from sqlalchemy.exc import OperationalError


class DummySession:
    def __init__(self) -> None:
        self.exits: list[object] = []

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.exits.append(exc_type)
        return False

    def begin(self) -> "DummySession":
        return self


@pytest.mark.asyncio
async def test_lock_wait_becomes_retryable_conflict() -> None:
    session = DummySession()
    with pytest.raises(StoreConflictError) as excinfo:
        async with atomic(session):  # type: ignore[arg-type]
            raise OperationalError("SELECT ... FOR UPDATE", None, Exception("Lock wait timeout exceeded"))
    assert excinfo.value.retryable is True
    assert session.exits == [OperationalError]

    error = http_error(excinfo.value)
    assert error.status_code == 409
    assert error.headers == {"Retry-After": "1"}


@pytest.mark.asyncio
async def test_domain_errors_pass_through_unchanged() -> None:
    session = DummySession()
    with pytest.raises(InvalidInputError):
        async with atomic(session):  # type: ignore[arg-type]
            raise InvalidInputError("spots must be between 1 and 5")
    assert session.exits == [InvalidInputError]


@pytest.mark.asyncio
async def test_clean_exit_commits() -> None:
    session = DummySession()
    async with atomic(session) as active:  # type: ignore[arg-type]
        assert active is session
    assert session.exits == [None]
