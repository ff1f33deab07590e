"""
Tests del reintento ante fallos de serialización, con una sesión falsa que
cuenta commits y rollbacks.
"""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError

from app.core.exceptions import ConflictException
from app.database import retry_on_serialization_failure, settings


class DriverError(Exception):
    def __init__(self, pgcode: str):
        super().__init__(f"SQLSTATE {pgcode}")
        self.pgcode = pgcode


def _serialization_error() -> DBAPIError:
    return DBAPIError("UPDATE cash_sessions", {}, DriverError("40001"))


class FakeSession:
    def __init__(self, failing_commits: int = 0):
        self.failing_commits = failing_commits
        self.commits = 0
        self.rollbacks = 0

    async def commit(self):
        self.commits += 1
        if self.commits <= self.failing_commits:
            raise _serialization_error()

    async def rollback(self):
        self.rollbacks += 1


async def test_failure_at_commit_reruns_the_operation():
    calls = []

    @retry_on_serialization_failure
    async def operation(db):
        calls.append(db)
        return "ok"

    db = FakeSession(failing_commits=1)
    assert await operation(db) == "ok"
    assert len(calls) == 2
    assert db.commits == 2
    assert db.rollbacks == 1


async def test_failure_inside_operation_is_retried():
    attempts = []

    @retry_on_serialization_failure
    async def operation(db):
        attempts.append(1)
        if len(attempts) == 1:
            raise _serialization_error()
        return len(attempts)

    db = FakeSession()
    assert await operation(db) == 2
    assert db.commits == 1
    assert db.rollbacks == 1


async def test_exhausted_attempts_become_conflict():
    @retry_on_serialization_failure
    async def operation(db):
        return None

    attempts = settings.SERIALIZATION_RETRY_ATTEMPTS
    db = FakeSession(failing_commits=attempts)
    with pytest.raises(ConflictException) as exc:
        await operation(db)
    assert exc.value.code == "SERIALIZATION_FAILURE"
    assert db.commits == attempts
    assert db.rollbacks == attempts


async def test_integrity_error_is_not_retried():
    calls = []

    @retry_on_serialization_failure
    async def operation(db):
        calls.append(1)
        raise IntegrityError("INSERT INTO entries", {}, DriverError("40001"))

    db = FakeSession()
    with pytest.raises(IntegrityError):
        await operation(db)
    assert len(calls) == 1
    assert db.rollbacks == 0


async def test_other_driver_errors_propagate():
    @retry_on_serialization_failure
    async def operation(db):
        raise DBAPIError("SELECT 1", {}, DriverError("57014"))

    db = FakeSession()
    with pytest.raises(DBAPIError):
        await operation(db)
    assert db.rollbacks == 0
    assert db.commits == 0
