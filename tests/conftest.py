from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from examportal.clock import FixedClock
from examportal.db import create_db_and_tables
from examportal.models.user_model import UserRole

from .factories import T, make_user, make_exam


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FixedClock(T + timedelta(seconds=10))


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'exams.db'}"


@pytest.fixture
async def engine(db_url):
    # NullPool: every session gets its own connection, so concurrent tasks really race
    eng = create_async_engine(db_url, poolclass=NullPool)
    await create_db_and_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def teacher(session_maker):
    return await make_user(session_maker, "teacher@example.com", UserRole.TEACHER)


@pytest.fixture
async def student(session_maker):
    return await make_user(session_maker, "student@example.com", UserRole.STUDENT)


@pytest.fixture
async def exam_with_questions(session_maker, teacher):
    return await make_exam(session_maker, teacher)
