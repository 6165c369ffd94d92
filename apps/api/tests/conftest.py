import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.tracked_keyword import TrackedKeyword
from models.user import User
from routers import rate_limit


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'visibility.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    async def _make(user_id: str) -> User:
        user = User(id=user_id, email=f"{user_id}@example.com")
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_tracked_keyword(db_session):
    async def _make(user_id: str, keyword: str, brand_name: str, brand_domain: str) -> str:
        row = TrackedKeyword(user_id=user_id, keyword=keyword, brand_name=brand_name, brand_domain=brand_domain)
        db_session.add(row)
        await db_session.commit()
        return row.id

    return _make
