import os

# --- SETUP ---
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# --- App Imports ---
from main import app
from daily_checklist.database.connection import Base, get_db
from daily_checklist.database.models import Child, DeviceToken, Role, User, UserStatus
from daily_checklist.services.fcm_service import get_push_gateway
from daily_checklist.utils.security import hash_password, create_user_token

# --- Test DB Setup ---
DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "password123"


class FakePushGateway:
    """Records every push attempt instead of calling FCM."""

    def __init__(self):
        self.calls: List[dict] = []
        self.failing_tokens = set()

    async def send_each(self, tokens, title, body, data=None) -> Dict[str, bool]:
        results = {}
        for token in tokens:
            self.calls.append({"token": token, "title": title, "body": body, "data": data})
            results[token] = token not in self.failing_tokens
        return results

    async def send(self, tokens, title, body, data=None) -> bool:
        results = await self.send_each(tokens, title, body, data)
        return any(results.values())


# --- CORE FIXTURES ---

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    TestingSessionLocal = async_sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def push_gateway() -> FakePushGateway:
    return FakePushGateway()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, push_gateway: FakePushGateway) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_gateway] = lambda: push_gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# --- DATA HELPERS ---

async def make_user(db: AsyncSession, email: str, role: Role, name: str = "Test User", created_by=None,
                    status: UserStatus = UserStatus.ACTIVE) -> User:
    user = User(
        name=name,
        email=email,
        password=hash_password(TEST_PASSWORD),
        role=role,
        created_by=created_by,
        status=status,
        token_version=0,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_child(db: AsyncSession, name: str, parent: User = None, teacher: User = None, age: int = 4) -> Child:
    child = Child(
        name=name,
        age=age,
        parent_id=parent.id if parent else None,
        teacher_id=teacher.id if teacher else None,
    )
    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def make_token(db: AsyncSession, user: User, token: str, is_active: bool = True) -> DeviceToken:
    device_token = DeviceToken(user_id=user.id, token=token, device_info="test device", is_active=is_active)
    db.add(device_token)
    await db.commit()
    await db.refresh(device_token)
    return device_token


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest_asyncio.fixture(scope="function")
async def teacher(db_session: AsyncSession) -> User:
    return await make_user(db_session, "teacher@example.com", Role.TEACHER, name="Teacher One")


@pytest_asyncio.fixture(scope="function")
async def parent(db_session: AsyncSession, teacher: User) -> User:
    return await make_user(db_session, "parent@example.com", Role.PARENT, name="Parent One", created_by=teacher.id)


@pytest_asyncio.fixture(scope="function")
async def other_parent(db_session: AsyncSession, teacher: User) -> User:
    return await make_user(db_session, "parent2@example.com", Role.PARENT, name="Parent Two", created_by=teacher.id)


@pytest_asyncio.fixture(scope="function")
async def child(db_session: AsyncSession, parent: User, teacher: User) -> Child:
    return await make_child(db_session, "Alice", parent=parent, teacher=teacher)
