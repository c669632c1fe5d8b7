import asyncio
import os
import tempfile
import uuid

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="voice_agents_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.pop("ELEVENLABS_WEBHOOK_SECRET", None)

from app.database import async_session_maker, drop_db, init_db  # noqa: E402
from app.models.agent import Agent  # noqa: E402
from app.models.user import User  # noqa: E402


async def _reset_schema() -> None:
    await drop_db()
    await init_db()


@pytest.fixture(scope="session", autouse=True)
def database_schema():
    asyncio.run(_reset_schema())
    yield


async def create_owner(credits: int = 100):
    """Insert a user plus one agent; returns (user_id, agent_id, provider_agent_id)."""
    suffix = uuid.uuid4().hex[:12]
    provider_agent_id = f"agent_{suffix}"
    async with async_session_maker() as db:
        user = User(email=f"owner_{suffix}@example.com", full_name="Test Owner", credits=credits)
        db.add(user)
        await db.flush()
        agent = Agent(user_id=user.id, elevenlabs_agent_id=provider_agent_id, name="Sales Agent")
        db.add(agent)
        await db.commit()
        return user.id, agent.id, provider_agent_id


@pytest.fixture
def seed_owner():
    return create_owner


@pytest.fixture
def conversation_id():
    return f"conv_{uuid.uuid4().hex}"
