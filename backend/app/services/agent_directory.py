from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.agent import Agent
from app.services.collaborators import AgentRef


class SqlAgentDirectory:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def find_agent_by_provider_id(self, provider_agent_id: str) -> Optional[AgentRef]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(Agent).where(Agent.elevenlabs_agent_id == provider_agent_id)
            )
            agent = result.scalar_one_or_none()
        if agent is None:
            return None
        return AgentRef(
            internal_agent_id=agent.id,
            owner_user_id=agent.user_id,
            name=agent.name,
        )
