import asyncio
import os

from sqlalchemy import select

from app.database import async_session_maker, init_db
from app.models.agent import Agent
from app.models.user import User

# Sample Data
OWNER = {
    "email": "owner@example.com",
    "full_name": "Demo Owner",
    "credits": 500,
}

AGENTS = [
    {
        "name": "Inbound Sales Agent",
        "elevenlabs_agent_id": os.getenv("SEED_ELEVENLABS_AGENT_ID", "agent_demo_inbound"),
    },
    {
        "name": "Website Chat Agent",
        "elevenlabs_agent_id": "agent_demo_web",
    },
]


async def seed_data():
    print("Initializing database...")
    await init_db()

    async with async_session_maker() as session:
        # 1. Ensure the owner exists
        result = await session.execute(select(User).where(User.email == OWNER["email"]))
        user = result.scalar_one_or_none()

        if not user:
            print("Creating owner...")
            user = User(is_active=True, **OWNER)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            print(f"Created user: {user.email} with {user.credits} credits")
        else:
            print(f"Found user: {user.email}")

        # 2. Map provider agents to the owner
        for agent_data in AGENTS:
            result = await session.execute(
                select(Agent).where(Agent.elevenlabs_agent_id == agent_data["elevenlabs_agent_id"])
            )
            if result.scalar_one_or_none() is not None:
                print(f"Agent {agent_data['elevenlabs_agent_id']} already exists. Skipping.")
                continue
            session.add(Agent(user_id=user.id, **agent_data))
            print(f"Added agent {agent_data['elevenlabs_agent_id']}")
        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed_data())
