from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.transcript import Transcript
from app.schemas.webhook import TranscriptEntry
from app.utils.logging import get_logger

logger = get_logger("services.transcript")


def build_full_text(entries: List[TranscriptEntry]) -> str:
    return "\n".join(f"{entry.role}: {entry.message}" for entry in entries)


def build_segments(entries: List[TranscriptEntry]) -> List[Dict[str, Any]]:
    return [
        {
            "speaker": entry.role,
            "text": entry.message,
            "timestamp": entry.time_in_call_secs,
        }
        for entry in entries
    ]


class SqlTranscriptStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def store(self, call_id: int, entries: List[TranscriptEntry]) -> int:
        full_text = build_full_text(entries)
        segments = build_segments(entries)
        async with self.session_maker() as db:
            result = await db.execute(select(Transcript).where(Transcript.call_id == call_id))
            transcript = result.scalar_one_or_none()
            if transcript is None:
                transcript = Transcript(call_id=call_id)
                db.add(transcript)
            transcript.full_text = full_text
            transcript.segments = segments
            await db.flush()
            transcript_id = transcript.id
            await db.commit()

        logger.debug(
            "transcript_stored",
            call_id=call_id,
            transcript_id=transcript_id,
            segment_count=len(segments),
            full_text_length=len(full_text),
        )
        return transcript_id
