from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.call import Call
from app.models.contact import Contact
from app.schemas.analytics import LeadExtraction
from app.services.collaborators import ContactResult
from app.utils.logging import get_logger
from app.utils.utils import normalize_phone

logger = get_logger("services.contact")


class SqlContactService:
    """Creates or enriches the per-user contact behind a call."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create_or_update(
        self,
        user_id: int,
        phone_number: Optional[str],
        extraction: LeadExtraction,
        call_id: int,
    ) -> ContactResult:
        phone = normalize_phone(phone_number)
        if phone is None:
            logger.info("contact_skipped_no_phone", user_id=user_id, call_id=call_id)
            return ContactResult(contact_id=None)

        fields = {
            "name": extraction.name,
            "email": extraction.email,
            "company": extraction.company_name,
        }
        async with self.session_maker() as db:
            result = await db.execute(
                select(Contact).where(
                    Contact.user_id == user_id,
                    Contact.phone_number == phone,
                )
            )
            contact = result.scalar_one_or_none()
            created = contact is None
            updated = False
            if contact is None:
                contact = Contact(user_id=user_id, phone_number=phone, **fields)
                db.add(contact)
            else:
                for key, value in fields.items():
                    if value and getattr(contact, key) != value:
                        setattr(contact, key, value)
                        updated = True
            contact.last_call_id = call_id
            await db.flush()
            contact_id = contact.id
            await db.commit()

        logger.info(
            "contact_upserted",
            user_id=user_id,
            call_id=call_id,
            contact_id=contact_id,
            created=created,
            updated=updated,
        )
        return ContactResult(contact_id=contact_id, created=created, updated=updated)

    async def link_contact_to_call(self, call_id: int, contact_id: int) -> None:
        async with self.session_maker() as db:
            await db.execute(update(Call).where(Call.id == call_id).values(contact_id=contact_id))
            await db.commit()
