"""Contact model for per-user caller records."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Contact(Base):
    """Caller known to a user, looked up by phone number."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("user_id", "phone_number", name="uq_contact_user_phone"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Maintained by the missed-call scheduler; never decremented.
    not_connected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_call_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    auto_created: Mapped[bool] = mapped_column(default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Contact {self.phone_number} ({self.name or 'unnamed'})>"
