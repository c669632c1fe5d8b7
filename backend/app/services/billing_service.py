"""Credit ledger used to bill completed calls."""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.credit_transaction import CreditTransaction
from app.models.user import User
from app.services.collaborators import DeductionResult
from app.utils.logging import get_logger

logger = get_logger("services.billing")


class UserNotFound(Exception):
    pass


class SqlBillingLedger:
    """Deducts credits at most once per reference id."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _existing(self, db: AsyncSession, reference_id: str):
        result = await db.execute(
            select(CreditTransaction).where(CreditTransaction.reference_id == reference_id)
        )
        return result.scalar_one_or_none()

    async def deduct_credits(
        self,
        user_id: int,
        amount: int,
        description: str,
        reference_id: str,
    ) -> DeductionResult:
        if amount <= 0:
            raise ValueError(f"Deduction amount must be positive, got {amount}")

        async with self.session_maker() as db:
            existing = await self._existing(db, reference_id)
            if existing is not None:
                logger.info(
                    "credits_already_deducted",
                    user_id=user_id,
                    reference_id=reference_id,
                    transaction_id=existing.id,
                )
                return DeductionResult(
                    success=True,
                    transaction_id=existing.id,
                    balance_after=existing.balance_after,
                    already_applied=True,
                )

            user = await db.get(User, user_id, with_for_update=True)
            if user is None:
                raise UserNotFound(f"User {user_id} not found")

            # Usage has already happened, so the balance may go negative.
            user.credits = (user.credits or 0) - amount
            transaction = CreditTransaction(
                user_id=user_id,
                amount=-amount,
                balance_after=user.credits,
                description=description,
                reference_id=reference_id,
            )
            db.add(transaction)
            try:
                await db.flush()
                await db.commit()
            except IntegrityError:
                # A concurrent delivery billed this reference first.
                await db.rollback()
                existing = await self._existing(db, reference_id)
                if existing is None:
                    raise
                return DeductionResult(
                    success=True,
                    transaction_id=existing.id,
                    balance_after=existing.balance_after,
                    already_applied=True,
                )

            if user.credits < 0:
                logger.warning(
                    "credits_balance_negative",
                    user_id=user_id,
                    balance=user.credits,
                    reference_id=reference_id,
                )
            logger.info(
                "credits_deducted",
                user_id=user_id,
                amount=amount,
                balance_after=transaction.balance_after,
                reference_id=reference_id,
                description=description,
            )
            return DeductionResult(
                success=True,
                transaction_id=transaction.id,
                balance_after=transaction.balance_after,
            )
