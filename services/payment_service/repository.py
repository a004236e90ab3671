from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Payment, PaymentToken


class PaymentRepository:

    @staticmethod
    async def create_payment(db: AsyncSession, payment: Payment) -> Payment:
        db.add(payment)
        await db.flush()
        return payment

    @staticmethod
    async def get_by_transaction(db: AsyncSession, transaction_id: str) -> Optional[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.transaction_id == transaction_id).order_by(Payment.id.desc())
        )
        return result.scalars().first()


class PaymentTokenRepository:

    @staticmethod
    async def get_by_user_and_token(db: AsyncSession, user_id: int, token: str) -> Optional[PaymentToken]:
        result = await db.execute(
            select(PaymentToken).where(PaymentToken.user_id == user_id, PaymentToken.token == token)
        )
        return result.scalars().first()

    @staticmethod
    async def get_for_user(db: AsyncSession, token_id: int, user_id: int) -> Optional[PaymentToken]:
        result = await db.execute(
            select(PaymentToken).where(PaymentToken.id == token_id, PaymentToken.user_id == user_id)
        )
        return result.scalars().first()

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: int) -> List[PaymentToken]:
        result = await db.execute(
            select(PaymentToken)
            .where(PaymentToken.user_id == user_id)
            .order_by(PaymentToken.created_at.desc(), PaymentToken.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def add(db: AsyncSession, token: PaymentToken) -> PaymentToken:
        db.add(token)
        await db.flush()
        return token

    @staticmethod
    async def delete_for_user(db: AsyncSession, token_id: int, user_id: int) -> bool:
        result = await db.execute(
            delete(PaymentToken).where(PaymentToken.id == token_id, PaymentToken.user_id == user_id)
        )
        return result.rowcount > 0
