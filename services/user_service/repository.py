from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Customer, User


class UserRepository:

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalars().first()

    @staticmethod
    async def get_emails(db: AsyncSession, user_ids) -> dict:
        ids = [uid for uid in user_ids if uid]
        if not ids:
            return {}
        result = await db.execute(select(User.id, User.email).where(User.id.in_(ids)))
        return {row.id: row.email for row in result}

    @staticmethod
    async def apply_credit_order(db: AsyncSession, user_id: int, amount: Decimal) -> bool:
        """Moves `amount` from the remaining credit line onto the outstanding balance.

        Expressed as one UPDATE so concurrent credit checkouts cannot lose writes.
        Does not commit; the caller owns the transaction.
        """
        result = await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                credit_balance=User.credit_balance + amount,
                total_credit_balance=User.total_credit_balance - amount,
            )
        )
        return result.rowcount > 0

    @staticmethod
    async def set_stripe_customer_id(db: AsyncSession, user_id: int, customer_id: str) -> bool:
        """Stores the customer id unless one is already set. Does not commit."""
        result = await db.execute(
            update(User)
            .where(User.id == user_id, User.stripe_customer_id.is_(None))
            .values(stripe_customer_id=customer_id)
        )
        return result.rowcount > 0


class CustomerRepository:

    @staticmethod
    async def get_by_id(db: AsyncSession, customer_id: int) -> Optional[Customer]:
        result = await db.execute(select(Customer).where(Customer.id == customer_id))
        return result.scalars().first()
