from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.user_service.repository import UserRepository
from shared.errors import NotFoundError, ValidationError

from .gateway import PaymentGateway, PaymentMethod, TransactionResult
from .models import Payment, PaymentToken
from .repository import PaymentRepository, PaymentTokenRepository

logger = structlog.get_logger(__name__)

_DISPLAY_FIELDS = ("provider", "fingerprint", "brand", "last4", "exp_month", "exp_year")


async def provider_customer_for(db: AsyncSession, gateway: PaymentGateway, user_id: int) -> Optional[str]:
    """The user's customer record at the provider, created on first use.

    None for providers that keep saved cards without one.
    """
    if not gateway.vaults_on_customer:
        return None
    user = await UserRepository.get_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.stripe_customer_id:
        return user.stripe_customer_id

    name = " ".join(part for part in (user.first_name, user.last_name) if part) or None
    customer_id = await gateway.create_customer(user.email, name, user.id)
    if not await UserRepository.set_stripe_customer_id(db, user.id, customer_id):
        # Another request stored one first; use theirs
        await db.refresh(user)
        customer_id = user.stripe_customer_id
    await db.commit()
    logger.info("provider_customer_resolved", provider=gateway.provider, user_id=user.id)
    return customer_id


class PaymentTokenVault:
    """Saved card tokens, always scoped to the user that owns them."""

    @staticmethod
    async def save_or_update(
        db: AsyncSession,
        user_id: int,
        token: str,
        provider: str,
        fingerprint: Optional[str] = None,
        brand: Optional[str] = None,
        last4: Optional[str] = None,
        exp_month: Optional[str] = None,
        exp_year: Optional[str] = None,
    ) -> PaymentToken:
        values = dict(
            provider=provider,
            fingerprint=fingerprint,
            brand=brand,
            last4=last4,
            exp_month=exp_month,
            exp_year=exp_year,
        )
        existing = await PaymentTokenRepository.get_by_user_and_token(db, user_id, token)
        if existing is None:
            try:
                saved = await PaymentTokenRepository.add(db, PaymentToken(user_id=user_id, token=token, **values))
                await db.commit()
                await db.refresh(saved)
                return saved
            except IntegrityError:
                # Saved concurrently by another request; fall through to the update
                await db.rollback()
                existing = await PaymentTokenRepository.get_by_user_and_token(db, user_id, token)
                if existing is None:
                    raise

        for name in _DISPLAY_FIELDS:
            value = values[name]
            if value is not None:
                setattr(existing, name, value)
        await db.commit()
        return existing

    @staticmethod
    async def get_by_id_for_user(db: AsyncSession, token_id: int, user_id: int) -> PaymentToken:
        token = await PaymentTokenRepository.get_for_user(db, token_id, user_id)
        if token is None:
            raise NotFoundError("Payment token not found")
        return token

    @staticmethod
    async def list_by_user(db: AsyncSession, user_id: int) -> List[PaymentToken]:
        return await PaymentTokenRepository.list_for_user(db, user_id)

    @staticmethod
    async def delete_token(db: AsyncSession, token_id: int, user_id: int) -> None:
        if not await PaymentTokenRepository.delete_for_user(db, token_id, user_id):
            raise NotFoundError("Payment token not found")
        await db.commit()
        logger.info("payment_token_deleted", token_id=token_id, user_id=user_id)

    @staticmethod
    async def tokenize_and_save(
        db: AsyncSession, gateway: PaymentGateway, user_id: int, payment_method: PaymentMethod
    ) -> PaymentToken:
        if payment_method.is_token:
            raise ValidationError("Only card details can be tokenized")
        payment_method.customer = await provider_customer_for(db, gateway, user_id)
        result = await gateway.tokenize(payment_method)
        return await PaymentTokenVault.save_or_update(
            db,
            user_id,
            result.token,
            gateway.provider,
            fingerprint=result.fingerprint,
            brand=result.brand,
            last4=result.last4 or payment_method.last4,
            exp_month=result.exp_month,
            exp_year=result.exp_year,
        )


class PaymentLedger:
    """Durable record of what the gateway was asked to do with a checkout's money."""

    @staticmethod
    async def record(
        db: AsyncSession,
        order_reference: str,
        provider: str,
        amount: Decimal,
        currency: str,
        result: TransactionResult,
    ) -> Payment:
        payment = await PaymentRepository.create_payment(
            db,
            Payment(
                order_reference=order_reference,
                provider=provider,
                amount=amount,
                currency=currency,
                status=result.status if result.success else "Failed",
                transaction_id=result.transaction_id,
                authorization_code=result.authorization_code,
                response_code=result.response_code,
                response_message=(result.response_message or "")[:255] or None,
            ),
        )
        await db.commit()
        return payment

    @staticmethod
    async def mark(
        db: AsyncSession, transaction_id: str, status: str, order_id: Optional[int] = None
    ) -> Optional[Payment]:
        payment = await PaymentRepository.get_by_transaction(db, transaction_id)
        if payment is None:
            logger.warning("payment_record_missing", transaction_id=transaction_id, status=status)
            return None
        payment.status = status
        if order_id is not None:
            payment.order_id = order_id
        await db.commit()
        return payment


def payment_method_from_request(data) -> PaymentMethod:
    """Builds a PaymentMethod from a PaymentMethodIn, preferring a provider token."""
    if data is None:
        raise ValidationError("Payment method is required")
    if data.token:
        return PaymentMethod.from_token(data.token)
    return PaymentMethod.card(
        data.number.get_secret_value() if data.number else None,
        data.expMonth,
        data.expYear,
        data.cvv.get_secret_value() if data.cvv else None,
        data.cardHolderName,
    )
