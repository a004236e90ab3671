from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.container import ServiceContainer, get_container
from shared.config.database import get_db
from shared.security.dependencies import SessionUser, get_current_user

from .schemas import PaymentTokenResponse, TokenizeRequest
from .service import PaymentTokenVault, payment_method_from_request

router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@router.post("/tokenize", response_model=PaymentTokenResponse)
async def tokenize_card(
    payload: TokenizeRequest,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    gateway = container.gateway(payload.provider)
    payment_method = payment_method_from_request(payload.payment_method)
    return await PaymentTokenVault.tokenize_and_save(db, gateway, user.id, payment_method)


@router.get("/tokens", response_model=List[PaymentTokenResponse])
async def list_tokens(db: AsyncSession = Depends(get_db), user: SessionUser = Depends(get_current_user)):
    return await PaymentTokenVault.list_by_user(db, user.id)


@router.delete("/tokens/{token_id}")
async def delete_token(
    token_id: int, db: AsyncSession = Depends(get_db), user: SessionUser = Depends(get_current_user)
):
    await PaymentTokenVault.delete_token(db, token_id, user.id)
    return {"success": True}
