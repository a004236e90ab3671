from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, SecretStr


class PaymentMethodIn(BaseModel):
    """Raw card or provider token as sent by the client."""

    token: Optional[str] = None
    number: Optional[SecretStr] = None
    expMonth: Optional[Union[str, int]] = None
    expYear: Optional[Union[str, int]] = None
    cvv: Optional[SecretStr] = None
    cardHolderName: Optional[str] = None


class TokenizeRequest(BaseModel):
    payment_method: PaymentMethodIn
    provider: str = Field("GlobalPayments", pattern="^(Stripe|GlobalPayments)$")


class PaymentTokenResponse(BaseModel):
    id: int
    provider: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[str] = None
    exp_year: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
