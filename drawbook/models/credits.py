from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, computed_field

TransactionType = Literal["purchase", "usage"]
CreditSource = Literal["free", "paid", "premium"]


class CreditPack(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    credits: int
    price_cents: int


CREDIT_PACKS = {
    "starter": CreditPack(name="starter", label="Starter", credits=3, price_cents=1299),
    "popular": CreditPack(name="popular", label="Popular", credits=5, price_cents=1999),
    "best_value": CreditPack(name="best_value", label="Best Value", credits=10, price_cents=3499),
}


class CreditBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    free_saves_used: int
    free_limit: int
    paid_credits: int

    @computed_field
    @property
    def free_remaining(self) -> int:
        return max(0, self.free_limit - self.free_saves_used)

    @computed_field
    @property
    def total_available(self) -> int:
        return self.free_remaining + self.paid_credits


class CanCreateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_create: bool
    will_use: Optional[CreditSource] = None
    reason: Optional[str] = None


class UseCreditResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: CreditSource
    free_saves_used: int
    paid_credits: int


class CreditTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    type: TransactionType
    amount: int
    balance_after: int
    source: Optional[CreditSource] = None
    pack_name: Optional[str] = None
    price_cents: Optional[int] = None
    creation_id: Optional[str] = None
    payment_reference: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
