"""
Credit ledger API.

- GET /api/credits/balance: free allowance and paid credits
- GET /api/credits/can-create: eligibility for one more creation (anonymous allowed)
- GET /api/credits/transactions: ledger history, newest first
- GET /api/credits/packs: purchasable packs
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from drawbook.core.auth import get_current_user_id, get_optional_user_id
from drawbook.features.credits import service as credits
from drawbook.models.credits import CREDIT_PACKS, CanCreateResult, CreditBalance, CreditPack, CreditTransaction

router = APIRouter(prefix="/credits", tags=["credits"])


class TransactionsResponse(BaseModel):
    transactions: List[CreditTransaction]


@router.get("/balance", response_model=CreditBalance)
async def get_balance(user_id: str = Depends(get_current_user_id)):
    return credits.get_balance(user_id)


@router.get("/can-create", response_model=CanCreateResult)
async def can_create(user_id: Optional[str] = Depends(get_optional_user_id)):
    return credits.can_create(user_id)


@router.get("/transactions", response_model=TransactionsResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
):
    return {"transactions": credits.list_transactions(user_id, limit=limit)}


@router.get("/packs", response_model=List[CreditPack])
async def list_packs():
    return list(CREDIT_PACKS.values())
