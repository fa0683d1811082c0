from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditsOverview(BaseModel):
    balance: int
    monthly_free_quota: int
    monthly_usage: int
    free_remaining: int
    paid_credits: int
    prices: Dict[str, int]


class CreditEstimate(BaseModel):
    operation: str
    units: int
    cost: int
    balance: int
    affordable: bool


class CreditTransactionResponse(BaseModel):
    id: str
    amount: int
    balance_after: int
    transaction_type: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TopUpCreate(BaseModel):
    credits: int = Field(gt=0, le=1_000_000)


class TopUpResponse(BaseModel):
    id: str
    credits_requested: int
    amount_cny: int
    status: str
