from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from zhinao_geo.api.deps import get_cache, get_settings
from zhinao_geo.core.database import get_db
from zhinao_geo.core.security import CurrentUser, get_current_user
from zhinao_geo.core.settings import Settings
from zhinao_geo.models.top_up_request import TopUpRequest
from zhinao_geo.schemas.billing import (
    CreditEstimate,
    CreditsOverview,
    CreditTransactionResponse,
    TopUpCreate,
    TopUpResponse,
)
from zhinao_geo.services import credits
from zhinao_geo.services.cache import TTLCache, cache_key

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/credits", response_model=CreditsOverview)
async def get_credits(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    cache: TTLCache = Depends(get_cache),
):
    balance = credits.get_balance(db, current_user.id)
    quota = credits.get_monthly_free_quota(db, current_user.id, settings.monthly_free_quota)
    used = cache.get_or_set(
        cache_key("monthly-credit-usage", current_user.id),
        lambda: credits.monthly_usage(db, current_user.id, tz_name=settings.usage_timezone),
    )
    free_remaining = credits.free_credits_remaining(quota, used)
    return CreditsOverview(
        balance=balance,
        monthly_free_quota=quota,
        monthly_usage=used,
        free_remaining=free_remaining,
        paid_credits=credits.paid_credits(balance, free_remaining),
        prices=settings.credit_prices(),
    )


@router.get("/credits/transactions", response_model=List[CreditTransactionResponse])
async def get_transactions(
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    cache: TTLCache = Depends(get_cache),
):
    limit = max(1, min(limit, 200))

    def load() -> list[dict]:
        rows = credits.list_transactions(db, current_user.id, limit)
        return [CreditTransactionResponse.model_validate(r).model_dump(mode="json") for r in rows]

    return cache.get_or_set(cache_key("credit-transactions", current_user.id, limit), load)


@router.get("/credits/estimate", response_model=CreditEstimate)
async def estimate_cost(
    operation: str,
    units: int = 1,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    try:
        cost = credits.credit_cost(operation, units, settings.credit_prices())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid operation")
    balance = credits.get_balance(db, current_user.id)
    return CreditEstimate(
        operation=operation,
        units=max(1, units),
        cost=cost,
        balance=balance,
        affordable=balance >= cost,
    )


@router.post("/top-up-requests", response_model=TopUpResponse)
async def create_top_up_request(
    body: TopUpCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    # one credit per yuan; approval happens outside this service
    req = TopUpRequest(
        user_id=current_user.id,
        amount_cny=body.credits,
        credits_requested=body.credits,
        status="pending",
        notes=f"Top-up request from {current_user.email or current_user.id}",
    )
    db.add(req)
    db.commit()
    db.refresh(req)
    logger.info("billing.top_up.requested id=%s credits=%s", req.id, body.credits)
    return TopUpResponse(
        id=req.id,
        credits_requested=req.credits_requested,
        amount_cny=req.amount_cny,
        status=req.status,
    )
