"""
Analytics API Router.

Loss ratio over the current user's book of business.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Depends

from agency_import.analytics import portfolio_loss_ratio
from agency_import.supabase_client import get_agent_policies, get_agent_claims
from api.auth import get_current_user, CurrentUser
from api.schemas import LossRatioResponse

router = APIRouter()


@router.get("/loss-ratio", response_model=LossRatioResponse)
async def loss_ratio(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    since: Optional[date] = Query(None, description="Defaults to one year before as_of"),
    user: CurrentUser = Depends(get_current_user),
):
    """Earned premium, paid claims and loss ratio for the current user."""
    if as_of and since and since > as_of:
        raise HTTPException(status_code=400, detail="since must not be after as_of")

    try:
        policies = get_agent_policies(user.id)
        claims = get_agent_claims(user.id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    return portfolio_loss_ratio(policies, claims, as_of=as_of, since=since)
