"""
Earned premium and loss ratio over imported policies and claims.

Earned premium is pro-rated by day: a one-year policy half way through its
term has earned half its premium.
"""

from datetime import date, timedelta
from typing import Optional, List, Dict, Any

from .resolver import as_date


def earned_premium(premium: float, start: Any, end: Any, as_of: Optional[date] = None) -> float:
    """
    Premium earned by as_of (default: today).

    Counted in whole days. A term shorter than a day counts as one day and
    elapsed days are clamped to the term.
    """
    start_date, end_date = as_date(start), as_date(end)
    if start_date is None or end_date is None:
        return 0.0
    as_of = as_of or date.today()

    total_days = max(1, (end_date - start_date).days)
    elapsed = min(total_days, max(0, (as_of - start_date).days))
    return float(premium or 0) * elapsed / total_days


def loss_ratio(earned: float, paid: float) -> float:
    """Paid claims as a percentage of earned premium; 0 when nothing is earned."""
    if not earned:
        return 0.0
    return paid / earned * 100


def one_year_before(as_of: date) -> date:
    try:
        return as_of.replace(year=as_of.year - 1)
    except ValueError:
        # 29 February
        return as_of - timedelta(days=365)


def portfolio_loss_ratio(
    policies: List[dict],
    claims: List[dict],
    as_of: Optional[date] = None,
    since: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Loss ratio of a book of business.

    Claims count when their claim_date falls between since (default: one
    year before as_of) and as_of. Archived and deleted policies still count
    toward earned premium for the period they ran.
    """
    as_of = as_of or date.today()
    since = since or one_year_before(as_of)

    earned = sum(
        earned_premium(p.get('premium_amount') or 0, p.get('start_date'), p.get('end_date'), as_of)
        for p in policies
    )

    counted = []
    for claim in claims:
        claim_date = as_date(claim.get('claim_date'))
        if claim_date is not None and since <= claim_date <= as_of:
            counted.append(claim)
    paid = sum(float(c.get('payment_amount') or 0) for c in counted)

    return {
        'as_of': as_of.isoformat(),
        'since': since.isoformat(),
        'policy_count': len(policies),
        'claim_count': len(counted),
        'earned_premium': round(earned, 2),
        'paid_claims': round(paid, 2),
        'loss_ratio': round(loss_ratio(earned, paid), 2),
    }
