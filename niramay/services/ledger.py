"""
Eco-points ledger.

Every change to ``Profile.eco_points`` goes through ``post_points`` so the
balance and the sum of the user's reward transactions always move together.
Nothing here commits: callers own the transaction.
"""
import logging
from typing import Dict, Optional
from sqlalchemy import func, update
from sqlalchemy.orm import Session
from niramay.models import Profile, RewardTransaction

logger = logging.getLogger(__name__)


def post_points(db: Session, user_id: str, points: int, report_id: Optional[str] = None) -> bool:
    """Applies a signed points delta and records it.

    Debits are conditional on the balance covering them, so two concurrent
    debits can't both succeed against the same balance. Returns False (and
    writes nothing) when the profile is missing or the balance is too low.
    """
    stmt = update(Profile).where(Profile.id == user_id)
    if points < 0:
        stmt = stmt.where(Profile.eco_points >= -points)
    result = db.execute(
        stmt.values(eco_points=Profile.eco_points + points).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    db.add(RewardTransaction(user_id=user_id, report_id=report_id, points=points))
    db.flush()
    return True


def ledger_totals(db: Session) -> Dict[str, int]:
    """Sum of reward transactions per user; users with no transactions are absent."""
    rows = db.query(RewardTransaction.user_id, func.sum(RewardTransaction.points)).group_by(RewardTransaction.user_id)
    return {user_id: int(total or 0) for user_id, total in rows}
