"""
Claim commit and point crediting.

`commit_claim` is the only place a claim reaches the database. The area
status moves `available -> claimed -> completed` inside the same transaction
as the claim insert, guarded by the registry's compare-and-set. Points are
credited afterwards, one user at a time; a failed credit is logged and
reported but never undoes the claim.
"""

import logging
from typing import List, Optional
from pydantic import BaseModel, Field
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from models import db, CleanupClaim, Profile, utcnow
from area_registry import AreaRegistry, AreaConflictError, AreaNotFound

logger = logging.getLogger(__name__)


class CommitError(Exception):
    """The claim could not be persisted."""

    def __init__(self, message, retryable=True):
        super().__init__(message)
        self.retryable = retryable

class LedgerError(Exception):
    pass


class ClaimDraft(BaseModel):
    area_id: str
    claimer_id: str
    collaborator_ids: List[str] = []
    photos_after: List[str] = []
    quality_score: int = Field(ge=0, le=100)
    points_earned: int = Field(ge=0)


class CommitResult(BaseModel):
    claim: dict
    failed_credits: List[str] = []


class PointsLedger:
    """Increments lifetime point totals on user profiles."""

    def __init__(self, session=None):
        self.session = session or db.session

    def increment_points(self, user_id, amount):
        if amount < 0:
            raise LedgerError(f"Refusing negative increment for {user_id}")
        try:
            result = self.session.execute(
                update(Profile)
                .where(Profile.id == user_id)
                .values(total_points=Profile.total_points + amount, updated_at=utcnow())
            )
            if result.rowcount != 1:
                self.session.rollback()
                raise LedgerError(f"No profile for user {user_id}")
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise LedgerError(f"Failed to credit {amount} points to {user_id}: {e}") from e
        logger.info(f"Credited {amount} points to {user_id}")


class ClaimCommitService:
    def __init__(self, registry: Optional[AreaRegistry] = None, ledger: Optional[PointsLedger] = None, session=None):
        self.session = session or db.session
        self.registry = registry or AreaRegistry(self.session)
        self.ledger = ledger or PointsLedger(self.session)

    def commit_claim(self, draft: ClaimDraft) -> CommitResult:
        collaborators = [uid for uid in dict.fromkeys(draft.collaborator_ids) if uid != draft.claimer_id]
        try:
            self.registry.transition_status(draft.area_id, 'available', 'claimed', commit=False)
            now = utcnow()
            claim = CleanupClaim(
                area_id=draft.area_id,
                claimed_by=draft.claimer_id,
                collaborators=collaborators,
                status='completed',
                photos_after=list(draft.photos_after),
                quality_score=draft.quality_score,
                points_earned=draft.points_earned,
                claimed_at=now,
                completed_at=now,
                verified_at=now,
            )
            self.session.add(claim)
            self.session.flush()
            self.registry.transition_status(draft.area_id, 'claimed', 'completed', commit=False)
            self.session.commit()
        except (AreaConflictError, AreaNotFound) as e:
            self.session.rollback()
            raise CommitError(str(e), retryable=False) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise CommitError(f"Database error committing claim for area {draft.area_id}: {e}") from e

        logger.info(f"Claim {claim.id} committed for area {draft.area_id} by {draft.claimer_id}")
        failed = self.credit_participants(draft.claimer_id, collaborators, draft.points_earned)
        return CommitResult(claim=claim.to_dict(), failed_credits=failed)

    def credit_participants(self, claimer_id, collaborator_ids, amount) -> List[str]:
        """Credits each participant independently. Returns the ids that failed."""
        failed = []
        for user_id in [claimer_id, *collaborator_ids]:
            try:
                self.ledger.increment_points(user_id, amount)
            except LedgerError as e:
                logger.error(f"Error updating points for {user_id}: {e}", exc_info=True)
                failed.append(user_id)
        return failed
