# FILE: ecohunt-backend/tasks.py

import logging
from contextlib import nullcontext
from flask import has_app_context

from celery_worker import celery_app
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

# --- LAZY INITIALIZED APP ---
# Workers run outside any request, so they build their own app for DB access.
_flask_app = None

def app_context():
    global _flask_app
    if has_app_context():
        return nullcontext()
    if _flask_app is None:
        from main import create_app
        _flask_app = create_app()
    return _flask_app.app_context()


@celery_app.task(name="retry_claim_commit", bind=True, max_retries=5, default_retry_delay=60)
def retry_claim_commit(self, draft_json):
    """
    Re-attempts a claim commit that failed when the workflow finished.
    Conflicts are final: another claim already completed the area.
    """
    from claim_commit import ClaimDraft, ClaimCommitService, CommitError
    from api.cache_utils import invalidate_leaderboards_for_users

    draft = ClaimDraft.model_validate_json(draft_json)
    with app_context():
        try:
            result = ClaimCommitService().commit_claim(draft)
        except CommitError as e:
            if not e.retryable:
                logger.error(f"Claim for area {draft.area_id} by {draft.claimer_id} dropped: {e}")
                return None
            logger.warning(f"Retrying claim commit for area {draft.area_id} (attempt {self.request.retries + 1}): {e}")
            raise self.retry(exc=e)

        invalidate_leaderboards_for_users([draft.claimer_id, *draft.collaborator_ids])
        for user_id in result.failed_credits:
            award_points_task.delay(user_id, draft.points_earned, f"claim {result.claim['id']}")
        logger.info(f"Reconciled claim {result.claim['id']} for area {draft.area_id}")
        return result.claim['id']


@celery_app.task(name="award_points_task", bind=True, max_retries=3, default_retry_delay=60)
def award_points_task(self, user_id, amount, reason=None):
    """Credits points that could not be credited inline."""
    from claim_commit import PointsLedger, LedgerError
    from api.cache_utils import invalidate_leaderboards_for_users

    with app_context():
        try:
            PointsLedger().increment_points(user_id, amount)
        except LedgerError as e:
            logger.error(f"Failed to award {amount} points to {user_id} ({reason}): {e}")
            raise self.retry(exc=e)
        invalidate_leaderboards_for_users([user_id])
    logger.info(f"Awarded {amount} points to {user_id} ({reason})")
