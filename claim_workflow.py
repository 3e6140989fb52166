"""
Claim workflow controller.

Drives one user's claim on one area through the linear steps

    collaborators -> after_photo -> verification -> complete

Nothing is written outside the workflow state until `finish()`; cancelling at
any point leaves the area and existing claims untouched. The state is a plain
pydantic model so it can be parked in Redis between HTTP requests and rebuilt
into a controller on the next one.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Callable, List, Optional
from pydantic import BaseModel

from point_settlement import Settlement, settle, per_person_points, achievement_progress
from verification_service import VerificationService, VerificationResult, guarded_verify, DEFAULT_TIMEOUT_SECONDS
from claim_commit import ClaimDraft, CommitError

logger = logging.getLogger(__name__)


class Step(str, Enum):
    COLLABORATORS = 'collaborators'
    AFTER_PHOTO = 'after_photo'
    VERIFICATION = 'verification'
    COMPLETE = 'complete'

STEP_ORDER = [Step.COLLABORATORS, Step.AFTER_PHOTO, Step.VERIFICATION, Step.COMPLETE]

# Extra seconds past the verification timeout before an unfinished verification is abandoned.
VERIFYING_GRACE_SECONDS = 15


# --- Errors ---
class WorkflowError(Exception):
    pass

class AuthenticationRequired(WorkflowError):
    pass

class TransitionBlocked(WorkflowError):
    pass

class WorkflowClosed(WorkflowError):
    pass

class InvalidCollaborator(WorkflowError):
    pass


class Candidate(BaseModel):
    user_id: str
    username: str
    avatar_url: Optional[str] = None
    total_points: int = 0


class WorkflowState(BaseModel):
    workflow_id: str
    area_id: str
    area_severity: str
    area_photos_before: List[str] = []
    group_id: Optional[str] = None
    acting_user_id: str
    acting_user_points: int = 0
    candidates: List[Candidate] = []
    collaborator_ids: List[str] = []
    step: Step = Step.COLLABORATORS
    capturing: bool = False
    after_photo: Optional[str] = None
    verifying: bool = False
    verifying_since: Optional[float] = None
    verification: Optional[VerificationResult] = None
    attempts: int = 0
    settlement: Optional[Settlement] = None
    finished: bool = False
    cancelled: bool = False
    commit_status: Optional[str] = None
    claim_id: Optional[str] = None
    uncredited: List[str] = []


class ClaimWorkflow:
    """
    Controller over a WorkflowState. Collaborators are injected:

    - `verifier`: VerificationService used on the after-photo step
    - `committer`: object with `commit_claim(ClaimDraft)` used by finish()
    - `checkpoint`: called with the state whenever an in-flight change must be
      visible to other requests (the pending verification)
    - `on_commit_failure`: called with (draft, CommitError) when finish()
      could not persist the claim
    """

    def __init__(self, state: WorkflowState, verifier: Optional[VerificationService] = None,
                 committer=None, checkpoint: Optional[Callable] = None,
                 on_commit_failure: Optional[Callable] = None,
                 verification_timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.state = state
        self.verifier = verifier
        self.committer = committer
        self.checkpoint = checkpoint
        self.on_commit_failure = on_commit_failure
        self.verification_timeout = verification_timeout
        self.verification_started = False

    @classmethod
    def begin(cls, area, acting_user_id, roster=None, group_id=None, acting_user_points=0, **deps):
        """
        Opens a workflow for `acting_user_id` on `area`. The caller is expected
        to have looked the area up; a non-available area is refused here too.
        """
        if not acting_user_id:
            raise AuthenticationRequired("Sign in to claim a cleanup area")
        if area.status != 'available':
            raise TransitionBlocked(f"Area {area.id} is {area.status} and cannot be claimed")

        candidates, seen = [], set()
        for entry in roster or []:
            if entry.user_id == acting_user_id or entry.user_id in seen:
                continue
            seen.add(entry.user_id)
            candidates.append(Candidate(user_id=entry.user_id, username=entry.username,
                                        avatar_url=entry.avatar_url, total_points=entry.total_points))

        state = WorkflowState(
            workflow_id=str(uuid.uuid4()),
            area_id=area.id,
            area_severity=area.severity,
            area_photos_before=list(area.photos_before or []),
            group_id=group_id,
            acting_user_id=acting_user_id,
            acting_user_points=acting_user_points,
            candidates=candidates,
        )
        logger.info(f"Workflow {state.workflow_id} opened by {acting_user_id} on area {area.id}")
        return cls(state, **deps)

    # --- Derived views ---
    @property
    def step(self) -> Step:
        return self.state.step

    @property
    def closed(self) -> bool:
        return self.state.finished or self.state.cancelled

    @property
    def verification_passed(self) -> bool:
        result = self.state.verification
        return result is not None and result.success

    @property
    def verification_in_flight(self) -> bool:
        """
        True while a verification started by some request may still answer.
        A flag left behind by a request that died is ignored once it is older
        than the verification timeout plus a grace period.
        """
        if not self.state.verifying or self.state.verifying_since is None:
            return False
        age = time.time() - self.state.verifying_since
        return age < self.verification_timeout + VERIFYING_GRACE_SECONDS

    @property
    def points_per_person(self) -> int:
        if self.state.settlement:
            return self.state.settlement.per_person_points
        return per_person_points(self.state.area_severity, len(self.state.collaborator_ids))

    @property
    def points_earned(self) -> int:
        return self.points_per_person if self.verification_passed else 0

    @property
    def can_advance(self) -> bool:
        if self.closed:
            return False
        step = self.state.step
        if step == Step.COLLABORATORS:
            return True
        if step == Step.AFTER_PHOTO:
            return not self.verification_in_flight and self.verification_passed
        if step == Step.VERIFICATION:
            return self.verification_passed
        return False

    @property
    def can_go_back(self) -> bool:
        if self.closed or self.verification_in_flight:
            return False
        return self.state.step in (Step.AFTER_PHOTO, Step.VERIFICATION)

    def _require_open(self):
        if self.closed:
            raise WorkflowClosed(f"Workflow {self.state.workflow_id} is closed")

    def _require_step(self, *steps):
        self._require_open()
        if self.state.step not in steps:
            allowed = ', '.join(s.value for s in steps)
            raise TransitionBlocked(f"Action not available in step {self.state.step.value} (needs {allowed})")

    # --- Collaborators step ---
    def toggle_collaborator(self, user_id) -> bool:
        """Adds or removes a collaborator. Returns True if now selected."""
        self._require_step(Step.COLLABORATORS)
        if user_id not in {c.user_id for c in self.state.candidates}:
            raise InvalidCollaborator(f"{user_id} is not an eligible collaborator")
        if user_id in self.state.collaborator_ids:
            self.state.collaborator_ids = [uid for uid in self.state.collaborator_ids if uid != user_id]
            return False
        self.state.collaborator_ids = [*self.state.collaborator_ids, user_id]
        return True

    # --- After-photo step ---
    def _require_idle(self, message="Verification in progress"):
        if self.verification_in_flight:
            raise TransitionBlocked(message)
        if self.state.verifying:
            logger.warning(f"Workflow {self.state.workflow_id}: abandoning verification started at "
                           f"{self.state.verifying_since}")
            self.state.verifying = False
            self.state.verifying_since = None

    def start_capture(self):
        self._require_step(Step.AFTER_PHOTO)
        self._require_idle()
        self.state.capturing = True

    def cancel_capture(self):
        self._require_step(Step.AFTER_PHOTO)
        self.state.capturing = False

    def submit_after_photo(self, photo_ref) -> VerificationResult:
        """
        Records the after-photo and verifies it. Blocks until the verifier
        answers or times out; a timeout is reported as a failed verification.
        """
        self._require_step(Step.AFTER_PHOTO)
        self._require_idle("Verification already in progress")
        if not photo_ref:
            raise TransitionBlocked("An after-photo is required")
        if self.verifier is None:
            raise WorkflowError("No verification service configured")

        self.state.capturing = False
        self.state.after_photo = photo_ref
        self.state.verification = None
        self.state.verifying = True
        self.state.verifying_since = time.time()
        self.state.attempts += 1
        self.verification_started = True
        if self.checkpoint:
            self.checkpoint(self.state)

        before = self.state.area_photos_before[0] if self.state.area_photos_before else None
        try:
            result = guarded_verify(self.verifier, photo_ref, before, timeout=self.verification_timeout)
        finally:
            self.state.verifying = False
            self.state.verifying_since = None

        self.state.verification = result
        logger.info(f"Workflow {self.state.workflow_id} verification attempt {self.state.attempts}: "
                    f"success={result.success} score={result.quality_score}")
        return result

    def discard_photo(self):
        self._require_step(Step.AFTER_PHOTO)
        self._require_idle()
        self.state.after_photo = None
        self.state.verification = None
        self.state.capturing = False

    # --- Navigation ---
    def next(self) -> Step:
        self._require_open()
        if not self.can_advance:
            raise TransitionBlocked(f"Cannot leave step {self.state.step.value} yet")

        if self.state.step == Step.VERIFICATION:
            self.settle()
        index = STEP_ORDER.index(self.state.step)
        self.state.step = STEP_ORDER[index + 1]
        logger.info(f"Workflow {self.state.workflow_id} -> {self.state.step.value}")
        return self.state.step

    def back(self) -> Step:
        self._require_open()
        if not self.can_go_back:
            raise TransitionBlocked(f"Cannot go back from step {self.state.step.value}")
        self._require_idle()
        index = STEP_ORDER.index(self.state.step)
        self.state.capturing = False
        self.state.step = STEP_ORDER[index - 1]
        return self.state.step

    # --- Settlement and completion ---
    def settle(self) -> Settlement:
        """Computes the split once; later calls return the cached result."""
        if self.state.settlement is None:
            self.state.settlement = settle(self.state.area_severity, self.state.collaborator_ids)
        return self.state.settlement

    def achievements(self):
        awarded = self.state.settlement.per_person_points if self.state.settlement else 0
        return achievement_progress(self.state.acting_user_points, awarded)

    def draft(self) -> ClaimDraft:
        settlement = self.settle()
        return ClaimDraft(
            area_id=self.state.area_id,
            claimer_id=self.state.acting_user_id,
            collaborator_ids=list(self.state.collaborator_ids),
            photos_after=[self.state.after_photo] if self.state.after_photo else [],
            quality_score=self.state.verification.quality_score or 0,
            points_earned=settlement.per_person_points,
        )

    def finish(self):
        """
        Commits the claim and closes the workflow. A failed commit is logged and
        handed to `on_commit_failure`; the workflow still finishes.
        """
        self._require_step(Step.COMPLETE)
        if self.committer is None:
            raise WorkflowError("No claim committer configured")

        draft = self.draft()
        try:
            result = self.committer.commit_claim(draft)
            self.state.commit_status = 'committed'
            self.state.claim_id = result.claim.get('id')
            self.state.uncredited = list(result.failed_credits)
            if result.failed_credits:
                logger.error(f"Workflow {self.state.workflow_id}: points not credited to {result.failed_credits}")
        except CommitError as e:
            logger.error(f"Workflow {self.state.workflow_id}: claim commit failed: {e}", exc_info=True)
            self.state.commit_status = 'failed'
            if self.on_commit_failure:
                self.on_commit_failure(draft, e)

        self.state.finished = True
        logger.info(f"Workflow {self.state.workflow_id} finished ({self.state.commit_status})")
        return self.state

    def cancel(self):
        """Abandons the workflow and drops every transient value."""
        self._require_open()
        self.state.collaborator_ids = []
        self.state.after_photo = None
        self.state.verification = None
        self.state.capturing = False
        self.state.settlement = None
        self.state.cancelled = True
        logger.info(f"Workflow {self.state.workflow_id} cancelled")
        return self.state

    def view(self):
        """Serialisable snapshot for API responses."""
        state = self.state
        data = {
            'workflow_id': state.workflow_id,
            'area_id': state.area_id,
            'group_id': state.group_id,
            'step': state.step.value,
            'candidates': [c.model_dump() for c in state.candidates],
            'collaborator_ids': list(state.collaborator_ids),
            'points_per_person': self.points_per_person,
            'points_earned': self.points_earned,
            'capturing': state.capturing,
            'after_photo': state.after_photo,
            'verifying': self.verification_in_flight,
            'verification': state.verification.model_dump() if state.verification else None,
            'attempts': state.attempts,
            'can_advance': self.can_advance,
            'can_go_back': self.can_go_back,
            'settlement': state.settlement.model_dump() if state.settlement else None,
            'finished': state.finished,
            'cancelled': state.cancelled,
            'commit_status': state.commit_status,
            'claim_id': state.claim_id,
            'uncredited': list(state.uncredited),
        }
        if state.step == Step.VERIFICATION:
            data['photos'] = {
                'before': state.area_photos_before[0] if state.area_photos_before else None,
                'after': state.after_photo,
            }
        if state.step == Step.COMPLETE:
            data['achievements'] = [a.model_dump() for a in self.achievements()]
        return data
