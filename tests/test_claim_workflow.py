import time
from types import SimpleNamespace

import pytest

from claim_commit import CommitError, CommitResult
from claim_workflow import (
    AuthenticationRequired,
    ClaimWorkflow,
    InvalidCollaborator,
    Step,
    TransitionBlocked,
    WorkflowClosed,
)
from group_membership import RosterEntry
from verification_service import ScriptedVerificationService, VerificationResult


class RecordingCommitter:
    def __init__(self, error=None, failed_credits=None):
        self.error = error
        self.failed_credits = failed_credits or []
        self.drafts = []

    def commit_claim(self, draft):
        self.drafts.append(draft)
        if self.error:
            raise self.error
        return CommitResult(claim={"id": "claim-1"}, failed_credits=self.failed_credits)


def make_area(severity="high", status="available"):
    return SimpleNamespace(id="area-1", severity=severity, status=status, photos_before=["before.jpg"])


def make_roster(*user_ids):
    return [RosterEntry(user_id=uid, username=uid.title(), total_points=10) for uid in user_ids]


def open_workflow(severity="high", roster=(), outcomes=None, committer=None, **kwargs):
    verifier = ScriptedVerificationService(outcomes or [VerificationResult.passed(92)])
    workflow = ClaimWorkflow.begin(
        make_area(severity), "alice", roster=make_roster(*roster),
        verifier=verifier, committer=committer or RecordingCommitter(), **kwargs,
    )
    return workflow, verifier


def advance_to_complete(workflow):
    workflow.next()
    workflow.submit_after_photo("after.jpg")
    workflow.next()
    workflow.next()


# =============================================================================
# Entry
# =============================================================================

def test_begin_requires_a_signed_in_user():
    with pytest.raises(AuthenticationRequired):
        ClaimWorkflow.begin(make_area(), None)


@pytest.mark.parametrize("status", ["claimed", "completed"])
def test_begin_rejects_areas_that_are_not_available(status):
    with pytest.raises(TransitionBlocked):
        ClaimWorkflow.begin(make_area(status=status), "alice")


def test_candidates_exclude_acting_user_and_duplicates():
    workflow, _ = open_workflow(roster=("alice", "bob", "carol", "bob"))

    assert [c.user_id for c in workflow.state.candidates] == ["bob", "carol"]


def test_empty_roster_still_opens_workflow():
    workflow, _ = open_workflow(roster=())

    assert workflow.step == Step.COLLABORATORS
    assert workflow.state.candidates == []
    assert workflow.can_advance is True


# =============================================================================
# Collaborators
# =============================================================================

def test_toggle_collaborator_adds_then_removes():
    workflow, _ = open_workflow(roster=("bob",))

    assert workflow.toggle_collaborator("bob") is True
    assert workflow.state.collaborator_ids == ["bob"]
    assert workflow.toggle_collaborator("bob") is False
    assert workflow.state.collaborator_ids == []


def test_toggle_rejects_acting_user_and_strangers():
    workflow, _ = open_workflow(roster=("bob",))

    with pytest.raises(InvalidCollaborator):
        workflow.toggle_collaborator("alice")
    with pytest.raises(InvalidCollaborator):
        workflow.toggle_collaborator("mallory")


def test_points_preview_follows_collaborator_count():
    workflow, _ = open_workflow(severity="medium", roster=("bob", "carol"))
    assert workflow.points_per_person == 100

    workflow.toggle_collaborator("bob")
    workflow.toggle_collaborator("carol")
    assert workflow.points_per_person == 33


def test_collaborators_cannot_change_after_leaving_the_step():
    workflow, _ = open_workflow(roster=("bob",))
    workflow.next()

    with pytest.raises(TransitionBlocked):
        workflow.toggle_collaborator("bob")


# =============================================================================
# After photo and verification
# =============================================================================

def test_next_blocked_without_verification_result():
    workflow, _ = open_workflow()
    workflow.next()

    assert workflow.step == Step.AFTER_PHOTO
    assert workflow.can_advance is False
    with pytest.raises(TransitionBlocked):
        workflow.next()


def test_failed_verification_then_retry_on_low_area():
    workflow, verifier = open_workflow(
        severity="low",
        outcomes=[VerificationResult.failed("Litter still visible"), VerificationResult.passed(80)],
    )
    workflow.next()

    first = workflow.submit_after_photo("after-1.jpg")
    assert first.success is False
    assert workflow.points_earned == 0
    assert workflow.can_advance is False
    with pytest.raises(TransitionBlocked):
        workflow.next()

    workflow.discard_photo()
    second = workflow.submit_after_photo("after-2.jpg")
    assert second.success is True
    assert second.quality_score == 80
    assert workflow.can_advance is True
    assert workflow.points_earned == 50
    assert workflow.state.attempts == 2
    assert verifier.calls == [("before.jpg", "after-1.jpg"), ("before.jpg", "after-2.jpg")]


def test_verifier_error_is_a_failed_result_not_an_exception():
    workflow, _ = open_workflow(outcomes=[RuntimeError("model overloaded")])
    workflow.next()

    result = workflow.submit_after_photo("after.jpg")

    assert result.success is False
    assert workflow.can_advance is False


def test_checkpoint_sees_verification_in_flight():
    seen = []
    workflow, _ = open_workflow(checkpoint=lambda state: seen.append((state.verifying, state.after_photo)))
    workflow.next()

    workflow.submit_after_photo("after.jpg")

    assert seen == [(True, "after.jpg")]
    assert workflow.state.verifying is False


def test_navigation_refused_while_verifying():
    workflow, _ = open_workflow()
    workflow.next()
    workflow.state.verifying = True
    workflow.state.verifying_since = time.time()

    assert workflow.can_advance is False
    assert workflow.can_go_back is False
    with pytest.raises(TransitionBlocked):
        workflow.back()
    with pytest.raises(TransitionBlocked):
        workflow.submit_after_photo("again.jpg")
    with pytest.raises(TransitionBlocked):
        workflow.discard_photo()
    with pytest.raises(TransitionBlocked):
        workflow.start_capture()


def test_abandoned_verification_expires():
    workflow, _ = open_workflow(verification_timeout=2)
    workflow.next()
    workflow.state.after_photo = "lost.jpg"
    workflow.state.verifying = True
    workflow.state.verifying_since = time.time() - 60

    assert workflow.view()["verifying"] is False
    assert workflow.can_go_back is True
    workflow.discard_photo()
    assert workflow.state.verifying is False
    assert workflow.state.after_photo is None

    workflow.state.verifying = True
    workflow.state.verifying_since = time.time() - 60
    workflow.start_capture()
    result = workflow.submit_after_photo("retake.jpg")

    assert result.success is True
    assert workflow.state.verifying_since is None
    assert workflow.can_advance is True


def test_verifying_flag_without_timestamp_is_ignored():
    workflow, _ = open_workflow()
    workflow.next()
    workflow.state.verifying = True

    workflow.back()

    assert workflow.step == Step.COLLABORATORS
    assert workflow.state.verifying is False


def test_capture_can_be_cancelled():
    workflow, _ = open_workflow()
    workflow.next()

    workflow.start_capture()
    assert workflow.state.capturing is True
    workflow.cancel_capture()
    assert workflow.state.capturing is False
    assert workflow.step == Step.AFTER_PHOTO


def test_back_returns_to_previous_step():
    workflow, _ = open_workflow()
    workflow.next()
    workflow.submit_after_photo("after.jpg")
    workflow.next()

    assert workflow.back() == Step.AFTER_PHOTO
    assert workflow.back() == Step.COLLABORATORS
    assert workflow.can_go_back is False


def test_verification_view_shows_before_and_after():
    workflow, _ = open_workflow()
    workflow.next()
    workflow.submit_after_photo("after.jpg")
    workflow.next()

    view = workflow.view()
    assert view["step"] == "verification"
    assert view["photos"] == {"before": "before.jpg", "after": "after.jpg"}


# =============================================================================
# Settlement and completion
# =============================================================================

def test_solo_high_claim_settles_full_value():
    workflow, _ = open_workflow(severity="high")
    advance_to_complete(workflow)

    assert workflow.step == Step.COMPLETE
    assert workflow.state.settlement.per_person_points == 150
    assert workflow.can_go_back is False


def test_settlement_is_computed_once():
    workflow, _ = open_workflow(severity="medium", roster=("bob", "carol"))
    workflow.toggle_collaborator("bob")
    workflow.toggle_collaborator("carol")
    advance_to_complete(workflow)

    first = workflow.settle()
    workflow.state.collaborator_ids = []
    second = workflow.settle()

    assert first is second
    assert second.per_person_points == 33
    assert second.total_awarded == 99


def test_finish_commits_draft_and_closes():
    committer = RecordingCommitter()
    workflow, _ = open_workflow(severity="medium", roster=("bob", "carol"), committer=committer)
    workflow.toggle_collaborator("bob")
    workflow.toggle_collaborator("carol")
    advance_to_complete(workflow)

    state = workflow.finish()

    draft = committer.drafts[0]
    assert draft.area_id == "area-1"
    assert draft.claimer_id == "alice"
    assert draft.collaborator_ids == ["bob", "carol"]
    assert draft.points_earned == 33
    assert draft.quality_score == 92
    assert draft.photos_after == ["after.jpg"]
    assert state.finished is True
    assert state.commit_status == "committed"
    assert state.claim_id == "claim-1"


def test_finish_only_from_complete():
    workflow, _ = open_workflow()

    with pytest.raises(TransitionBlocked):
        workflow.finish()


def test_commit_failure_still_finishes_and_reports():
    failures = []
    committer = RecordingCommitter(error=CommitError("database down"))
    workflow, _ = open_workflow(committer=committer, on_commit_failure=lambda d, e: failures.append((d, e)))
    advance_to_complete(workflow)

    state = workflow.finish()

    assert state.finished is True
    assert state.commit_status == "failed"
    assert len(failures) == 1
    assert failures[0][0].area_id == "area-1"


def test_partial_credit_failures_are_recorded():
    workflow, _ = open_workflow(committer=RecordingCommitter(failed_credits=["bob"]))
    advance_to_complete(workflow)

    state = workflow.finish()

    assert state.commit_status == "committed"
    assert state.uncredited == ["bob"]


def test_complete_view_lists_achievements():
    workflow, _ = open_workflow(severity="high")
    advance_to_complete(workflow)

    names = [a["name"] for a in workflow.view()["achievements"]]
    assert names == ["First Cleanup", "Eco Warrior"]


# =============================================================================
# Cancellation
# =============================================================================

def test_cancel_at_verification_discards_progress_without_committing():
    committer = RecordingCommitter()
    workflow, _ = open_workflow(committer=committer)
    workflow.next()
    workflow.submit_after_photo("after.jpg")
    workflow.next()

    state = workflow.cancel()

    assert state.cancelled is True
    assert state.after_photo is None
    assert state.verification is None
    assert committer.drafts == []


def test_closed_workflow_refuses_everything():
    workflow, _ = open_workflow()
    workflow.cancel()

    assert workflow.can_advance is False
    with pytest.raises(WorkflowClosed):
        workflow.next()
    with pytest.raises(WorkflowClosed):
        workflow.cancel()
