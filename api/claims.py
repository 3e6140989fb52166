import logging
from flask import Blueprint, request, jsonify, current_app
from kombu.exceptions import OperationalError
from sqlalchemy import String, cast, or_

from .pydantic_models import BeginClaimRequest, ToggleCollaboratorRequest, AfterPhotoRequest
from .auth import token_required
from .cache_utils import invalidate_leaderboards_for_users
from .error_utils import create_error_response, auth_required_error, not_found_error, conflict_error, server_error
from area_registry import AreaRegistry, AreaNotFound, AreaUnavailable
from group_membership import GroupMembershipProvider, NotGroupMember, GroupNotFound
from claim_workflow import (ClaimWorkflow, WorkflowError, AuthenticationRequired, TransitionBlocked,
                            WorkflowClosed, InvalidCollaborator)
from claim_commit import ClaimCommitService
from image_resizer import InvalidImage, photo_reference_from_upload
from dependencies import get_verification_service, get_workflow_store
from extensions import limiter
from models import db, CleanupClaim
from tasks import retry_claim_commit, award_points_task

claims_bp = Blueprint('claims_bp', __name__)


# --- Helpers ---
def queue_commit_retry(draft, error):
    """Hands a failed commit to the worker when reconciliation is enabled."""
    if not error.retryable or not current_app.config.get("CLAIM_COMMIT_RETRY_ENABLED"):
        return
    try:
        retry_claim_commit.delay(draft.model_dump_json())
        logging.info(f"Queued commit retry for area {draft.area_id} by {draft.claimer_id}")
    except OperationalError as e:
        logging.error(f"TASK_QUEUE_ERROR: could not queue commit retry for area {draft.area_id}: {e}", exc_info=True)

def queue_point_awards(state):
    if not state.uncredited or not current_app.config.get("CLAIM_COMMIT_RETRY_ENABLED"):
        return
    amount = state.settlement.per_person_points
    for user_id in state.uncredited:
        try:
            award_points_task.delay(user_id, amount, f"claim {state.claim_id}")
        except OperationalError as e:
            logging.error(f"TASK_QUEUE_ERROR: could not queue points for {user_id}: {e}", exc_info=True)

def build_controller(state, with_verifier=False):
    store = get_workflow_store()
    return ClaimWorkflow(
        state,
        verifier=get_verification_service() if with_verifier else None,
        committer=ClaimCommitService(),
        checkpoint=store.save,
        on_commit_failure=queue_commit_retry,
        verification_timeout=current_app.config.get("VERIFICATION_TIMEOUT_SECONDS", 30),
    )

def load_workflow(workflow_id, user_id, with_verifier=False):
    """Returns the user's workflow controller, or None if it does not exist or belongs to someone else."""
    state = get_workflow_store().load(workflow_id)
    if state is None or state.acting_user_id != user_id:
        return None
    return build_controller(state, with_verifier)

def workflow_not_found():
    return create_error_response("NOT_FOUND_OR_UNAUTHORIZED", "Claim workflow not found", status_code=404)


@claims_bp.errorhandler(WorkflowError)
def handle_workflow_error(e):
    if isinstance(e, AuthenticationRequired):
        return auth_required_error(str(e))
    if isinstance(e, WorkflowClosed):
        return conflict_error("WORKFLOW_CLOSED", str(e))
    if isinstance(e, TransitionBlocked):
        return conflict_error("TRANSITION_BLOCKED", str(e))
    if isinstance(e, InvalidCollaborator):
        return create_error_response("INVALID_COLLABORATOR", str(e), status_code=400)
    logging.error(f"Workflow error: {e}", exc_info=True)
    return server_error(str(e))


# --- Endpoints ---
@claims_bp.route('/workflows', methods=['POST'])
@token_required
def begin_claim(user_id):
    req_data = BeginClaimRequest.model_validate(request.get_json(silent=True) or {})
    registry = AreaRegistry()
    groups = GroupMembershipProvider()

    try:
        area = registry.ensure_claimable(req_data.area_id)
    except AreaNotFound:
        return not_found_error("Area not found")
    except AreaUnavailable as e:
        return conflict_error("AREA_UNAVAILABLE", str(e))

    group_id = req_data.group_id
    if group_id:
        try:
            groups.require_member(group_id, user_id)
        except (NotGroupMember, GroupNotFound):
            return create_error_response("NOT_FOUND_OR_UNAUTHORIZED", status_code=404)
    elif area.group_id and groups.membership(area.group_id, user_id):
        group_id = area.group_id

    roster = groups.list_members(group_id) if group_id else []
    profile = groups.ensure_profile(user_id)
    workflow = ClaimWorkflow.begin(
        area, user_id, roster=roster, group_id=group_id, acting_user_points=profile.total_points,
    )
    store = get_workflow_store()
    if not store.reserve_area(area.id, workflow.state.workflow_id):
        logging.info(f"Area {area.id} already has a claim in progress; refused {user_id}")
        return conflict_error("AREA_UNAVAILABLE", "Someone is already cleaning up this area")
    store.save(workflow.state)
    return jsonify(workflow.view()), 201

@claims_bp.route('/workflows/<workflow_id>', methods=['GET'])
@token_required
def get_workflow(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>/collaborators', methods=['POST'])
@token_required
def toggle_collaborator(user_id, workflow_id):
    req_data = ToggleCollaboratorRequest.model_validate(request.get_json(silent=True) or {})
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    selected = workflow.toggle_collaborator(req_data.user_id)
    get_workflow_store().save(workflow.state)
    return jsonify({**workflow.view(), "selected": selected}), 200

@claims_bp.route('/workflows/<workflow_id>/next', methods=['POST'])
@token_required
def next_step(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    workflow.next()
    get_workflow_store().save(workflow.state)
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>/back', methods=['POST'])
@token_required
def previous_step(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    workflow.back()
    get_workflow_store().save(workflow.state)
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>/capture', methods=['POST', 'DELETE'])
@token_required
def capture(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    if request.method == 'POST':
        workflow.start_capture()
    else:
        workflow.cancel_capture()
    get_workflow_store().save(workflow.state)
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>/after-photo', methods=['POST'])
@limiter.limit("30 per hour")
@token_required
def submit_after_photo(user_id, workflow_id):
    """Accepts the after-photo as JSON {photo_url} or a multipart 'photo' upload, then verifies it."""
    workflow = load_workflow(workflow_id, user_id, with_verifier=True)
    if workflow is None:
        return workflow_not_found()

    upload = request.files.get('photo')
    if upload:
        try:
            photo_ref = photo_reference_from_upload(upload)
        except InvalidImage as e:
            return create_error_response("INVALID_IMAGE", str(e), status_code=400)
    else:
        photo_ref = AfterPhotoRequest.model_validate(request.get_json(silent=True) or {}).photo_url

    try:
        workflow.submit_after_photo(photo_ref)
    finally:
        if workflow.verification_started:
            get_workflow_store().save(workflow.state)
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>/after-photo', methods=['DELETE'])
@token_required
def discard_after_photo(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    workflow.discard_photo()
    get_workflow_store().save(workflow.state)
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>/finish', methods=['POST'])
@token_required
def finish_claim(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()

    state = workflow.finish()
    store = get_workflow_store()
    store.save(state)
    store.release_area(state.area_id, state.workflow_id)
    if state.commit_status == 'committed':
        invalidate_leaderboards_for_users([state.acting_user_id, *state.collaborator_ids])
        queue_point_awards(state)
    return jsonify(workflow.view()), 200

@claims_bp.route('/workflows/<workflow_id>', methods=['DELETE'])
@token_required
def cancel_claim(user_id, workflow_id):
    workflow = load_workflow(workflow_id, user_id)
    if workflow is None:
        return workflow_not_found()
    workflow.cancel()
    store = get_workflow_store()
    store.delete(workflow_id)
    store.release_area(workflow.state.area_id, workflow_id)
    return jsonify(workflow.view()), 200

@claims_bp.route('/mine', methods=['GET'])
@token_required
def my_claims(user_id):
    """Claims the user made or helped with, newest first."""
    in_collaborators = cast(CleanupClaim.collaborators, String).like(f'%"{user_id}"%')
    claims = (db.session.query(CleanupClaim)
              .filter(or_(CleanupClaim.claimed_by == user_id, in_collaborators))
              .order_by(CleanupClaim.claimed_at.desc())
              .all())
    # LIKE over-matches ids containing wildcards
    mine = [c.to_dict() for c in claims if c.claimed_by == user_id or user_id in (c.collaborators or [])]
    return jsonify({"claims": mine}), 200
