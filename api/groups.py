import logging
from flask import Blueprint, request, jsonify

from .pydantic_models import CreateGroupRequest, UpdateGroupRequest, JoinGroupRequest
from .auth import token_required
from .cache_utils import get_cached_leaderboard, cache_leaderboard, invalidate_leaderboard_cache
from .error_utils import create_error_response, forbidden_error, conflict_error
from area_registry import AreaRegistry
from group_membership import (GroupMembershipProvider, group_to_dict, NotGroupMember, AdminRequired,
                              LastAdminError, AlreadyMember, InvalidInviteCode, GroupNotFound)
from extensions import limiter
from models import AREA_STATUSES

groups_bp = Blueprint('groups_bp', __name__)


def group_not_found():
    return create_error_response("NOT_FOUND_OR_UNAUTHORIZED", "Group not found", status_code=404)


@groups_bp.route('', methods=['POST'])
@token_required
def create_group(user_id):
    req_data = CreateGroupRequest.model_validate(request.get_json(silent=True) or {})
    group = GroupMembershipProvider().create_group(user_id, req_data.name, req_data.description)
    return jsonify({**group_to_dict(group), "member_count": 1, "user_role": "admin"}), 201

@groups_bp.route('', methods=['GET'])
@token_required
def my_groups(user_id):
    return jsonify({"groups": GroupMembershipProvider().groups_for_user(user_id)}), 200

@groups_bp.route('/join', methods=['POST'])
@limiter.limit("10 per minute")
@token_required
def join_group(user_id):
    req_data = JoinGroupRequest.model_validate(request.get_json(silent=True) or {})
    provider = GroupMembershipProvider()
    try:
        member = provider.join_group(user_id, req_data.invite_code)
    except InvalidInviteCode:
        return create_error_response("INVALID_INVITE_CODE", status_code=404)
    except AlreadyMember:
        return conflict_error("ALREADY_MEMBER")
    invalidate_leaderboard_cache(member.group_id)
    return jsonify({**group_to_dict(provider.get_group(member.group_id)), "user_role": member.role}), 200

@groups_bp.route('/<group_id>', methods=['GET'])
@token_required
def get_group(user_id, group_id):
    provider = GroupMembershipProvider()
    try:
        member = provider.require_member(group_id, user_id)
    except (GroupNotFound, NotGroupMember):
        return group_not_found()
    group = provider.get_group(group_id)
    return jsonify({**group_to_dict(group), "member_count": len(group.members), "user_role": member.role}), 200

@groups_bp.route('/<group_id>', methods=['PATCH'])
@token_required
def update_group(user_id, group_id):
    req_data = UpdateGroupRequest.model_validate(request.get_json(silent=True) or {})
    try:
        group = GroupMembershipProvider().update_group(group_id, user_id, name=req_data.name, description=req_data.description)
    except (GroupNotFound, NotGroupMember):
        return group_not_found()
    except AdminRequired:
        return forbidden_error("ADMIN_REQUIRED")
    return jsonify(group_to_dict(group)), 200

@groups_bp.route('/<group_id>/members', methods=['GET'])
@token_required
def list_members(user_id, group_id):
    provider = GroupMembershipProvider()
    try:
        provider.require_member(group_id, user_id)
    except (GroupNotFound, NotGroupMember):
        return group_not_found()
    return jsonify({"members": [m.model_dump() for m in provider.list_members(group_id)]}), 200

@groups_bp.route('/<group_id>/members/<member_id>', methods=['DELETE'])
@token_required
def remove_member(user_id, group_id, member_id):
    try:
        GroupMembershipProvider().remove_member(group_id, user_id, member_id)
    except GroupNotFound:
        return group_not_found()
    except NotGroupMember:
        return create_error_response("NOT_FOUND_OR_UNAUTHORIZED", "Member not found", status_code=404)
    except AdminRequired:
        return forbidden_error("ADMIN_REQUIRED")
    except LastAdminError:
        return conflict_error("LAST_ADMIN")
    invalidate_leaderboard_cache(group_id)
    return jsonify({"message": "Member removed."}), 200

@groups_bp.route('/<group_id>/leaderboard', methods=['GET'])
@token_required
def leaderboard(user_id, group_id):
    provider = GroupMembershipProvider()
    try:
        provider.require_member(group_id, user_id)
    except (GroupNotFound, NotGroupMember):
        return group_not_found()

    cached = get_cached_leaderboard(group_id)
    if cached is not None:
        logging.info(f"Leaderboard cache hit for group {group_id}")
        return jsonify({"leaderboard": cached}), 200

    entries = [e.model_dump() for e in provider.leaderboard(group_id)]
    cache_leaderboard(group_id, entries)
    return jsonify({"leaderboard": entries}), 200

@groups_bp.route('/<group_id>/areas', methods=['GET'])
@token_required
def group_areas(user_id, group_id):
    try:
        GroupMembershipProvider().require_member(group_id, user_id)
    except (GroupNotFound, NotGroupMember):
        return group_not_found()
    status = request.args.get('status')
    if status not in AREA_STATUSES:
        status = None
    areas = AreaRegistry().list_areas(status=status, group_id=group_id)
    return jsonify({"areas": [a.to_dict() for a in areas]}), 200
