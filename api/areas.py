import logging
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .pydantic_models import ReportAreaRequest, UpdateAreaRequest
from .auth import token_required
from .error_utils import (create_error_response, not_found_error, validation_error,
                          forbidden_error, conflict_error, handle_exception)
from area_registry import AreaRegistry, AreaNotFound, AreaConflictError, NotReporter
from group_membership import GroupMembershipProvider, NotGroupMember, GroupNotFound
from image_resizer import InvalidImage, photo_reference_from_upload
from dependencies import get_analysis_service
from extensions import limiter
from models import AREA_STATUSES

areas_bp = Blueprint('areas_bp', __name__)


def parse_bounds(raw):
    """Parses `south,west,north,east` into a tuple of floats."""
    parts = raw.split(',')
    if len(parts) != 4:
        raise ValueError("bounds must be south,west,north,east")
    south, west, north, east = (float(p) for p in parts)
    if south > north or west > east:
        raise ValueError("bounds must be south,west,north,east")
    return south, west, north, east

def _report_payload():
    """Reads the report body from JSON or from a multipart form with a 'photo' file."""
    if request.files:
        payload = {k: v for k, v in request.form.items() if v != ''}
        upload = request.files.get('photo')
        if upload:
            payload['photo_url'] = photo_reference_from_upload(upload)
        return payload
    return request.get_json(silent=True) or {}


@areas_bp.route('', methods=['GET'])
def list_areas():
    status = request.args.get('status', 'available')
    if status == 'all':
        status = None
    elif status not in AREA_STATUSES:
        return validation_error(f"Unknown status: {status}")

    bounds = None
    if request.args.get('bounds'):
        try:
            bounds = parse_bounds(request.args['bounds'])
        except ValueError as e:
            return validation_error(str(e))

    areas = AreaRegistry().list_areas(status=status, bounds=bounds)
    return jsonify({"areas": [a.to_dict() for a in areas]}), 200

@areas_bp.route('/<area_id>', methods=['GET'])
def get_area(area_id):
    try:
        area = AreaRegistry().get(area_id)
    except AreaNotFound:
        return not_found_error("Area not found")
    return jsonify(area.to_dict()), 200

@areas_bp.route('', methods=['POST'])
@limiter.limit("20 per hour")
@token_required
def report_area(user_id):
    try:
        payload = _report_payload()
    except InvalidImage as e:
        return create_error_response("INVALID_IMAGE", str(e), status_code=400)
    req_data = ReportAreaRequest.model_validate(payload)
    if not req_data.photo_url:
        return validation_error("A photo of the area is required")

    groups = GroupMembershipProvider()
    if req_data.group_id:
        try:
            groups.require_member(req_data.group_id, user_id)
        except (NotGroupMember, GroupNotFound):
            return create_error_response("NOT_FOUND_OR_UNAUTHORIZED", status_code=404)

    severity = req_data.severity
    description = req_data.description
    instructions = req_data.cleanup_instructions
    if severity is None:
        analyzer = get_analysis_service()
        analysis = analyzer.analyze(req_data.photo_url) if analyzer else None
        if analysis is None:
            return create_error_response("SEVERITY_REQUIRED", status_code=400)
        severity = analysis.severity
        description = description or analysis.description
        instructions = instructions or analysis.cleanup_instructions

    try:
        groups.ensure_profile(user_id)
        area = AreaRegistry().report(
            reported_by=user_id,
            latitude=req_data.latitude,
            longitude=req_data.longitude,
            severity=severity,
            photos_before=[req_data.photo_url],
            description=description,
            cleanup_instructions=instructions,
            location_hint=req_data.location_hint,
            group_id=req_data.group_id,
        )
    except SQLAlchemyError as e:
        return handle_exception(e, "report_area")
    return jsonify(area.to_dict()), 201

@areas_bp.route('/<area_id>', methods=['PATCH'])
@token_required
def update_area(user_id, area_id):
    req_data = UpdateAreaRequest.model_validate(request.get_json(silent=True) or {})
    changes = req_data.model_dump(exclude_unset=True, exclude={'expected_version'})
    try:
        area = AreaRegistry().update_fields(area_id, user_id, changes, expected_version=req_data.expected_version)
    except AreaNotFound:
        return not_found_error("Area not found")
    except NotReporter as e:
        return forbidden_error("NOT_REPORTER", str(e))
    except AreaConflictError as e:
        return conflict_error("AREA_CONFLICT", str(e))
    logging.info(f"Area {area_id} updated by {user_id}: {sorted(changes)}")
    return jsonify(area.to_dict()), 200
