import datetime
from flask import Blueprint, jsonify

from area_registry import AreaRegistry
from group_membership import GroupMembershipProvider
from dependencies import get_verification_service, get_workflow_store

status_bp = Blueprint('status_bp', __name__)

# --- Helper Check Functions ---

def check_verification_service():
    """Checks the verification backend; a missing Gemini key shows up here."""
    try:
        return get_verification_service().health_check()
    except Exception as e:
        return {"status": "ERROR", "details": f"Verification service is not configured: {str(e)}"}


# --- Main Endpoint ---
@status_bp.route('/health')
def system_health():
    all_checks = {
        "Areas Database": AreaRegistry().health_check(),
        "Groups Database": GroupMembershipProvider().health_check(),
        "Workflow Store": get_workflow_store().health_check(),
        "Verification Service": check_verification_service(),
    }
    overall = "OK" if all(c["status"] == "OK" for c in all_checks.values()) else "DEGRADED"
    timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return jsonify({"status": overall, "checks": all_checks, "timestamp": timestamp}), 200
