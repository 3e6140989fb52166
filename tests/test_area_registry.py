import pytest

from area_registry import (
    AreaConflictError,
    AreaNotFound,
    AreaRegistry,
    AreaUnavailable,
    InvalidStatusTransition,
    NotReporter,
)
from models import db, CleanupArea


def test_report_creates_available_area(app):
    area = AreaRegistry().report("dave", 1.0, 2.0, "medium", photos_before=["p.jpg"], location_hint="Park")

    assert area.status == "available"
    assert area.version == 1
    assert area.to_dict()["location"] == {"lat": 1.0, "lng": 2.0}


def test_report_rejects_unknown_severity(app):
    with pytest.raises(ValueError):
        AreaRegistry().report("dave", 1.0, 2.0, "apocalyptic")


def test_get_missing_area(app):
    with pytest.raises(AreaNotFound):
        AreaRegistry().get("nope")


def test_status_moves_forward_only(seed):
    registry = AreaRegistry()

    registry.transition_status(seed.low_area_id, "available", "claimed")
    registry.transition_status(seed.low_area_id, "claimed", "completed")

    area = registry.get(seed.low_area_id)
    assert area.status == "completed"
    assert area.version == 3
    with pytest.raises(InvalidStatusTransition):
        registry.transition_status(seed.low_area_id, "completed", "available")
    with pytest.raises(InvalidStatusTransition):
        registry.transition_status(seed.low_area_id, "available", "completed")


def test_compare_and_set_refuses_stale_expectation(seed):
    registry = AreaRegistry()
    registry.transition_status(seed.high_area_id, "available", "claimed")

    with pytest.raises(AreaConflictError):
        registry.transition_status(seed.high_area_id, "available", "claimed")


def test_transition_on_missing_area(app):
    with pytest.raises(AreaNotFound):
        AreaRegistry().transition_status("ghost", "available", "claimed")


def test_ensure_claimable(seed):
    registry = AreaRegistry()
    assert registry.ensure_claimable(seed.low_area_id).id == seed.low_area_id

    registry.transition_status(seed.low_area_id, "available", "claimed")
    with pytest.raises(AreaUnavailable):
        registry.ensure_claimable(seed.low_area_id)


def test_list_areas_filters(seed):
    registry = AreaRegistry()
    registry.transition_status(seed.low_area_id, "available", "claimed")

    assert [a.id for a in registry.list_areas()] == [seed.high_area_id]
    assert [a.id for a in registry.list_areas(status="claimed")] == [seed.low_area_id]
    assert len(registry.list_areas(status=None)) == 2
    assert [a.id for a in registry.list_areas(status=None, group_id=seed.group_id)] == [seed.high_area_id]


def test_list_areas_within_bounds(seed):
    registry = AreaRegistry()

    inside = registry.list_areas(bounds=(-8.66, 115.10, -8.60, 115.15))

    assert [a.id for a in inside] == [seed.high_area_id]


def test_reporter_can_edit_text_fields(seed):
    area = AreaRegistry().update_fields(
        seed.low_area_id, "dave",
        {"description": "Bottles under the bridge", "cleanup_instructions": "Bring gloves", "severity": "high"},
    )

    assert area.description == "Bottles under the bridge"
    assert area.cleanup_instructions == "Bring gloves"
    assert area.severity == "low"
    assert area.version == 2


def test_only_reporter_can_edit(seed):
    with pytest.raises(NotReporter):
        AreaRegistry().update_fields(seed.low_area_id, "alice", {"description": "mine now"})


def test_edit_with_stale_version_conflicts(seed):
    registry = AreaRegistry()
    registry.update_fields(seed.low_area_id, "dave", {"description": "v2"}, expected_version=1)

    with pytest.raises(AreaConflictError):
        registry.update_fields(seed.low_area_id, "dave", {"description": "v3"}, expected_version=1)

    assert db.session.get(CleanupArea, seed.low_area_id).description == "v2"


def test_health_check(app):
    assert AreaRegistry().health_check()["status"] == "OK"
