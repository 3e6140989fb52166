import pytest
from pydantic import ValidationError

from point_settlement import (
    ECO_WARRIOR,
    FIRST_CLEANUP,
    achievement_progress,
    per_person_points,
    points_for_severity,
    settle,
)


@pytest.mark.parametrize("severity,expected", [("high", 150), ("medium", 100), ("low", 50)])
def test_severity_points(severity, expected):
    assert points_for_severity(severity) == expected


def test_unknown_severity_falls_back_to_default():
    assert points_for_severity("catastrophic") == 50


@pytest.mark.parametrize(
    "severity,collaborators,expected",
    [
        ("high", 0, 150),
        ("high", 1, 75),
        ("high", 2, 50),
        ("high", 3, 37),
        ("medium", 2, 33),
        ("low", 6, 7),
    ],
)
def test_per_person_points_floors_the_split(severity, collaborators, expected):
    assert per_person_points(severity, collaborators) == expected


def test_negative_collaborator_count_rejected():
    with pytest.raises(ValueError):
        per_person_points("high", -1)


def test_settle_reports_total_awarded_and_loses_the_remainder():
    settlement = settle("medium", ["bob", "carol"])

    assert settlement.participant_count == 3
    assert settlement.per_person_points == 33
    assert settlement.total_awarded == 99
    assert settlement.total_awarded <= settlement.severity_points


def test_settle_counts_duplicate_collaborators_once():
    assert settle("high", ["bob", "bob", "carol"]).per_person_points == 50


def test_settlement_is_immutable():
    settlement = settle("low", [])
    with pytest.raises(ValidationError):
        settlement.per_person_points = 1000


def test_achievement_progress_first_cleanup_always_unlocked():
    progress = {a.name: a for a in achievement_progress(0, 50)}

    assert progress[FIRST_CLEANUP].unlocked is True
    assert progress[ECO_WARRIOR].unlocked is False
    assert progress[ECO_WARRIOR].progress_percent == 2.5


def test_achievement_progress_caps_at_one_hundred_percent():
    progress = {a.name: a for a in achievement_progress(1950, 150)}

    assert progress[ECO_WARRIOR].unlocked is True
    assert progress[ECO_WARRIOR].progress_percent == 100.0
