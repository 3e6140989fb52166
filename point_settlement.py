"""
Point settlement for cleanup claims.

The severity of an area maps to a fixed point value. That value is split evenly
between the claimer and every collaborator using floor division; whatever is
lost to flooring is simply not awarded.
"""

from typing import Iterable, List, Optional
from pydantic import BaseModel, ConfigDict

SEVERITY_POINTS = {
    'high': 150,
    'medium': 100,
    'low': 50,
}
DEFAULT_SEVERITY_POINTS = 50

# Milestones shown on the completion screen
FIRST_CLEANUP = 'First Cleanup'
ECO_WARRIOR = 'Eco Warrior'
ECO_WARRIOR_POINTS = 2000


class Settlement(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: str
    severity_points: int
    participant_count: int
    per_person_points: int
    total_awarded: int


class AchievementProgress(BaseModel):
    name: str
    unlocked: bool
    progress_percent: float
    points_required: Optional[int] = None


def points_for_severity(severity) -> int:
    return SEVERITY_POINTS.get(severity, DEFAULT_SEVERITY_POINTS)


def per_person_points(severity, collaborator_count: int) -> int:
    if collaborator_count < 0:
        raise ValueError("collaborator_count cannot be negative")
    return points_for_severity(severity) // (collaborator_count + 1)


def settle(severity, collaborator_ids: Iterable[str]) -> Settlement:
    """Computes the award for one claim. Duplicate collaborator ids count once."""
    unique_ids = list(dict.fromkeys(collaborator_ids))
    participants = len(unique_ids) + 1
    per_person = per_person_points(severity, len(unique_ids))
    return Settlement(
        severity=severity,
        severity_points=points_for_severity(severity),
        participant_count=participants,
        per_person_points=per_person,
        total_awarded=per_person * participants,
    )


def achievement_progress(points_before: int, points_awarded: int) -> List[AchievementProgress]:
    # Finishing any claim unlocks the first milestone
    total_after = points_before + points_awarded
    return [
        AchievementProgress(
            name=FIRST_CLEANUP,
            unlocked=True,
            progress_percent=100.0,
        ),
        AchievementProgress(
            name=ECO_WARRIOR,
            unlocked=total_after >= ECO_WARRIOR_POINTS,
            progress_percent=min(100.0, round(total_after * 100 / ECO_WARRIOR_POINTS, 1)),
            points_required=ECO_WARRIOR_POINTS,
        ),
    ]
