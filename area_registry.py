"""
Area Registry: the single owner of cleanup-area records.

Status changes go through a compare-and-set on the `status` column so two
claim workflows can never both move the same area out of `available`.
"""

import logging
from sqlalchemy import update

from models import db, CleanupArea, SEVERITY_LEVELS, utcnow

logger = logging.getLogger(__name__)

# The only forward moves an area may make
ALLOWED_TRANSITIONS = {
    'available': 'claimed',
    'claimed': 'completed',
}
EDITABLE_FIELDS = ('description', 'cleanup_instructions')


class AreaNotFound(Exception):
    pass

class AreaConflictError(Exception):
    """Another writer changed the area first."""

class InvalidStatusTransition(Exception):
    pass

class AreaUnavailable(Exception):
    """The area is not open for claiming."""

class NotReporter(Exception):
    pass


class AreaRegistry:
    def __init__(self, session=None):
        self.session = session or db.session

    def get(self, area_id) -> CleanupArea:
        area = self.session.get(CleanupArea, area_id)
        if area is None:
            raise AreaNotFound(area_id)
        return area

    def list_areas(self, status='available', bounds=None, group_id=None):
        query = self.session.query(CleanupArea)
        if status:
            query = query.filter(CleanupArea.status == status)
        if group_id:
            query = query.filter(CleanupArea.group_id == group_id)
        if bounds:
            south, west, north, east = bounds
            query = query.filter(
                CleanupArea.latitude >= south, CleanupArea.latitude <= north,
                CleanupArea.longitude >= west, CleanupArea.longitude <= east,
            )
        return query.order_by(CleanupArea.created_at.desc()).all()

    def report(self, reported_by, latitude, longitude, severity, photos_before=None,
               description=None, cleanup_instructions=None, location_hint=None, group_id=None):
        if severity not in SEVERITY_LEVELS:
            raise ValueError(f"Unknown severity: {severity}")
        area = CleanupArea(
            latitude=latitude,
            longitude=longitude,
            location_hint=location_hint,
            severity=severity,
            status='available',
            photos_before=list(photos_before or []),
            description=description,
            cleanup_instructions=cleanup_instructions,
            reported_by=reported_by,
            group_id=group_id,
        )
        self.session.add(area)
        self.session.commit()
        logger.info(f"Area {area.id} reported by {reported_by} with severity {severity}")
        return area

    def ensure_claimable(self, area_id) -> CleanupArea:
        area = self.get(area_id)
        if area.status != 'available':
            raise AreaUnavailable(f"Area {area_id} is {area.status}")
        return area

    def transition_status(self, area_id, expected, new, commit=True):
        """
        Moves an area from `expected` to `new` if and only if it is still in
        `expected`. Raises AreaConflictError when someone else got there first.
        """
        if ALLOWED_TRANSITIONS.get(expected) != new:
            raise InvalidStatusTransition(f"{expected} -> {new} is not allowed")

        result = self.session.execute(
            update(CleanupArea)
            .where(CleanupArea.id == area_id, CleanupArea.status == expected)
            .values(status=new, version=CleanupArea.version + 1, updated_at=utcnow())
        )
        if result.rowcount != 1:
            if self.session.get(CleanupArea, area_id) is None:
                raise AreaNotFound(area_id)
            raise AreaConflictError(f"Area {area_id} is no longer {expected}")

        if commit:
            self.session.commit()
        logger.info(f"Area {area_id} moved {expected} -> {new}")

    def update_fields(self, area_id, acting_user_id, changes, expected_version=None):
        area = self.get(area_id)
        if area.reported_by != acting_user_id:
            raise NotReporter("Only the reporter can edit this area")

        values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if not values:
            return area

        conditions = [CleanupArea.id == area_id]
        if expected_version is not None:
            conditions.append(CleanupArea.version == expected_version)

        result = self.session.execute(
            update(CleanupArea)
            .where(*conditions)
            .values(version=CleanupArea.version + 1, updated_at=utcnow(), **values)
        )
        if result.rowcount != 1:
            self.session.rollback()
            raise AreaConflictError(f"Area {area_id} was modified by someone else")
        self.session.commit()
        self.session.refresh(area)
        return area

    def health_check(self):
        try:
            self.session.query(CleanupArea.id).limit(1).all()
            return {"status": "OK", "details": "cleanup_areas table is accessible."}
        except Exception as e:
            return {"status": "ERROR", "details": f"Failed to query cleanup_areas: {str(e)}"}
