import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

# --- Enumerations (stored as plain strings) ---
SEVERITY_LEVELS = ('low', 'medium', 'high')
AREA_STATUSES = ('available', 'claimed', 'completed')
CLAIM_STATUSES = ('in_progress', 'completed', 'verified')
MEMBER_ROLES = ('admin', 'member')


class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)


def utcnow():
    return datetime.now(timezone.utc)

def new_id():
    return str(uuid.uuid4())


class Profile(db.Model):
    __tablename__ = 'profiles'

    id = Column(String(64), primary_key=True)
    username = Column(String(80), nullable=False)
    avatar_url = Column(String(500))
    total_points = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<Profile {self.id} ({self.total_points} pts)>'


class Group(db.Model):
    __tablename__ = 'groups'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    description = Column(Text)
    invite_code = Column(String(16), unique=True, nullable=False)
    created_by = Column(String(64), ForeignKey('profiles.id'), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = relationship('GroupMember', back_populates='group', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Group {self.name} [{self.invite_code}]>'


class GroupMember(db.Model):
    __tablename__ = 'group_members'
    __table_args__ = (UniqueConstraint('group_id', 'user_id', name='uq_group_member'),)

    id = Column(Integer, primary_key=True)
    group_id = Column(String(36), ForeignKey('groups.id'), nullable=False)
    user_id = Column(String(64), ForeignKey('profiles.id'), nullable=False)
    role = Column(String(20), nullable=False, default='member')
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    group = relationship('Group', back_populates='members')
    profile = relationship('Profile')

    def __repr__(self):
        return f'<GroupMember {self.user_id} in {self.group_id} ({self.role})>'


class CleanupArea(db.Model):
    __tablename__ = 'cleanup_areas'

    id = Column(String(36), primary_key=True, default=new_id)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    location_hint = Column(String(255))
    severity = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default='available')
    photos_before = Column(JSON, nullable=False, default=list)
    description = Column(Text)
    cleanup_instructions = Column(Text)
    reported_by = Column(String(64), nullable=False)
    group_id = Column(String(36), ForeignKey('groups.id'))
    # Optimistic concurrency token, bumped on every mutation
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'location': {'lat': self.latitude, 'lng': self.longitude},
            'location_hint': self.location_hint,
            'severity': self.severity,
            'status': self.status,
            'photos_before': list(self.photos_before or []),
            'description': self.description,
            'cleanup_instructions': self.cleanup_instructions,
            'reported_by': self.reported_by,
            'group_id': self.group_id,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<CleanupArea {self.id} {self.severity}/{self.status}>'


class CleanupClaim(db.Model):
    __tablename__ = 'cleanup_claims'

    id = Column(String(36), primary_key=True, default=new_id)
    area_id = Column(String(36), ForeignKey('cleanup_areas.id'), nullable=False)
    claimed_by = Column(String(64), nullable=False)
    collaborators = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default='in_progress')
    photos_after = Column(JSON, nullable=False, default=list)
    quality_score = Column(Integer)
    # Per-person award; every participant is credited this amount
    points_earned = Column(Integer, nullable=False, default=0)
    claimed_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True))
    verified_at = Column(DateTime(timezone=True))

    area = relationship('CleanupArea')

    @property
    def total_awarded(self):
        return self.points_earned * (len(self.collaborators or []) + 1)

    def to_dict(self):
        return {
            'id': self.id,
            'area_id': self.area_id,
            'claimed_by': self.claimed_by,
            'collaborators': list(self.collaborators or []),
            'status': self.status,
            'photos_after': list(self.photos_after or []),
            'quality_score': self.quality_score,
            'points_earned': self.points_earned,
            'total_awarded': self.total_awarded,
            'claimed_at': self.claimed_at.isoformat() if self.claimed_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'verified_at': self.verified_at.isoformat() if self.verified_at else None,
        }

    def __repr__(self):
        return f'<CleanupClaim {self.id} area={self.area_id} by={self.claimed_by}>'
