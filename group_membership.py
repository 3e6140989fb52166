"""
Group membership: rosters, roles, invite codes and leaderboards.

A group always keeps at least one admin. The roster returned by
`list_members` is what the claim workflow offers as collaborators.
"""

import logging
import random
from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models import db, Group, GroupMember, Profile

logger = logging.getLogger(__name__)

INVITE_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
INVITE_CODE_PREFIX = 'ECO-'


class NotGroupMember(Exception):
    pass

class AdminRequired(Exception):
    pass

class LastAdminError(Exception):
    pass

class AlreadyMember(Exception):
    pass

class InvalidInviteCode(Exception):
    pass

class GroupNotFound(Exception):
    pass


class RosterEntry(BaseModel):
    user_id: str
    username: str
    avatar_url: Optional[str] = None
    total_points: int = 0
    role: str = 'member'


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    username: str
    avatar_url: Optional[str] = None
    total_points: int = 0


def _roster_entry(member: GroupMember) -> RosterEntry:
    profile = member.profile
    return RosterEntry(
        user_id=member.user_id,
        username=profile.username if profile else 'EcoUser',
        avatar_url=profile.avatar_url if profile else None,
        total_points=profile.total_points if profile else 0,
        role=member.role,
    )


class GroupMembershipProvider:
    def __init__(self, session=None):
        self.session = session or db.session

    # --- Profiles ---
    def ensure_profile(self, user_id, username=None, avatar_url=None) -> Profile:
        """Creates the user's profile on first use."""
        profile = self.session.get(Profile, user_id)
        if profile is None:
            profile = Profile(id=user_id, username=username or 'EcoUser', avatar_url=avatar_url, total_points=0)
            self.session.add(profile)
            self.session.commit()
            logger.info(f"Created profile for user {user_id}")
        return profile

    # --- Lookups ---
    def get_group(self, group_id) -> Group:
        group = self.session.get(Group, group_id)
        if group is None:
            raise GroupNotFound(group_id)
        return group

    def membership(self, group_id, user_id) -> Optional[GroupMember]:
        return self.session.query(GroupMember).filter_by(group_id=group_id, user_id=user_id).first()

    def require_member(self, group_id, user_id) -> GroupMember:
        self.get_group(group_id)
        member = self.membership(group_id, user_id)
        if member is None:
            raise NotGroupMember(f"{user_id} is not a member of {group_id}")
        return member

    def require_admin(self, group_id, user_id) -> GroupMember:
        member = self.require_member(group_id, user_id)
        if member.role != 'admin':
            raise AdminRequired(f"{user_id} is not an admin of {group_id}")
        return member

    def list_members(self, group_id) -> List[RosterEntry]:
        members = (self.session.query(GroupMember)
                   .filter_by(group_id=group_id)
                   .order_by(GroupMember.joined_at.asc(), GroupMember.id.asc())
                   .all())
        return [_roster_entry(m) for m in members]

    def groups_for_user(self, user_id):
        memberships = self.session.query(GroupMember).filter_by(user_id=user_id).all()
        groups = []
        for membership in memberships:
            group = membership.group
            member_count = self.session.query(func.count(GroupMember.id)).filter_by(group_id=group.id).scalar()
            groups.append({
                **group_to_dict(group),
                'member_count': member_count or 0,
                'user_role': membership.role,
            })
        return groups

    # --- Mutations ---
    def generate_unique_invite_code(self):
        """Generates an invite code and guarantees it's unique in the database."""
        while True:
            code = INVITE_CODE_PREFIX + ''.join(random.choices(INVITE_CODE_ALPHABET, k=6))
            if not self.session.query(Group.id).filter_by(invite_code=code).first():
                return code

    def create_group(self, creator_id, name, description=None) -> Group:
        self.ensure_profile(creator_id)
        group = Group(
            name=name,
            description=description,
            invite_code=self.generate_unique_invite_code(),
            created_by=creator_id,
        )
        group.members.append(GroupMember(user_id=creator_id, role='admin'))
        self.session.add(group)
        self.session.commit()
        logger.info(f"Group created successfully: {group.name} by {creator_id}")
        return group

    def update_group(self, group_id, acting_user_id, name=None, description=None) -> Group:
        self.require_admin(group_id, acting_user_id)
        group = self.get_group(group_id)
        if name is not None:
            group.name = name
        if description is not None:
            group.description = description
        self.session.commit()
        return group

    def join_group(self, user_id, invite_code) -> GroupMember:
        self.ensure_profile(user_id)
        code = (invite_code or '').strip().upper()
        group = self.session.query(Group).filter_by(invite_code=code).first()
        if group is None:
            raise InvalidInviteCode(code)
        if self.membership(group.id, user_id):
            raise AlreadyMember(f"{user_id} already in {group.id}")

        member = GroupMember(group_id=group.id, user_id=user_id, role='member')
        self.session.add(member)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise AlreadyMember(f"{user_id} already in {group.id}")
        logger.info(f"User {user_id} joined group {group.id}")
        return member

    def remove_member(self, group_id, acting_user_id, member_id):
        self.require_admin(group_id, acting_user_id)
        target = self.membership(group_id, member_id)
        if target is None:
            raise NotGroupMember(f"{member_id} is not a member of {group_id}")

        if target.role == 'admin':
            admin_count = (self.session.query(func.count(GroupMember.id))
                           .filter_by(group_id=group_id, role='admin').scalar())
            if admin_count <= 1:
                raise LastAdminError("Cannot remove the last admin")

        self.session.delete(target)
        self.session.commit()
        logger.info(f"User {member_id} removed from group {group_id} by {acting_user_id}")

    def leaderboard(self, group_id) -> List[LeaderboardEntry]:
        roster = sorted(self.list_members(group_id), key=lambda e: (-e.total_points, e.user_id))
        return [
            LeaderboardEntry(rank=i + 1, user_id=e.user_id, username=e.username,
                             avatar_url=e.avatar_url, total_points=e.total_points)
            for i, e in enumerate(roster)
        ]

    def health_check(self):
        try:
            self.session.query(GroupMember.id).limit(1).all()
            return {"status": "OK", "details": "group_members table is accessible."}
        except Exception as e:
            return {"status": "ERROR", "details": f"Failed to query group_members: {str(e)}"}


def group_to_dict(group: Group):
    return {
        'id': group.id,
        'name': group.name,
        'description': group.description,
        'invite_code': group.invite_code,
        'created_by': group.created_by,
        'created_at': group.created_at.isoformat() if group.created_at else None,
        'updated_at': group.updated_at.isoformat() if group.updated_at else None,
    }
