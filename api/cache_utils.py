import json
import logging

import redis

from dependencies import redis_client
from models import db, GroupMember

LEADERBOARD_TTL_SECONDS = 300


def get_leaderboard_cache_key(group_id):
    """Generates the standard Redis key for a group leaderboard."""
    return f"group_leaderboard:{group_id}"

def get_cached_leaderboard(group_id):
    client = redis_client()
    if not client:
        return None
    try:
        cached = client.get(get_leaderboard_cache_key(group_id))
    except redis.exceptions.RedisError as e:
        logging.warning(f"Leaderboard cache read failed for {group_id}: {e}")
        return None
    return json.loads(cached) if cached else None

def cache_leaderboard(group_id, entries):
    client = redis_client()
    if not client:
        return
    try:
        client.set(get_leaderboard_cache_key(group_id), json.dumps(entries), ex=LEADERBOARD_TTL_SECONDS)
    except redis.exceptions.RedisError as e:
        logging.warning(f"Leaderboard cache write failed for {group_id}: {e}")

def invalidate_leaderboard_cache(group_id):
    """Deletes a group's leaderboard from the Redis cache."""
    client = redis_client()
    if client and group_id:
        client.delete(get_leaderboard_cache_key(group_id))

def invalidate_leaderboards_for_users(user_ids):
    """Drops the leaderboard of every group any of `user_ids` belongs to."""
    if not redis_client() or not user_ids:
        return
    group_ids = {
        row.group_id for row in
        db.session.query(GroupMember.group_id).filter(GroupMember.user_id.in_(list(user_ids))).all()
    }
    for group_id in group_ids:
        invalidate_leaderboard_cache(group_id)
