import logging
import threading
import time

import redis

from claim_workflow import WorkflowState

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


def get_workflow_cache_key(workflow_id):
    """Generates the standard Redis key for a claim workflow."""
    return f"claim_workflow:{workflow_id}"


def get_reservation_key(area_id):
    return f"claim_reservation:{area_id}"


class WorkflowStore:
    """
    Parks transient claim-workflow state between requests. Uses Redis when a
    client is available and falls back to process memory otherwise, which is
    only suitable for a single worker.
    """

    def __init__(self, redis_client=None, ttl_seconds=DEFAULT_TTL_SECONDS):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self._local = {}
        self._lock = threading.Lock()

    def save(self, state: WorkflowState):
        payload = state.model_dump_json()
        key = get_workflow_cache_key(state.workflow_id)
        if self.redis_client:
            try:
                self.redis_client.set(key, payload, ex=self.ttl_seconds)
                return
            except redis.exceptions.RedisError as e:
                logger.error(f"Failed to store workflow {state.workflow_id} in Redis: {e}")
                raise
        with self._lock:
            self._local[key] = (payload, time.monotonic() + self.ttl_seconds)

    def load(self, workflow_id):
        key = get_workflow_cache_key(workflow_id)
        if self.redis_client:
            payload = self.redis_client.get(key)
        else:
            with self._lock:
                entry = self._local.get(key)
                if entry and entry[1] < time.monotonic():
                    del self._local[key]
                    entry = None
            payload = entry[0] if entry else None
        if not payload:
            return None
        return WorkflowState.model_validate_json(payload)

    def delete(self, workflow_id):
        key = get_workflow_cache_key(workflow_id)
        if self.redis_client:
            self.redis_client.delete(key)
        else:
            with self._lock:
                self._local.pop(key, None)

    # --- Area reservations ---
    def reserve_area(self, area_id, workflow_id) -> bool:
        """
        Marks `area_id` as being claimed by `workflow_id`. Returns False when
        another live workflow already holds it. Reservations expire with the
        workflow TTL so an abandoned claim frees the area on its own.
        """
        key = get_reservation_key(area_id)
        if self.redis_client:
            try:
                return bool(self.redis_client.set(key, workflow_id, nx=True, ex=self.ttl_seconds))
            except redis.exceptions.RedisError as e:
                logger.error(f"Failed to reserve area {area_id} in Redis: {e}")
                raise
        now = time.monotonic()
        with self._lock:
            entry = self._local.get(key)
            if entry and entry[1] >= now:
                return False
            self._local[key] = (workflow_id, now + self.ttl_seconds)
            return True

    def reservation_holder(self, area_id):
        key = get_reservation_key(area_id)
        if self.redis_client:
            return self.redis_client.get(key)
        with self._lock:
            entry = self._local.get(key)
            if entry and entry[1] < time.monotonic():
                del self._local[key]
                entry = None
        return entry[0] if entry else None

    def release_area(self, area_id, workflow_id):
        """Drops the reservation if `workflow_id` still holds it."""
        key = get_reservation_key(area_id)
        if self.redis_client:
            if self.redis_client.get(key) == workflow_id:
                self.redis_client.delete(key)
            return
        with self._lock:
            entry = self._local.get(key)
            if entry and entry[0] == workflow_id:
                del self._local[key]

    def health_check(self):
        if not self.redis_client:
            return {"status": "OK", "details": "Workflow state kept in process memory (Redis not configured)."}
        try:
            self.redis_client.ping()
            return {"status": "OK", "details": "Ping successful."}
        except Exception as e:
            return {"status": "ERROR", "details": f"Failed to ping Redis server: {str(e)}"}
