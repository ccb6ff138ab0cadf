"""Per-session retry ceiling and request-hash result cache over a shared CacheBackend."""
import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel

from talentbrain.cache import CacheBackend
from talentbrain.config import MAX_RETRIES, RESULT_CACHE_TTL, RETRY_STATE_TTL
from talentbrain.errors import RetryExceeded

logger = logging.getLogger(__name__)

RETRY_PREFIX = "retry"
RESULT_PREFIX = "result"

# Allow-list; message text, session IDs and embeddings never enter the hash
HASH_FIELDS = ("mode", "profileId", "roleId", "action")
CONTEXT_HASH_FIELDS = ("companyIds", "scope")


def _sort_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _sort_keys(value[k]) for k in sorted(value)}
    if isinstance(value, list):
        return [_sort_keys(v) for v in value]
    return value


def hash_subset(request: Any) -> Dict[str, Any]:
    """
    The cache-relevant fields of a request.

    Accepts either a parsed request model or the raw camelCase body.
    """
    if isinstance(request, BaseModel):
        raw = request.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        raw = dict(request or {})

    subset: Dict[str, Any] = {k: raw[k] for k in HASH_FIELDS if raw.get(k) is not None}

    context = raw.get("context") or {}
    context_subset = {
        k: sorted(context[k]) if isinstance(context[k], list) else context[k]
        for k in CONTEXT_HASH_FIELDS
        if context.get(k)
    }
    if context_subset:
        subset["context"] = context_subset
    return subset


def is_replayable(request: Any) -> bool:
    """False when only the mode is keyed; such requests differ by message text alone."""
    return any(key != "mode" for key in hash_subset(request))


def request_hash(request: Any) -> str:
    """Deterministic SHA-256 over ``hash_subset(request)``."""
    canonical = json.dumps(_sort_keys(hash_subset(request)), separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class RetryTracker:
    """Bounds how many unsuccessful attempts a session gets before failing fast."""

    def __init__(self, store: CacheBackend, ceiling: int = MAX_RETRIES, ttl: int = RETRY_STATE_TTL):
        self.store = store
        self.ceiling = ceiling
        self.ttl = ttl

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{RETRY_PREFIX}:{session_id}"

    async def attempts(self, session_id: str) -> int:
        value = await self.store.get(self._key(session_id))
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    async def check_and_increment(self, session_id: str) -> int:
        """Raise RetryExceeded once the ceiling is hit; otherwise count this attempt."""
        count = await self.attempts(session_id)

        if count >= self.ceiling:
            await self.store.delete(self._key(session_id))
            logger.warning(f"⚠️  Retry ceiling hit for session {session_id} ({count}/{self.ceiling})")
            raise RetryExceeded(session_id, self.ceiling)

        count += 1
        await self.store.set(self._key(session_id), count, ttl=self.ttl)
        logger.debug("Session %s attempt %d/%d", session_id, count, self.ceiling)
        return count

    async def record_success(self, session_id: str):
        await self.store.delete(self._key(session_id))


class ResultCache:
    """Replays successful responses for identical requests inside a freshness window."""

    def __init__(self, store: CacheBackend, ttl: int = RESULT_CACHE_TTL, clock=time.time):
        self.store = store
        self.ttl = ttl
        self._clock = clock

    @staticmethod
    def _key(digest: str) -> str:
        return f"{RESULT_PREFIX}:{digest}"

    async def lookup(self, digest: str) -> Optional[Dict[str, Any]]:
        entry = await self.store.get(self._key(digest))
        if not isinstance(entry, dict):
            return None

        created_at = entry.get("created_at")
        response = entry.get("response")

        if not isinstance(created_at, (int, float)) or self._clock() - created_at > self.ttl:
            logger.debug(f"Cached result stale: {digest[:16]}")
            await self.store.delete(self._key(digest))
            return None

        if not isinstance(response, dict) or response.get("success") is not True:
            await self.store.delete(self._key(digest))
            return None

        logger.info(f"✅ Result cache HIT: {digest[:16]}")
        return response

    async def save(self, digest: str, response: Dict[str, Any]):
        if response.get("success") is not True:
            return
        entry = {"response": response, "created_at": self._clock()}
        await self.store.set(self._key(digest), entry, ttl=self.ttl)
        logger.debug(f"Result cached: {digest[:16]} (TTL: {self.ttl}s)")
