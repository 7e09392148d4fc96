"""Redis client for session lookup"""
import json
import logging
from typing import Optional, Dict

import redis

from lemons.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None

# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def set_session(session_id: str, account_id: str, email: Optional[str] = None) -> None:
    """Store the identity behind a session cookie"""
    payload = json.dumps({"account_id": account_id, "email": email})
    get_redis_client().setex(f"session:{session_id}", SESSION_TTL, payload)


def get_session(session_id: str) -> Optional[Dict]:
    """Resolve a session cookie to ``{"account_id", "email"}`` or None"""
    raw = get_redis_client().get(f"session:{session_id}")
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding malformed session payload for {session_id[:16]}...")
        return None
    if not isinstance(data, dict) or not data.get("account_id"):
        return None
    return data
