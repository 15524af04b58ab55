import logging
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from database import ACTIVITY, Database, session_kwargs, utcnow
from schemas import Activity

logger = logging.getLogger(__name__)


def actor_of(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return "system"
    return user.get("email") or str(user.get("_id", "system"))


def record_activity(
    db: Database,
    type: str,
    user: Optional[Dict[str, Any]],
    details: str,
    priority: int = 0,
    meta: Optional[Dict[str, Any]] = None,
    session=None,
) -> None:
    """Append to the dashboard feed. The feed is not authoritative, so a
    failed write is logged and never fails the request."""
    entry = Activity(
        type=type,
        user=actor_of(user),
        timestamp=utcnow(),
        details=details,
        priority=priority,
        meta=meta,
    )
    try:
        db[ACTIVITY].insert_one(entry.model_dump(), **session_kwargs(session))
    except PyMongoError as e:
        logger.warning("Failed to record %s activity: %s", type, e)
