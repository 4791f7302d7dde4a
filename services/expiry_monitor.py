from typing import List, Optional
from datetime import timedelta
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.logger import logger
from core.exceptions import MockTestError
from models.base import utcnow
from services.resume_loader import ResumeLoader
from services.session_store import SessionStore
from services.task_manager import task_manager

async def sweep_expired_sessions(session_factory: async_sessionmaker, redis: Optional[Redis] = None) -> List[str]:
    """
    Scheduled every EXPIRY_SWEEP_SECONDS.
    Completes in-progress sessions whose time ran out while nobody had them open.
    Returns the ids of the sessions it finalised.
    """
    logger.debug("Starting expired session sweep...")
    store = SessionStore(session_factory, redis=redis)
    now = utcnow()

    sessions = await store.list_in_progress()
    expired = [
        s for s in sessions
        if s.started_at + timedelta(seconds=s.time_limit_seconds) <= now
        and not task_manager.is_running(s.session_id)
    ]
    if not expired:
        return []

    logger.info(f"Sweep: Found {len(expired)} expired sessions")
    loader = ResumeLoader(store)
    finalised = []
    for session in expired:
        try:
            controller = await loader.resume(session)
        except MockTestError as e:
            logger.error("Sweep: Failed to finalise expired session",
                         session_id=session.session_id, student_id=session.student_id, error=str(e))
            continue
        if controller is not None:
            finalised.append(session.session_id)

    logger.debug("Expired session sweep completed.", finalised=len(finalised))
    return finalised
