import asyncio
from typing import Dict, Optional
from core.logger import logger


def running_task() -> Optional[asyncio.Task]:
    """The task executing the caller, or None when called outside a running loop."""
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TaskManager:
    """Process-wide registry of countdown clock tasks, one per session."""
    _instance = None
    _tasks: Dict[str, asyncio.Task] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TaskManager, cls).__new__(cls)
        return cls._instance

    def register_task(self, session_id: str, task: asyncio.Task):
        """Register the clock task for a session, cancelling any existing one."""
        self.cancel_task(session_id)
        self._tasks[session_id] = task
        logger.debug("Registered clock task", session_id=session_id)

        # Remove from dict when done
        task.add_done_callback(lambda t: self._cleanup_task(session_id, t))

    def cancel_task(self, session_id: str):
        """Cancel the clock task for a session if it exists."""
        if session_id in self._tasks:
            task = self._tasks[session_id]
            if not task.done() and task is not running_task():
                task.cancel()
                logger.debug("Cancelled clock task", session_id=session_id)
            del self._tasks[session_id]

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def _cleanup_task(self, session_id: str, task: asyncio.Task):
        """Remove task from dict if it's still the registered one."""
        if session_id in self._tasks and self._tasks[session_id] == task:
            del self._tasks[session_id]

task_manager = TaskManager()
