from typing import Optional


class MockTestError(Exception):
    """Base class for mock test engine errors."""
    pass


class NoQuestionsAvailable(MockTestError):
    """The question source could not supply a full question set."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Not enough questions for mock test. Required={requested}, Available={available}")


class InvalidTransition(MockTestError):
    """An operation was called in a state that does not allow it."""

    def __init__(self, operation: str, state: str, detail: str = ""):
        self.operation = operation
        self.state = state
        message = f"Cannot {operation} while session is {state}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ActiveSessionExists(MockTestError):
    """The student already has an in-progress session that should be resumed."""

    def __init__(self, student_id: int, session_id: Optional[str] = None):
        self.student_id = student_id
        self.session_id = session_id
        if session_id:
            message = f"Student {student_id} already has an active session {session_id}"
        else:
            message = f"Another session start is in progress for student {student_id}"
        super().__init__(message)


class SessionNotFound(MockTestError):
    pass


class SessionFenced(MockTestError):
    """Another client resumed the session; this controller's writes are stale."""

    def __init__(self, session_id: str, fence_token: int):
        self.session_id = session_id
        self.fence_token = fence_token
        super().__init__(f"Session {session_id} was taken over by another client (token {fence_token} is stale)")


class CorruptSessionData(MockTestError):
    pass


class PersistenceError(MockTestError):
    """A session store call failed. Safe to retry."""
    pass


class PersistenceWriteFailed(PersistenceError):
    pass
