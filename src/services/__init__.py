"""Infrastructure services for Lazyfill."""

from services.database import get_sync_session, run_in_scope, session_scope

__all__ = [
    "get_sync_session",
    "run_in_scope",
    "session_scope",
]
