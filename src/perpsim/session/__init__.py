"""Session management: one running simulation per manager, plus rehydration."""

from perpsim.session.manager import SessionManager
from perpsim.session.recorder import InMemorySessionRecorder, JsonlSessionRecorder, SessionRecorder

__all__ = [
    "InMemorySessionRecorder",
    "JsonlSessionRecorder",
    "SessionManager",
    "SessionRecorder",
]
