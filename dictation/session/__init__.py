from dictation.session.config import InjectionMode, SessionSettings
from dictation.session.events import Event, EventBus
from dictation.session.session import RecordingSession, SessionStatus

__all__ = [
    "Event",
    "EventBus",
    "InjectionMode",
    "RecordingSession",
    "SessionSettings",
    "SessionStatus",
]
