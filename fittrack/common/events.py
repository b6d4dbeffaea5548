from __future__ import annotations
from enum import Enum
from typing import Any, Dict


class EventType(str, Enum):
    SESSION_STATE = "session_state"
    PERSON_FOUND = "person_found"
    TRACKING_STABLE = "tracking_stable"
    PERSON_LOST = "person_lost"
    PHASE = "phase"
    REP = "rep"
    SET_SAVED = "set_saved"
    SAVE_SKIPPED = "save_skipped"
    FEEDBACK = "feedback"
    TRACE = "trace"


def make_event(kind: EventType, **payload: Any) -> Dict[str, Any]:
    """Plain dict event, ready for json.dumps."""
    ev: Dict[str, Any] = {"type": kind.value}
    ev.update(payload)
    return ev
