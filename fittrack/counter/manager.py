from __future__ import annotations
import logging
import random
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from fittrack.audio.tts import TTSEngine
from fittrack.common.config import TrackerConfig
from fittrack.common.events import EventType, make_event
from fittrack.counter.pose_core import RawLandmarks
from fittrack.counter.session import SetRecord, TrainingSession, TrainingState
from fittrack.data import db

logger = logging.getLogger(__name__)

_SPOKEN_STATES = {
    TrainingState.ACTIVE.value: "tracking",
    TrainingState.PAUSED.value: "paused",
    TrainingState.STOPPED.value: "stopping counter",
}


@dataclass
class SessionStatus:
    session_id: str
    state: str
    count: int
    exercise: Optional[str] = None
    person_detected: bool = False
    keypoints_stable: bool = False


class TrainingSessionManager:
    """Owns the single training session of a camera stream.

    Persists flushed sets, speaks rep counts in trainer mode and fans events
    out to an optional sink (the WebSocket broadcaster in server mode).
    """

    def __init__(self, trainer_mode: bool = True, cfg: Optional[TrackerConfig] = None,
                 rng: Optional[random.Random] = None, persist: bool = True):
        self.trainer_mode = trainer_mode
        self.cfg = cfg or TrackerConfig.from_env()
        self.rng = rng
        self.persist = persist
        self.tts: Optional[TTSEngine] = TTSEngine() if trainer_mode else None
        self.active_id: Optional[str] = None
        self.session: Optional[TrainingSession] = None
        self.web_mode: bool = False  # browser is feeding landmarks?
        self.saved_sets: List[SetRecord] = []
        self._event_sink: Optional[Callable[[dict], None]] = None

    def set_event_sink(self, sink: Optional[Callable[[dict], None]]):
        self._event_sink = sink

    def set_web_mode(self, active: bool):
        self.web_mode = bool(active)

    @property
    def count(self) -> int:
        return self.session.rep_count if self.session else 0

    # callbacks from the controller

    def _forward(self, ev: dict):
        if self._event_sink is None:
            return
        try:
            self._event_sink(ev)
        except Exception:
            logger.exception("event sink failed for %s", ev.get("type"))

    def _on_event(self, ev: dict):
        if self.tts is not None:
            if ev["type"] == EventType.REP.value:
                self.tts.announce_rep(ev["count"])
            elif ev["type"] == EventType.SESSION_STATE.value and ev["state"] in _SPOKEN_STATES:
                self.tts.say(_SPOKEN_STATES[ev["state"]])
        self._forward(ev)

    def _on_set(self, record: SetRecord):
        self.saved_sets.append(record)
        if self.persist:
            set_id = db.insert_set(self.active_id, record.to_dict())
            logger.info("set %d persisted for session %s", set_id, self.active_id)
        if self.tts is not None:
            self.tts.say(f"set saved, {record.reps} reps")

    def _emit_trace(self, msg: str):
        self._forward(make_event(EventType.TRACE, msg=msg))

    # commands

    def start(self, exercise: str, target_reps: Optional[int] = None,
              ts: Optional[float] = None) -> Tuple[str, str]:
        cur = self.session
        if cur is not None and cur.state == TrainingState.PAUSED and cur.exercise == exercise:
            cur.resume(ts)
            return self.active_id or "", f"resumed {exercise}"

        # stop existing session if any
        if cur is not None and cur.state != TrainingState.STOPPED:
            self.stop(ts=ts)

        sid = str(uuid.uuid4())
        self.active_id = sid
        self.session = TrainingSession(
            exercise=exercise,
            cfg=self.cfg,
            rng=self.rng,
            on_event=self._on_event,
            on_set=self._on_set,
        )
        if self.persist:
            db.insert_session(sid, exercise, time.time(), target_reps)
        self.session.start(ts)
        self._emit_trace(f"session started: {exercise} ({self.session.counter.kind} counter)")
        return sid, f"started {exercise}"

    def push_landmarks(self, landmarks: RawLandmarks, ts: Optional[float] = None):
        if self.session is not None:
            self.session.process_landmarks(landmarks, ts)

    def push_no_person(self, ts: Optional[float] = None):
        if self.session is not None:
            self.session.process_no_person(ts)

    def pause(self) -> bool:
        return self.session.pause() if self.session else False

    def resume(self, ts: Optional[float] = None) -> bool:
        return self.session.resume(ts) if self.session else False

    def save(self) -> Optional[SetRecord]:
        return self.session.save() if self.session else None

    def stop(self, ts: Optional[float] = None) -> Optional[SetRecord]:
        if self.session is None or self.session.state == TrainingState.STOPPED:
            return None
        record = self.session.stop(ts)
        if self.persist and self.active_id:
            db.stop_session(self.active_id, time.time())
        self._emit_trace(f"session stopped: {self.active_id}")
        return record

    def status(self) -> SessionStatus:
        s = self.session
        if s is None:
            return SessionStatus(session_id="", state=TrainingState.STOPPED.value, count=0)
        return SessionStatus(
            session_id=self.active_id or "",
            state=s.state.value,
            count=s.rep_count,
            exercise=s.exercise,
            person_detected=s.presence.person_detected,
            keypoints_stable=s.presence.keypoints_stable,
        )

    def shutdown(self):
        self.stop()
        if self.tts is not None:
            self.tts.shutdown()

