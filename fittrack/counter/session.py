"""
Training session controller.

WAITING -> READY -> ACTIVE <-> PAUSED -> STOPPED

One controller per camera stream. It owns the frame classifier, the presence
tracker, the Rep-Counter State and the per-set frame buffer, and reports
everything through plain dict events; it never talks to a UI or a database.
"""
from __future__ import annotations
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from fittrack.common.config import TrackerConfig
from fittrack.common.events import EventType, make_event
from fittrack.counter.frames import Frame, FrameClassifier
from fittrack.counter.pose_core import RawLandmarks, now_ms
from fittrack.counter.presence import PresenceTracker
from fittrack.counter.reps import FULL, PARTIAL, RepCounterState, build_rep_counter

logger = logging.getLogger(__name__)


class TrainingState(str, Enum):
    WAITING = "WAITING"    # camera on, waiting for a stable person
    READY = "READY"        # stability confirmed, rep detection starting
    ACTIVE = "ACTIVE"      # counting reps
    PAUSED = "PAUSED"      # user pause, frames still classified
    STOPPED = "STOPPED"    # camera off


def coach_tip(avg_quality: float) -> str:
    if avg_quality < 50:
        return "Focus on control. Your movement was too unstable."
    if avg_quality < 80:
        return "Good effort! Try to keep a consistent tempo next time."
    return "Perfect form! Keep it up."


@dataclass(frozen=True)
class SetRecord:
    exercise: str
    reps: int
    tempo: str
    rom: str
    quality: int
    timestamp: str
    auto: bool
    coach_tip: str = ""
    frames: Tuple[Frame, ...] = field(default_factory=tuple)

    def to_dict(self, with_frames: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "exercise": self.exercise,
            "reps": self.reps,
            "tempo": self.tempo,
            "rom": self.rom,
            "quality": self.quality,
            "timestamp": self.timestamp,
            "auto": self.auto,
            "coach_tip": self.coach_tip,
        }
        if with_frames:
            d["frames"] = [f.to_dict() for f in self.frames]
        else:
            d["frame_count"] = len(self.frames)
        return d


class TrainingSession:
    def __init__(
        self,
        exercise: str = "squat",
        cfg: Optional[TrackerConfig] = None,
        rng: Optional[random.Random] = None,
        on_event: Optional[Callable[[dict], None]] = None,
        on_set: Optional[Callable[[SetRecord], None]] = None,
    ):
        self.exercise = exercise
        self.cfg = cfg or TrackerConfig()
        self.rng = rng or random.Random()
        self._on_event = on_event
        self._on_set = on_set

        self.classifier = FrameClassifier(self.cfg)
        self.presence = PresenceTracker(self.cfg)
        self.counter = build_rep_counter(exercise, self.cfg, self.rng)
        self.reps = RepCounterState()
        self.set_frames: Deque[Frame] = deque(maxlen=self.cfg.set_buffer_size)
        self.state = TrainingState.STOPPED
        # debounce reference still to be taken from the frame timeline
        self._anchor_pending = False

    @property
    def rep_count(self) -> int:
        return self.reps.count

    @property
    def replay_frames(self) -> Deque[Frame]:
        return self.classifier.replay_frames

    def _emit(self, kind: EventType, **payload):
        if self._on_event is not None:
            self._on_event(make_event(kind, **payload))

    def _set_state(self, new_state: TrainingState):
        if new_state == self.state:
            return
        prev = self.state
        self.state = new_state
        logger.info("session %s -> %s", prev.value, new_state.value)
        self._emit(EventType.SESSION_STATE, state=new_state.value, previous=prev.value)

    # lifecycle

    def start(self, ts: Optional[float] = None) -> bool:
        """Camera came up: bootstrap into WAITING. From PAUSED this resumes."""
        if self.state == TrainingState.PAUSED:
            return self.resume(ts)
        if self.state != TrainingState.STOPPED:
            return False
        self._bootstrap(ts)
        return True

    def _bootstrap(self, ts: Optional[float] = None):
        """Without a caller timestamp the debounce reference is the frame that
        activates rep detection, so client clocks never mix with ours."""
        self.presence.reset()
        self.reps.reset(float(ts) if ts is not None else None)
        self._anchor_pending = ts is None
        self.set_frames.clear()
        self._set_state(TrainingState.WAITING)
        self._emit(EventType.FEEDBACK, text="Waiting for a person in frame")

    def _start_rep_detection(self) -> bool:
        if not self.presence.keypoints_stable:
            self._emit(EventType.FEEDBACK, text="Waiting for a stable pose")
            return False
        self._set_state(TrainingState.ACTIVE)
        self._emit(EventType.FEEDBACK, text="Tracking active")
        return True

    def pause(self) -> bool:
        if self.state not in (TrainingState.ACTIVE, TrainingState.READY):
            return False
        self._set_state(TrainingState.PAUSED)
        self._emit(EventType.FEEDBACK, text="Training paused")
        return True

    def resume(self, ts: Optional[float] = None) -> bool:
        if self.state != TrainingState.PAUSED:
            return False
        if self.presence.keypoints_stable and self.presence.person_detected:
            self._start_rep_detection()
        else:
            # person gone during pause: re-acquire, keep the rep state
            self.presence.reset()
            self._set_state(TrainingState.WAITING)
            self._emit(EventType.FEEDBACK, text="Waiting for a person in frame")
        return True

    def stop(self, ts: Optional[float] = None) -> Optional[SetRecord]:
        """Tear down; pending reps are flushed before the state flips."""
        if self.state == TrainingState.STOPPED:
            return None
        record = self._flush(auto=False) if self.reps.count > 0 else None
        self.presence.reset()
        self._set_state(TrainingState.STOPPED)
        self._emit(EventType.FEEDBACK, text="Training finished")
        return record

    def save(self) -> Optional[SetRecord]:
        """Manual save. Zero reps is a no-op."""
        record = self._flush(auto=False)
        if self.state == TrainingState.PAUSED:
            self.resume()
        return record

    # per-frame input

    def process_landmarks(self, landmarks: RawLandmarks, ts: Optional[float] = None) -> Optional[Frame]:
        if self.state == TrainingState.STOPPED:
            return None
        t = float(ts) if ts is not None else now_ms()
        frame = self.classifier.classify(landmarks, t)
        if self.state in (TrainingState.ACTIVE, TrainingState.READY):
            self.set_frames.append(frame)

        upd = self.presence.observe(frame)
        if upd.person_found:
            self._emit(EventType.PERSON_FOUND, confidence=frame.confidence)
        if upd.became_stable:
            self._emit(EventType.TRACKING_STABLE)
            if self.state == TrainingState.WAITING:
                self._set_state(TrainingState.READY)
                if self._start_rep_detection() and self._anchor_pending:
                    self.reps.last_rep_ts = t
                    self._anchor_pending = False

        if self.state == TrainingState.ACTIVE and self.presence.keypoints_stable:
            self._count(frame, t)
        return frame

    def process_no_person(self, ts: Optional[float] = None):
        if self.state == TrainingState.STOPPED:
            return
        upd = self.presence.observe_missing()
        if upd.person_lost:
            self._emit(EventType.PERSON_LOST)
        if upd.lost and self.state in (TrainingState.ACTIVE, TrainingState.READY):
            self._set_state(TrainingState.WAITING)
            self._emit(EventType.FEEDBACK, text="Waiting for a person in frame")

    def _count(self, frame: Frame, t: float):
        res = self.counter.step(frame.named(), t, self.reps)
        if res is None:
            return
        kind = res.pop("event")
        if kind == "phase":
            self._emit(EventType.PHASE, **res)
            return
        self._emit(EventType.REP, **res)
        if self.reps.count >= self.cfg.auto_save_rep_count:
            self._flush(auto=True)

    # flushing

    def _flush(self, auto: bool) -> Optional[SetRecord]:
        count = self.reps.count
        if count == 0:
            self._emit(EventType.SAVE_SKIPPED, text="Nothing detected yet - start moving")
            return None

        rom = self.reps.last_rom or (FULL if count > 10 else PARTIAL)
        if self.reps.last_quality > 0:
            quality = min(98, max(60, self.reps.last_quality))
        else:
            quality = min(98, 70 + round(self.rng.random() * 25))

        frames = tuple(self.set_frames)
        if frames:
            avg_quality = round(sum(f.posture_score for f in frames) / len(frames) * 100)
        else:
            avg_quality = quality

        record = SetRecord(
            exercise=self.exercise,
            reps=count,
            tempo=self.reps.last_tempo,
            rom=rom,
            quality=int(quality),
            timestamp=datetime.now(timezone.utc).isoformat(),
            auto=auto,
            coach_tip=coach_tip(avg_quality),
            frames=frames,
        )
        self.reps.count = 0
        self.set_frames.clear()
        logger.info("set saved: %s x%d (auto=%s)", self.exercise, count, auto)
        if self._on_set is not None:
            self._on_set(record)
        self._emit(EventType.SET_SAVED, set=record.to_dict(with_frames=False), auto=auto)
        return record
