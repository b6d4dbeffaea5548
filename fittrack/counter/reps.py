"""
Per-exercise rep counters.

Each counter is a two-phase (up/down) machine driven by joint angles with
hysteresis between the down and up thresholds. Counters hold no state of
their own: everything lives in a RepCounterState owned by the session, and
every call takes the frame timestamp (ms) so debounce windows are plain
comparisons.
"""
from __future__ import annotations
import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Literal, Mapping, Optional, Sequence, Tuple

from fittrack.common.config import TrackerConfig
from fittrack.counter.pose_core import Keypoint, angle_3pt

logger = logging.getLogger(__name__)

Phase = Literal["up", "down"]
ExerciseKind = Literal["squat", "pushup", "generic"]

FULL = "full"
PARTIAL = "partial"


@dataclass
class RepCounterState:
    phase: Phase = "up"
    count: int = 0
    last_angle: Optional[float] = None
    last_rom: Optional[str] = None
    last_quality: int = 0
    last_tempo: str = "controlled"
    last_rep_ts: Optional[float] = None
    # push-up dwell bookkeeping
    last_up_ts: Optional[float] = None
    last_down_ts: Optional[float] = None
    # generic distance integrator
    progress: float = 0.0
    last_vertical: Optional[float] = None

    def reset(self, now: Optional[float] = None):
        """Back to zero reps / phase up. `now` becomes the debounce reference."""
        self.phase = "up"
        self.count = 0
        self.last_angle = None
        self.last_rom = None
        self.last_quality = 0
        self.last_tempo = "controlled"
        self.last_rep_ts = now
        self.last_up_ts = None
        self.last_down_ts = None
        self.progress = 0.0
        self.last_vertical = None


def resolve_exercise(name: str) -> ExerciseKind:
    n = (name or "").strip().lower()
    if "squat" in n or n == "kniebeugen":
        return "squat"
    if "push" in n or n in ("liegestütze", "liegestuetze"):
        return "pushup"
    return "generic"


class RepCounter:
    kind: ExerciseKind = "generic"
    joints: Tuple[str, ...] = ()

    def __init__(self, cfg: Optional[TrackerConfig] = None, rng: Optional[random.Random] = None):
        self.cfg = cfg or TrackerConfig()
        self.rng = rng or random.Random()

    def step(self, keypoints: Mapping[str, Keypoint], t: float, state: RepCounterState) -> Optional[dict]:
        raise NotImplementedError

    # helpers

    def _sides(self, keypoints: Mapping[str, Keypoint]) -> List[Dict[str, Keypoint]]:
        """Complete joint sets for the configured side(s); incomplete sides are dropped."""
        wanted: Sequence[str] = ("left", "right") if self.cfg.side == "both" else (self.cfg.side,)
        out = []
        for side in wanted:
            pts = {j: keypoints.get(f"{side}_{j}") for j in self.joints}
            if all(p is not None for p in pts.values()):
                out.append(pts)
        return out

    def _debounced(self, t: float, state: RepCounterState) -> bool:
        return state.last_rep_ts is None or (t - state.last_rep_ts) >= self.cfg.min_rep_interval_ms

    def _count(self, t: float, state: RepCounterState, quality: Optional[int], feedback: str, **extra) -> dict:
        state.count += 1
        state.last_rep_ts = t
        if quality is not None:
            state.last_quality = quality
        logger.info("%s rep %d (quality=%s rom=%s)", self.kind, state.count, quality, state.last_rom)
        out = {
            "event": "rep",
            "count": state.count,
            "quality": quality,
            "rom": state.last_rom,
            "feedback": feedback,
        }
        out.update(extra)
        return out


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


class SquatRepCounter(RepCounter):
    kind = "squat"
    joints = ("shoulder", "hip", "knee", "ankle")

    def step(self, keypoints, t, state):
        sides = self._sides(keypoints)
        if not sides:
            return None
        hip = _mean([angle_3pt(s["shoulder"].xy, s["hip"].xy, s["knee"].xy) for s in sides])
        knee = _mean([angle_3pt(s["hip"].xy, s["knee"].xy, s["ankle"].xy) for s in sides])
        cfg = self.cfg
        out = None

        if state.phase == "up" and hip < cfg.squat_down_hip_angle and knee < cfg.squat_down_knee_angle:
            state.phase = "down"
            state.last_rom = FULL if hip < cfg.squat_full_rom_hip_angle else PARTIAL
            out = {
                "event": "phase",
                "phase": "down",
                "rom": state.last_rom,
                "hip_angle": hip,
                "knee_angle": knee,
                "feedback": "Going down - go deeper for full range of motion",
            }
        elif state.phase == "down" and hip > cfg.squat_up_hip_angle and knee > cfg.squat_up_knee_angle:
            if self._debounced(t, state):
                state.phase = "up"
                if state.last_rom == FULL:
                    quality = self.rng.randint(90, 99)
                else:
                    quality = self.rng.randint(70, 84)
                out = self._count(t, state, quality, "Clean rep - good form!",
                                  hip_angle=hip, knee_angle=knee)
            else:
                logger.debug("squat rep rejected: %.0f ms since last rep", t - (state.last_rep_ts or 0.0))

        state.last_angle = hip
        return out


class PushupRepCounter(RepCounter):
    kind = "pushup"
    joints = ("shoulder", "elbow", "wrist", "hip")

    def step(self, keypoints, t, state):
        sides = self._sides(keypoints)
        if not sides:
            return None
        elbow = _mean([angle_3pt(s["shoulder"].xy, s["elbow"].xy, s["wrist"].xy) for s in sides])
        cfg = self.cfg
        dwell = cfg.pushup_debounce_ms
        out = None

        if state.phase == "up" and elbow < cfg.pushup_down_elbow_angle:
            # first descent skips the dwell gate
            if state.last_up_ts is None or (t - state.last_up_ts) >= dwell:
                state.phase = "down"
                state.last_down_ts = t
                out = {
                    "event": "phase",
                    "phase": "down",
                    "elbow_angle": elbow,
                    "feedback": "Going down - keep your back straight",
                }
        elif state.phase == "down" and elbow > cfg.pushup_up_elbow_angle:
            held = state.last_down_ts is None or (t - state.last_down_ts) >= dwell
            if held and self._debounced(t, state):
                state.phase = "up"
                state.last_up_ts = t
                out = self._count(t, state, self.rng.randint(85, 99), "Clean rep - well done!",
                                  elbow_angle=elbow)
            else:
                logger.debug("push-up rep rejected (held=%s)", held)

        state.last_angle = elbow
        return out


class GenericRepCounter(RepCounter):
    """Distance integrator over the torso's vertical position."""
    kind = "generic"
    torso = ("left_shoulder", "right_shoulder", "left_hip", "right_hip")

    def step(self, keypoints, t, state):
        ys = [keypoints[name].y for name in self.torso if keypoints.get(name) is not None]
        if not ys:
            return None
        avg_y = _mean(ys)
        prev = state.last_vertical if state.last_vertical is not None else avg_y
        movement = abs(avg_y - prev)
        state.last_vertical = avg_y

        if movement <= self.cfg.generic_min_movement:
            return None
        state.progress = min(1.0, state.progress + movement * self.cfg.generic_progress_scale)
        if state.progress >= 1.0:
            state.progress = 0.0
            return self._count(t, state, None, "Rep counted - keep going!")
        return None


COUNTERS = {
    "squat": SquatRepCounter,
    "pushup": PushupRepCounter,
    "generic": GenericRepCounter,
}


def build_rep_counter(exercise: str, cfg: Optional[TrackerConfig] = None,
                      rng: Optional[random.Random] = None) -> RepCounter:
    return COUNTERS[resolve_exercise(exercise)](cfg, rng)
