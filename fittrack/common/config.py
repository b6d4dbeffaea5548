from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from typing import Literal

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

Side = Literal["left", "right", "both"]

# Presence / frame classification
MIN_PERSON_CONFIDENCE = 0.6
MIN_STABLE_CONFIDENCE = 0.7
MIN_KEYPOINT_VISIBILITY = 0.3
STABLE_FRAMES_REQUIRED = 3
LOST_FRAMES_THRESHOLD = 3

# Buffers (frames)
REPLAY_BUFFER_SIZE = 120
SET_BUFFER_SIZE = 200

# Rep counting
AUTO_SAVE_REP_COUNT = 12
MIN_REP_INTERVAL_MS = 500.0

# Squat angles (deg)
SQUAT_DOWN_HIP_ANGLE = 100.0
SQUAT_DOWN_KNEE_ANGLE = 110.0
SQUAT_UP_HIP_ANGLE = 150.0
SQUAT_UP_KNEE_ANGLE = 150.0
SQUAT_FULL_ROM_HIP_ANGLE = 90.0

# Push-up angles (deg)
PUSHUP_DOWN_ELBOW_ANGLE = 90.0
PUSHUP_UP_ELBOW_ANGLE = 160.0
PUSHUP_DEBOUNCE_MS = 800.0


@dataclass(frozen=True)
class TrackerConfig:
    # presence
    min_person_confidence: float = MIN_PERSON_CONFIDENCE
    min_stable_confidence: float = MIN_STABLE_CONFIDENCE
    min_keypoint_visibility: float = MIN_KEYPOINT_VISIBILITY
    stable_frames_required: int = STABLE_FRAMES_REQUIRED
    lost_frames_threshold: int = LOST_FRAMES_THRESHOLD
    # buffers
    replay_buffer_size: int = REPLAY_BUFFER_SIZE
    set_buffer_size: int = SET_BUFFER_SIZE
    # symmetry penalty ignores landmarks below this visibility
    symmetry_min_visibility: float = 0.5
    # reps
    auto_save_rep_count: int = AUTO_SAVE_REP_COUNT
    min_rep_interval_ms: float = MIN_REP_INTERVAL_MS
    squat_down_hip_angle: float = SQUAT_DOWN_HIP_ANGLE
    squat_down_knee_angle: float = SQUAT_DOWN_KNEE_ANGLE
    squat_up_hip_angle: float = SQUAT_UP_HIP_ANGLE
    squat_up_knee_angle: float = SQUAT_UP_KNEE_ANGLE
    squat_full_rom_hip_angle: float = SQUAT_FULL_ROM_HIP_ANGLE
    pushup_down_elbow_angle: float = PUSHUP_DOWN_ELBOW_ANGLE
    pushup_up_elbow_angle: float = PUSHUP_UP_ELBOW_ANGLE
    pushup_debounce_ms: float = PUSHUP_DEBOUNCE_MS
    # generic fallback: ignore vertical jitter below this (normalized units)
    generic_min_movement: float = 0.05
    generic_progress_scale: float = 2.0
    side: Side = "left"

    @classmethod
    def from_env(cls, prefix: str = "FITTRACK_") -> "TrackerConfig":
        """Defaults overridden by FITTRACK_<FIELD> environment variables."""
        base = cls()
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is None or raw == "":
                continue
            current = getattr(base, f.name)
            if isinstance(current, bool):
                overrides[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                overrides[f.name] = int(raw)
            elif isinstance(current, float):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw.strip()
        if overrides.get("side", base.side) not in ("left", "right", "both"):
            raise ValueError(f"invalid side {overrides['side']!r}")
        return replace(base, **overrides)


# Server / runtime settings
DB_PATH = os.getenv("FITTRACK_DB", "./fittrack.db")
TRAINER_MODE = os.getenv("FITTRACK_TRAINER_MODE", "1").strip().lower() in ("1", "true", "yes", "on")
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "FITTRACK_ALLOWED_ORIGINS",
        "http://localhost:8000,http://localhost:3000,http://127.0.0.1:8000",
    ).split(",")
    if o.strip()
]
PLAN_RATE_LIMIT_WINDOW_S = 60.0
PLAN_RATE_LIMIT_MAX_REQUESTS = 20
