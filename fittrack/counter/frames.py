from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from fittrack.common.config import TrackerConfig
from fittrack.counter.pose_core import (
    COCO_INDEX,
    COCO_KEYPOINTS,
    Keypoint,
    RawLandmarks,
    normalize_landmarks,
    now_ms,
)

logger = logging.getLogger(__name__)

STABLE = "stable"
SHAKY = "shaky"


@dataclass(frozen=True)
class Frame:
    """One classified snapshot of tracking. Never mutated after creation."""
    timestamp: float
    keypoints: Tuple[Optional[Keypoint], ...]
    confidence: float
    stability: str
    posture_score: float
    keypoints_tracked: int

    @property
    def is_stable(self) -> bool:
        return self.stability == STABLE

    def named(self) -> Dict[str, Keypoint]:
        return {
            COCO_KEYPOINTS[i]: kp for i, kp in enumerate(self.keypoints) if kp is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "keypoints_tracked": self.keypoints_tracked,
            "confidence": self.confidence,
            "stability": self.stability,
            "posture_score": self.posture_score,
            "keypoints": [kp.to_dict(i) if kp else None for i, kp in enumerate(self.keypoints)],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Frame":
        kps: List[Optional[Keypoint]] = [None] * len(COCO_KEYPOINTS)
        for i, kp in enumerate(data.get("keypoints") or []):
            if kp is None or i >= len(kps):
                continue
            kps[i] = Keypoint(float(kp["x"]), float(kp["y"]), float(kp.get("confidence", 0.0)))
        return cls(
            timestamp=float(data["timestamp"]),
            keypoints=tuple(kps),
            confidence=float(data.get("confidence", 0.0)),
            stability=str(data.get("stability", SHAKY)),
            posture_score=float(data.get("posture_score", 0.0)),
            keypoints_tracked=int(data.get("keypoints_tracked", 0)),
        )


def symmetry_penalty(keypoints: Sequence[Optional[Keypoint]], min_visibility: float = 0.5) -> float:
    """Quality multiplier in [0.3, 1.0] from shoulder/hip tilt.

    Missing or low-visibility landmarks give 1.0; only observed asymmetry
    may lower the score.
    """
    ls = keypoints[COCO_INDEX["left_shoulder"]]
    rs = keypoints[COCO_INDEX["right_shoulder"]]
    lh = keypoints[COCO_INDEX["left_hip"]]
    rh = keypoints[COCO_INDEX["right_hip"]]
    if ls is None or rs is None or lh is None or rh is None:
        return 1.0
    if min(ls.visibility, rs.visibility, lh.visibility, rh.visibility) < min_visibility:
        return 1.0

    torso = abs((lh.y + rh.y) / 2 - (ls.y + rs.y) / 2)
    if torso < 0.01:
        return 1.0

    shoulder_tilt = abs(ls.y - rs.y) / torso * 100.0
    hip_tilt = abs(lh.y - rh.y) / torso * 100.0
    tilt = max(shoulder_tilt, hip_tilt)

    if tilt > 10:
        quality = max(0.3, 0.5 - (tilt - 10) * 0.02)
    elif tilt > 5:
        # 1.0 at 5% down to 0.5 at 10%
        quality = 1.0 - (tilt - 5) * 0.1
    else:
        quality = 1.0
    return float(min(1.0, max(0.0, quality)))


class FrameClassifier:
    """Turns raw detector output into Frames and keeps the rolling replay buffer."""

    def __init__(self, cfg: Optional[TrackerConfig] = None):
        self.cfg = cfg or TrackerConfig()
        self.replay_frames: Deque[Frame] = deque(maxlen=self.cfg.replay_buffer_size)

    def classify(self, landmarks: RawLandmarks, ts: Optional[float] = None) -> Frame:
        t = float(ts) if ts is not None else now_ms()
        keypoints, visibilities = normalize_landmarks(landmarks)

        vis = np.asarray(visibilities, dtype=float)
        # missing points count as 0 in the mean on purpose
        confidence = float(vis.mean()) if vis.size else 0.0
        tracked = int(np.count_nonzero(vis > self.cfg.min_keypoint_visibility))
        stable = confidence > self.cfg.min_stable_confidence
        posture = confidence * symmetry_penalty(keypoints, self.cfg.symmetry_min_visibility)

        frame = Frame(
            timestamp=t,
            keypoints=keypoints,
            confidence=confidence,
            stability=STABLE if stable else SHAKY,
            posture_score=float(min(1.0, max(0.0, posture))),
            keypoints_tracked=tracked,
        )
        self.replay_frames.append(frame)
        return frame

    def recent(self, n: int = 20) -> List[Frame]:
        return list(self.replay_frames)[-n:]
