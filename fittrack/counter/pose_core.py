from __future__ import annotations
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

# Utility math

def angle_3pt(a: Sequence[float], b: Sequence[float], c: Sequence[float]) -> float:
    """Return angle ABC in degrees with B as vertex, folded into [0, 180].

    Only x/y are used; a z component is ignored. Degenerate input (zero-length
    rays) yields 0 or 180 instead of raising.
    """
    try:
        ang = math.degrees(
            math.atan2(c[1] - b[1], c[0] - b[0]) - math.atan2(a[1] - b[1], a[0] - b[0])
        )
    except (TypeError, IndexError):
        return 0.0
    ang = abs(ang)
    if ang > 180:
        ang = 360 - ang
    return ang


def now_ms() -> float:
    return time.time() * 1000.0


# 17-point COCO topology used for storage/replay
COCO_KEYPOINTS: Tuple[str, ...] = (
    "nose",            # 0
    "left_eye",        # 1
    "right_eye",       # 2
    "left_ear",        # 3
    "right_ear",       # 4
    "left_shoulder",   # 5
    "right_shoulder",  # 6
    "left_elbow",      # 7
    "right_elbow",     # 8
    "left_wrist",      # 9
    "right_wrist",     # 10
    "left_hip",        # 11
    "right_hip",       # 12
    "left_knee",       # 13
    "right_knee",      # 14
    "left_ankle",      # 15
    "right_ankle",     # 16
)
COCO_INDEX: Dict[str, int] = {name: i for i, name in enumerate(COCO_KEYPOINTS)}

SKELETON_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, 1), (0, 2), (1, 3), (2, 4),
    (5, 6), (5, 7), (7, 9), (6, 8), (8, 10),
    (5, 11), (6, 12), (11, 12),
    (11, 13), (13, 15), (12, 14), (14, 16),
)

MEDIAPIPE_LANDMARK_COUNT = 33

# MediaPipe Pose index -> COCO index
MEDIAPIPE_TO_COCO: Dict[int, int] = {
    0: 0,    # nose
    2: 1,    # left_eye
    5: 2,    # right_eye
    7: 3,    # left_ear
    8: 4,    # right_ear
    11: 5,   # left_shoulder
    12: 6,   # right_shoulder
    13: 7,   # left_elbow
    14: 8,   # right_elbow
    15: 9,   # left_wrist
    16: 10,  # right_wrist
    23: 11,  # left_hip
    24: 12,  # right_hip
    25: 13,  # left_knee
    26: 14,  # right_knee
    27: 15,  # left_ankle
    28: 16,  # right_ankle
}


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    visibility: float = 0.0
    z: float = 0.0

    @property
    def xy(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def to_dict(self, index: int) -> Dict[str, Any]:
        return {
            "id": index,
            "name": COCO_KEYPOINTS[index],
            "x": self.x,
            "y": self.y,
            "confidence": self.visibility,
        }


RawLandmark = Union[Mapping[str, Any], Any, None]
RawLandmarks = Union[Sequence[RawLandmark], Mapping[str, RawLandmark]]


def to_keypoint(raw: RawLandmark) -> Optional[Keypoint]:
    """Accepts a dict ({"x","y","visibility"}), an object with those attributes
    (MediaPipe NormalizedLandmark) or None."""
    if raw is None:
        return None
    if isinstance(raw, Keypoint):
        return raw
    if isinstance(raw, Mapping):
        x, y = raw.get("x"), raw.get("y")
        vis = raw.get("visibility", raw.get("confidence", raw.get("score")))
        z = raw.get("z", 0.0)
    else:
        x, y = getattr(raw, "x", None), getattr(raw, "y", None)
        vis = getattr(raw, "visibility", None)
        z = getattr(raw, "z", 0.0)
    if x is None or y is None:
        return None
    try:
        return Keypoint(float(x), float(y), float(vis or 0.0), float(z or 0.0))
    except (TypeError, ValueError):
        return None


def normalize_landmarks(raw: RawLandmarks) -> Tuple[Tuple[Optional[Keypoint], ...], List[float]]:
    """Map detector output onto the 17-point COCO topology.

    Returns (keypoints, visibilities) where visibilities covers the detector's
    native list (missing points as 0.0) and feeds the aggregate confidence.
    """
    coco: List[Optional[Keypoint]] = [None] * len(COCO_KEYPOINTS)

    if isinstance(raw, Mapping):
        visibilities = []
        for name in COCO_KEYPOINTS:
            kp = to_keypoint(raw.get(name))
            coco[COCO_INDEX[name]] = kp
            visibilities.append(kp.visibility if kp else 0.0)
        return tuple(coco), visibilities

    points = [to_keypoint(r) for r in raw]
    visibilities = [kp.visibility if kp else 0.0 for kp in points]
    if len(points) >= MEDIAPIPE_LANDMARK_COUNT:
        for mp_idx, coco_idx in MEDIAPIPE_TO_COCO.items():
            coco[coco_idx] = points[mp_idx]
    else:
        for i, kp in enumerate(points[: len(COCO_KEYPOINTS)]):
            coco[i] = kp
    return tuple(coco), visibilities
