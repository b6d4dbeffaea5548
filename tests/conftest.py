import math
import os
import random

# before any fittrack import: no speech in tests
os.environ["FITTRACK_TRAINER_MODE"] = "0"

import pytest

from fittrack.common.config import TrackerConfig
from fittrack.data import db

# MediaPipe indices used by the builders
NOSE, L_SHOULDER, R_SHOULDER = 0, 11, 12
L_ELBOW, R_ELBOW, L_WRIST, R_WRIST = 13, 14, 15, 16
L_HIP, R_HIP, L_KNEE, R_KNEE, L_ANKLE, R_ANKLE = 23, 24, 25, 26, 27, 28


def _ray(origin, direction_deg, length):
    r = math.radians(direction_deg)
    return (origin[0] + length * math.cos(r), origin[1] + length * math.sin(r))


def side_points(hip=170.0, knee=170.0, elbow=170.0, x0=0.45):
    """Shoulder/elbow/wrist/hip/knee/ankle of one side realizing the given joint angles."""
    hip_pt = (x0, 0.6)
    knee_pt = (x0, 0.8)                      # hip -> knee points straight down (90 deg)
    shoulder = _ray(hip_pt, 90.0 - hip, 0.25)
    ankle = _ray(knee_pt, -90.0 + knee, 0.2)  # knee -> hip points up (-90 deg)
    elbow_pt = _ray(shoulder, 90.0, 0.15)
    wrist = _ray(elbow_pt, -90.0 + elbow, 0.15)
    return {
        "shoulder": shoulder, "elbow": elbow_pt, "wrist": wrist,
        "hip": hip_pt, "knee": knee_pt, "ankle": ankle,
    }


def pose(hip=170.0, knee=170.0, elbow=170.0, vis=0.9):
    """33-entry MediaPipe landmark list; both sides share the same y so there is no tilt."""
    lm = [{"x": 0.5, "y": 0.2, "z": 0.0, "visibility": vis} for _ in range(33)]
    left = side_points(hip, knee, elbow, x0=0.45)
    right = side_points(hip, knee, elbow, x0=0.55)
    idx = {
        "shoulder": (L_SHOULDER, R_SHOULDER), "elbow": (L_ELBOW, R_ELBOW),
        "wrist": (L_WRIST, R_WRIST), "hip": (L_HIP, R_HIP),
        "knee": (L_KNEE, R_KNEE), "ankle": (L_ANKLE, R_ANKLE),
    }
    for joint, (li, ri) in idx.items():
        lm[li] = {"x": left[joint][0], "y": left[joint][1], "z": 0.0, "visibility": vis}
        lm[ri] = {"x": right[joint][0], "y": right[joint][1], "z": 0.0, "visibility": vis}
    return lm


class FakeLLM:
    """Chat model stand-in: returns a canned reply or raises."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.tools = None
        self.calls = []

    def bind_tools(self, tools):
        self.tools = tools
        return self

    def invoke(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture(autouse=True)
def tmp_db(tmp_path):
    db.set_db_path(tmp_path / "fittrack-test.db")
    yield db
    db.set_db_path(tmp_path / "closed.db")


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def cfg():
    return TrackerConfig()


@pytest.fixture
def events():
    return []
