import pytest

from fittrack.counter.pose_core import (
    COCO_INDEX,
    COCO_KEYPOINTS,
    Keypoint,
    angle_3pt,
    normalize_landmarks,
    to_keypoint,
)

from conftest import pose


def test_angle_right_angle():
    assert angle_3pt((0, 1), (0, 0), (1, 0)) == pytest.approx(90.0)


def test_angle_straight_line():
    assert angle_3pt((-1, 0), (0, 0), (1, 0)) == pytest.approx(180.0)


def test_angle_is_folded_and_order_independent():
    a, b, c = (0.3, 0.1), (0.5, 0.5), (0.9, 0.45)
    assert angle_3pt(a, b, c) == pytest.approx(angle_3pt(c, b, a))
    assert 0.0 <= angle_3pt(a, b, c) <= 180.0


def test_angle_ignores_z():
    assert angle_3pt((0, 1, 5), (0, 0, -3), (1, 0, 2)) == pytest.approx(90.0)


def test_angle_bad_input_does_not_raise():
    assert angle_3pt(None, (0, 0), (1, 0)) == 0.0


def test_to_keypoint_variants():
    assert to_keypoint(None) is None
    assert to_keypoint({"x": 0.1}) is None
    kp = to_keypoint({"x": 0.1, "y": 0.2, "score": 0.7})
    assert kp == Keypoint(0.1, 0.2, 0.7)

    class Landmark:
        x, y, z, visibility = 0.3, 0.4, -0.1, 0.8

    kp = to_keypoint(Landmark())
    assert kp.xy == (0.3, 0.4)
    assert kp.visibility == pytest.approx(0.8)


def test_normalize_mediapipe_list_maps_to_coco():
    lm = pose()
    lm[0] = {"x": 0.11, "y": 0.22, "visibility": 0.5}
    coco, vis = normalize_landmarks(lm)
    assert len(coco) == len(COCO_KEYPOINTS) == 17
    assert len(vis) == 33
    assert coco[COCO_INDEX["nose"]].xy == (0.11, 0.22)
    assert coco[COCO_INDEX["left_hip"]].xy == (lm[23]["x"], lm[23]["y"])
    assert coco[COCO_INDEX["right_ankle"]].xy == (lm[28]["x"], lm[28]["y"])


def test_normalize_missing_points_count_as_zero():
    lm = pose(vis=1.0)
    lm[5] = None
    coco, vis = normalize_landmarks(lm)
    assert vis[5] == 0.0
    assert sum(vis) == pytest.approx(32.0)
    assert coco[COCO_INDEX["right_eye"]] is None


def test_normalize_coco_list_and_mapping():
    pts = [{"x": i / 20, "y": 0.5, "visibility": 0.9} for i in range(17)]
    coco, vis = normalize_landmarks(pts)
    assert coco[3].x == pytest.approx(3 / 20)
    assert len(vis) == 17

    coco, vis = normalize_landmarks({"left_knee": {"x": 0.4, "y": 0.7, "visibility": 0.6}})
    assert coco[COCO_INDEX["left_knee"]].y == 0.7
    assert sum(1 for kp in coco if kp is not None) == 1
    assert len(vis) == 17
