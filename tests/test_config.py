import pytest

from fittrack.common.config import TrackerConfig
from fittrack.common.events import EventType, make_event


def test_defaults():
    cfg = TrackerConfig()
    assert cfg.min_person_confidence == 0.6
    assert cfg.min_stable_confidence == 0.7
    assert cfg.stable_frames_required == 3
    assert cfg.auto_save_rep_count == 12
    assert cfg.min_rep_interval_ms == 500.0
    assert (cfg.squat_down_hip_angle, cfg.squat_down_knee_angle) == (100.0, 110.0)
    assert cfg.pushup_debounce_ms == 800.0
    assert cfg.side == "left"


def test_from_env_overrides_and_casts(monkeypatch):
    monkeypatch.setenv("FITTRACK_AUTO_SAVE_REP_COUNT", "8")
    monkeypatch.setenv("FITTRACK_MIN_REP_INTERVAL_MS", "650")
    monkeypatch.setenv("FITTRACK_SIDE", "both")
    cfg = TrackerConfig.from_env()
    assert cfg.auto_save_rep_count == 8
    assert cfg.min_rep_interval_ms == 650.0
    assert cfg.side == "both"


def test_from_env_rejects_unknown_side(monkeypatch):
    monkeypatch.setenv("FITTRACK_SIDE", "middle")
    with pytest.raises(ValueError):
        TrackerConfig.from_env()


def test_make_event():
    assert make_event(EventType.REP, count=3) == {"type": "rep", "count": 3}
