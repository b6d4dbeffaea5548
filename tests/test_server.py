import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from fittrack.counter.manager import TrainingSessionManager
from fittrack.data import db
from fittrack.runtime import server

from conftest import pose

PLAN_BODY = dict(age=28, gender="male", height=180, weight=80, level="beginner",
                 goal="fatloss", frequency=3, equipment="bodyweight")


@pytest.fixture
def client(monkeypatch, rng):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    m = TrainingSessionManager(trainer_mode=False, rng=rng)
    m.set_event_sink(server._sink)
    monkeypatch.setattr(server, "MANAGER", m)
    monkeypatch.setattr(server, "PLAN_LIMITER", server.RateLimiter(3, 60.0))
    return TestClient(server.app)


def _record(reps=4):
    return {"exercise": "squat", "reps": reps, "tempo": "controlled", "rom": "full",
            "quality": 90, "auto": False, "coach_tip": "", "frames": [
                {"timestamp": 0.0}, {"timestamp": 200.0}, {"timestamp": 400.0}]}


def test_training_lifecycle(client):
    r = client.post("/training/start", json={"exercise": "squat"})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "WAITING" and body["session_id"]

    assert client.post("/training/pause").json()["ok"] is False
    assert client.get("/sessions/current").json()["exercise"] == "squat"

    saved = client.post("/training/save").json()
    assert saved["saved"] is False

    stopped = client.post("/training/stop").json()
    assert stopped["stopped"] and stopped["set"] is None
    assert client.get("/sessions/current").json()["state"] == "STOPPED"


def test_start_validates_body(client):
    assert client.post("/training/start", json={"exercise": ""}).status_code == 422


def test_websocket_counts_reps_and_pushes_events(client):
    client.post("/training/start", json={"exercise": "squat"})
    base = time.time() * 1000.0 + 1000.0
    with client.websocket_connect("/ws/landmarks") as ws:
        assert ws.receive_json()["msg"] == "ws: client connected"
        for i in range(3):
            ws.send_json({"type": "landmarks", "landmarks": pose(170, 170), "ts": base + i * 100})
        ws.send_text("not json")
        ws.send_json({"type": "landmarks", "landmarks": pose(85, 95), "ts": base + 400})
        ws.send_json({"type": "landmarks", "landmarks": pose(160, 155), "ts": base + 1000})
        seen = []
        for _ in range(50):
            ev = ws.receive_json()
            seen.append(ev["type"])
            if ev["type"] == "rep":
                break
        assert "tracking_stable" in seen
        assert seen[-1] == "rep"
        assert ev["count"] == 1
    assert server.ACTIVE_MANAGER().count == 1


def test_set_history_endpoints(client):
    sid = db.insert_set("s1", _record())
    listed = client.get("/sets").json()["sets"]
    assert listed[0]["id"] == sid and listed[0]["frame_count"] == 3

    assert client.get(f"/sets/{sid}").json()["frames"][1]["timestamp"] == 200.0
    replay = client.get(f"/sets/{sid}/replay", params={"rate": 2}).json()
    assert replay["frame_duration_ms"] == 100.0
    assert replay["duration_ms"] == 200.0

    assert client.delete(f"/sets/{sid}").json()["deleted"]
    assert client.get(f"/sets/{sid}").status_code == 404
    assert client.delete(f"/sets/{sid}").status_code == 404
    assert client.get(f"/sets/{sid}/replay").status_code == 404


def test_export_import(client):
    db.insert_set("s1", _record(6))
    doc = client.get("/export").json()
    assert doc["version"] == 1 and len(doc["sets"]) == 1
    assert client.post("/import", json=doc).json() == {"imported": 1}
    assert len(client.get("/sets").json()["sets"]) == 2
    assert client.post("/import", json={"sets": "x"}).status_code == 422


def test_training_plan_falls_back_without_key(client):
    r = client.post("/api/training-plan", json=PLAN_BODY)
    assert r.status_code == 200
    body = r.json()
    assert body["fallback"] is True
    assert [d["focus"] for d in body["plan"]["days"]] == ["Full body", "HIIT/Metcon", "Full body"]
    health = client.get("/api/training-plan/health").json()
    assert health["ai_configured"] is False


def test_training_plan_validation_and_rate_limit(client):
    bad = dict(PLAN_BODY, frequency=0)
    assert client.post("/api/training-plan", json=bad).status_code == 422
    for _ in range(3):
        assert client.post("/api/training-plan", json=PLAN_BODY).status_code == 200
    r = client.post("/api/training-plan", json=PLAN_BODY)
    assert r.status_code == 429


def test_rate_limiter_window():
    rl = server.RateLimiter(2, 60.0)
    assert rl.allow("a", now=0.0) and rl.allow("a", now=1.0)
    assert not rl.allow("a", now=2.0)
    assert rl.allow("b", now=2.0)
    assert rl.allow("a", now=60.5)


def test_food_scan_errors(client):
    r = client.post("/api/food-scan", json={"image": "nope"})
    assert r.status_code == 400 and r.json()["detected"] is False
    r = client.post("/api/food-scan", json={"image": "data:image/jpeg;base64,AAAA"})
    assert r.status_code == 500 and r.json()["detected"] is False
    assert client.post("/api/food-scan", json={}).status_code == 422
    assert client.get("/api/food-scan/health").json()["configured"] is False


def test_replay_of_malformed_frames_is_unprocessable(client):
    sid = db.insert_set("s1", {"exercise": "squat", "reps": 2, "frames": [{"x": 1}, {"x": 2}]})
    r = client.get(f"/sets/{sid}/replay")
    assert r.status_code == 422
    assert "timestamp" in r.json()["detail"]


def test_import_with_bad_frames_writes_nothing(client):
    doc = {"sets": [_record(3), dict(_record(2), frames=[{"x": 1}])]}
    assert client.post("/import", json=doc).status_code == 422
    assert client.get("/sets").json()["sets"] == []


def test_food_log_endpoints(client):
    r = client.post("/foods", json={"label": "Banana", "calories": 105, "carbs": 27, "confidence": 91})
    assert r.status_code == 200
    food_id = r.json()["id"]
    foods = client.get("/foods").json()["foods"]
    assert foods[0]["id"] == food_id and foods[0]["items"] == ["Banana"]
    assert client.get("/export").json()["foods"][0]["label"] == "Banana"

    assert client.post("/foods", json={"label": ""}).status_code == 422
    assert client.post("/foods", json={"label": "x", "fat": -1}).status_code == 422

    assert client.delete(f"/foods/{food_id}").json()["deleted"]
    assert client.delete(f"/foods/{food_id}").status_code == 404
    assert client.get("/foods").json()["foods"] == []


class _RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send_text(self, text):
        self.sent.append(text)


def test_sink_tracks_broadcast_until_done(monkeypatch):
    ws = _RecordingSocket()
    monkeypatch.setattr(server, "WS_CLIENTS", {ws})
    monkeypatch.setattr(server, "BROADCAST_TASKS", set())

    async def run():
        server._sink({"type": "trace", "msg": "hello"})
        pending = list(server.BROADCAST_TASKS)
        assert len(pending) == 1
        await asyncio.gather(*pending)
        await asyncio.sleep(0)

    asyncio.run(run())
    assert server.BROADCAST_TASKS == set()
    assert ws.sent == ['{"type": "trace", "msg": "hello"}']


def test_sink_without_loop_drops_event(monkeypatch):
    monkeypatch.setattr(server, "WS_CLIENTS", {_RecordingSocket()})
    monkeypatch.setattr(server, "BROADCAST_TASKS", set())
    server._sink({"type": "trace", "msg": "dropped"})
    assert server.BROADCAST_TASKS == set()
