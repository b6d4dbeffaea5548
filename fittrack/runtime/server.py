from __future__ import annotations
import asyncio
import json
import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Deque, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from fittrack.agent import llm as llm_mod
from fittrack.agent.food import FoodScanError, FoodScanRequest, scan_food
from fittrack.agent.plan import PlanRequest, generate_plan
from fittrack.common.config import (
    ALLOWED_ORIGINS,
    PLAN_RATE_LIMIT_MAX_REQUESTS,
    PLAN_RATE_LIMIT_WINDOW_S,
    TRAINER_MODE,
)
from fittrack.common.events import EventType, make_event
from fittrack.counter.manager import TrainingSessionManager
from fittrack.counter.web_pipeline import WebLandmarkPipeline
from fittrack.data import db
from fittrack.data.replay import ReplayTimeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    ACTIVE_MANAGER().shutdown()


app = FastAPI(title="FitTrack", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)


class RateLimiter:
    """Sliding-window request counter per client key."""

    def __init__(self, max_requests: int, window_s: float):
        self.max_requests = max_requests
        self.window_s = window_s
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        hits = self._hits[key or "unknown"]
        while hits and now - hits[0] >= self.window_s:
            hits.popleft()
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        return True


PLAN_LIMITER = RateLimiter(PLAN_RATE_LIMIT_MAX_REQUESTS, PLAN_RATE_LIMIT_WINDOW_S)

MANAGER = TrainingSessionManager(trainer_mode=TRAINER_MODE)
WS_CLIENTS: Set[WebSocket] = set()
# pending broadcasts, each removed once done
BROADCAST_TASKS: Set[asyncio.Task] = set()


def ACTIVE_MANAGER() -> TrainingSessionManager:
    return MANAGER


async def broadcast(obj: dict):
    dead = []
    text = json.dumps(obj)
    for ws in list(WS_CLIENTS):
        try:
            await ws.send_text(text)
        except Exception:
            dead.append(ws)
    for d in dead:
        WS_CLIENTS.discard(d)


def _task_done(task: asyncio.Task):
    BROADCAST_TASKS.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("broadcast failed: %r", task.exception())


# let the manager push every event to all WS clients
def _sink(ev: dict):
    if not WS_CLIENTS:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("no running loop, dropped %s event", ev.get("type"))
        return
    task = loop.create_task(broadcast(ev))
    BROADCAST_TASKS.add(task)
    task.add_done_callback(_task_done)


MANAGER.set_event_sink(_sink)


@app.get("/")
async def home():
    return {
        "service": "fittrack",
        "websocket": "/ws/landmarks",
        "plan_ai": llm_mod.is_configured(),
    }


@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)


# training session

class StartRequest(BaseModel):
    exercise: str = Field("squat", min_length=1)
    target_reps: Optional[int] = Field(None, ge=1)


def _status() -> Dict[str, Any]:
    m = ACTIVE_MANAGER()
    d = asdict(m.status())
    d["web_mode"] = m.web_mode
    return d


@app.get("/sessions/current")
async def current():
    return _status()


@app.post("/training/start")
async def training_start(body: StartRequest):
    sid, status = ACTIVE_MANAGER().start(exercise=body.exercise, target_reps=body.target_reps)
    return {"session_id": sid, "status": status, **_status()}


@app.post("/training/pause")
async def training_pause():
    return {"ok": ACTIVE_MANAGER().pause(), **_status()}


@app.post("/training/resume")
async def training_resume():
    return {"ok": ACTIVE_MANAGER().resume(), **_status()}


@app.post("/training/save")
async def training_save():
    record = ACTIVE_MANAGER().save()
    return {
        "saved": record is not None,
        "set": record.to_dict(with_frames=False) if record else None,
        **_status(),
    }


@app.post("/training/stop")
async def training_stop():
    m = ACTIVE_MANAGER()
    sid = m.active_id
    record = m.stop()
    return {
        "stopped": True,
        "session_id": sid,
        "set": record.to_dict(with_frames=False) if record else None,
    }


@app.websocket("/ws/landmarks")
async def ws_landmarks(ws: WebSocket):
    await ws.accept()
    WS_CLIENTS.add(ws)
    m = ACTIVE_MANAGER()
    m.set_web_mode(True)
    pipe = WebLandmarkPipeline(m)
    await broadcast(make_event(EventType.TRACE, msg="ws: client connected"))
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("ws: skipping non-JSON message")
                continue
            if not isinstance(data, dict):
                logger.warning("ws: skipping message of type %s", type(data).__name__)
                continue
            pipe.push(data)
    except WebSocketDisconnect:
        pass
    finally:
        WS_CLIENTS.discard(ws)
        if not WS_CLIENTS:
            m.set_web_mode(False)
        await broadcast(make_event(EventType.TRACE, msg="ws closed"))


# history

@app.get("/sets")
async def sets(limit: Optional[int] = Query(None, ge=1)):
    return {"sets": db.list_sets(limit)}


def _get_set_or_404(set_id: int) -> Dict[str, Any]:
    s = db.get_set(set_id)
    if s is None:
        raise HTTPException(status_code=404, detail=f"set {set_id} not found")
    return s


@app.get("/sets/{set_id}")
async def get_set(set_id: int):
    return _get_set_or_404(set_id)


@app.delete("/sets/{set_id}")
async def delete_set(set_id: int):
    if not db.delete_set(set_id):
        raise HTTPException(status_code=404, detail=f"set {set_id} not found")
    return {"deleted": True, "id": set_id}


@app.get("/sets/{set_id}/replay")
async def replay(set_id: int, rate: float = Query(1.0, gt=0)):
    s = _get_set_or_404(set_id)
    frames = s.get("frames") or []
    if not frames:
        raise HTTPException(status_code=404, detail=f"set {set_id} has no frames")
    try:
        tl = ReplayTimeline(frames)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "id": set_id,
        "rate": rate,
        "frame_count": len(tl),
        "frame_duration_ms": tl.frame_duration_ms(rate),
        "duration_ms": tl.duration_ms(rate),
        "frames": frames,
    }


@app.get("/export")
async def export_history():
    return db.export_history()


@app.post("/import")
async def import_history(doc: Dict[str, Any]):
    try:
        n = db.import_history(doc)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"imported": n}


# food log

class FoodEntry(BaseModel):
    label: str = Field(..., min_length=1)
    items: List[str] = Field(default_factory=list)
    calories: float = Field(0, ge=0)
    protein: float = Field(0, ge=0)
    carbs: float = Field(0, ge=0)
    fat: float = Field(0, ge=0)
    confidence: Optional[float] = Field(None, ge=0, le=100)
    timestamp: Optional[str] = None


@app.get("/foods")
async def foods(limit: Optional[int] = Query(None, ge=1)):
    return {"foods": db.list_foods(limit)}


@app.post("/foods")
async def add_food(body: FoodEntry):
    try:
        food_id = db.insert_food(body.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"id": food_id}


@app.delete("/foods/{food_id}")
async def delete_food(food_id: int):
    if not db.delete_food(food_id):
        raise HTTPException(status_code=404, detail=f"food entry {food_id} not found")
    return {"deleted": True, "id": food_id}


# training plan

def _client_key(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@app.post("/api/training-plan")
async def training_plan(body: PlanRequest, request: Request):
    key = _client_key(request)
    if not PLAN_LIMITER.allow(key):
        logger.warning("rate limit exceeded for %s", key)
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", "message": "Too many requests, wait a minute."},
        )
    logger.info("generating training plan: goal=%s level=%s frequency=%d",
                body.goal, body.level, body.frequency)
    return await asyncio.to_thread(generate_plan, body)


@app.get("/api/training-plan/health")
async def training_plan_health():
    return {"ok": True, "ai_configured": llm_mod.is_configured(), "model": llm_mod.MODEL}


# food scan

@app.post("/api/food-scan")
async def food_scan(body: FoodScanRequest):
    try:
        result = await asyncio.to_thread(scan_food, body.image)
    except FoodScanError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message, "detected": False})
    return result.model_dump(exclude_none=True)


@app.get("/api/food-scan/health")
async def food_scan_health():
    ok = llm_mod.is_configured()
    return {
        "ok": ok,
        "configured": ok,
        "model": llm_mod.VISION_MODEL,
        "message": "ready" if ok else "OPENAI_API_KEY is not set",
    }
