# fittrack/runtime/cli.py
from __future__ import annotations
import argparse
import logging
import queue
import sys
from typing import List, Optional

from fittrack.common.config import TRAINER_MODE
from fittrack.common.events import EventType
from fittrack.counter.manager import TrainingSessionManager
from fittrack.counter.pipeline import PosePipeline


def format_event(ev: dict) -> Optional[str]:
    """One console line per event; None for events not worth printing."""
    kind = ev.get("type")
    if kind == EventType.REP.value:
        q = ev.get("quality")
        extra = f" quality={q}" if q is not None else ""
        return f"rep {ev['count']}{extra} ({ev.get('feedback', '')})"
    if kind == EventType.SET_SAVED.value:
        s = ev.get("set") or {}
        tag = "auto-saved" if ev.get("auto") else "saved"
        return f"set {tag}: {s.get('reps')} reps, rom={s.get('rom')} quality={s.get('quality')}. {s.get('coach_tip', '')}"
    if kind == EventType.SESSION_STATE.value:
        return f"state: {ev.get('previous')} -> {ev.get('state')}"
    if kind in (EventType.PERSON_FOUND.value, EventType.TRACKING_STABLE.value, EventType.PERSON_LOST.value):
        return kind.replace("_", " ")
    if kind in (EventType.FEEDBACK.value, EventType.SAVE_SKIPPED.value):
        return ev.get("text")
    if kind == EventType.TRACE.value:
        return ev.get("msg")
    return None


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fittrack-camera", description="Count reps from a local webcam.")
    p.add_argument("--exercise", default="squat", help="squat, pushup or any other name (generic counter)")
    p.add_argument("--camera", type=int, default=0, help="OpenCV camera index")
    p.add_argument("--show", action="store_true", help="show the camera window")
    p.add_argument("--quiet", action="store_true", help="no spoken announcements")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    manager = TrainingSessionManager(trainer_mode=TRAINER_MODE and not args.quiet)

    def _print(ev: dict):
        line = format_event(ev)
        if line:
            print(line, flush=True)

    manager.set_event_sink(_print)

    errors: "queue.Queue[str]" = queue.Queue()
    detections: queue.Queue = queue.Queue(maxsize=8)
    pipe = PosePipeline(detections, camera_index=args.camera, show_window=args.show, on_error=errors.put)

    sid, status = manager.start(args.exercise)
    print(f"{status} (session {sid}). Press Ctrl+C to stop.", flush=True)
    pipe.start()

    rc = 0
    try:
        while pipe.is_alive() or not detections.empty():
            try:
                kind, payload, ts = detections.get(timeout=0.2)
            except queue.Empty:
                continue
            if kind == "landmarks":
                manager.push_landmarks(payload, ts)
            else:
                manager.push_no_person(ts)
            pipe.rep_label = f"{args.exercise}: {manager.count}"
    except KeyboardInterrupt:
        print("\nStopping…", flush=True)
    finally:
        pipe.stop()
        manager.shutdown()

    if not errors.empty():
        print("Error:", errors.get(), file=sys.stderr)
        rc = 1
    return rc


if __name__ == "__main__":
    sys.exit(main())
