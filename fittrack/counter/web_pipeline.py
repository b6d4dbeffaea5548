# fittrack/counter/web_pipeline.py
from __future__ import annotations
import logging
from typing import Any, Callable, Mapping, Optional

from fittrack.counter.manager import TrainingSessionManager

logger = logging.getLogger(__name__)


class WebLandmarkPipeline:
    """
    Consumes landmark messages produced by MediaPipe Pose running in the browser.
    No camera, no threads: the WebSocket handler calls push(message) per tick.

    Messages:
      {"type": "landmarks", "landmarks": [...33 or 17 points... | {name: point}], "ts": ms}
      {"type": "no_person", "ts": ms}
    """

    def __init__(self, manager: TrainingSessionManager,
                 debug_cb: Optional[Callable[[dict], None]] = None):
        self.manager = manager
        self.debug_cb = debug_cb
        self.dropped = 0

    def push(self, msg: Mapping[str, Any]) -> bool:
        """Route one client message; returns False for messages that were skipped."""
        kind = msg.get("type")
        ts = msg.get("ts")
        try:
            t = float(ts) if ts is not None else None
        except (TypeError, ValueError):
            t = None

        if kind == "no_person":
            self.manager.push_no_person(t)
            return True
        if kind != "landmarks":
            return False

        landmarks = msg.get("landmarks")
        if not landmarks:
            # an empty detection is the same as no person
            self.manager.push_no_person(t)
            return True
        if not isinstance(landmarks, (list, tuple, dict)):
            self.dropped += 1
            logger.warning("dropping landmark payload of type %s", type(landmarks).__name__)
            if self.debug_cb:
                self.debug_cb({"type": "trace", "msg": "malformed landmarks payload"})
            return False
        self.manager.push_landmarks(landmarks, t)
        return True
