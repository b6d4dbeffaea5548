from __future__ import annotations
import logging
import queue
import threading
import time
from typing import Callable, Optional, Tuple

import cv2
import mediapipe as mp

logger = logging.getLogger(__name__)

# ("landmarks", [33 landmarks], ts_ms) or ("none", None, ts_ms)
DetectorItem = Tuple[str, Optional[list], float]


class PosePipeline(threading.Thread):
    """
    Local camera detector. Runs OpenCV capture + MediaPipe Pose on a background
    thread and only *enqueues* detector output; the consumer drains the queue
    on one thread so rep counting stays sequential.
    """

    def __init__(
            self,
            out: "queue.Queue[DetectorItem]",
            camera_index: int = 0,
            show_window: bool = False,
            on_error: Optional[Callable[[str], None]] = None,
    ):
        super().__init__(daemon=True)
        self.out = out
        self.camera_index = camera_index
        self.show_window = show_window
        self.on_error = on_error
        self._halt = threading.Event()
        self.cap = None
        self.pose = None
        self.rep_label = ""

    def _offer(self, item: DetectorItem):
        try:
            self.out.put_nowait(item)
        except queue.Full:
            # consumer is behind; drop the oldest tick
            try:
                self.out.get_nowait()
            except queue.Empty:
                pass
            self.out.put_nowait(item)

    def run(self):
        mp_pose = mp.solutions.pose

        try:
            self.cap = cv2.VideoCapture(self.camera_index)
            if not self.cap.isOpened():
                raise RuntimeError("Webcam not available")

            self.pose = mp_pose.Pose(
                model_complexity=1,
                smooth_landmarks=True,
                min_detection_confidence=0.5,
                min_tracking_confidence=0.5,
            )

            if self.show_window:
                try:
                    cv2.namedWindow("FitTrack", cv2.WINDOW_NORMAL)
                except cv2.error:
                    self.show_window = False

            while not self._halt.is_set():
                ok, frame = self.cap.read()
                if not ok:
                    time.sleep(0.01)
                    continue
                image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                res = self.pose.process(image)
                t = time.time() * 1000.0
                if res.pose_landmarks:
                    lm = [
                        {"x": p.x, "y": p.y, "z": p.z, "visibility": p.visibility}
                        for p in res.pose_landmarks.landmark
                    ]
                    self._offer(("landmarks", lm, t))
                else:
                    self._offer(("none", None, t))

                if self.show_window:
                    try:
                        cv2.putText(frame, self.rep_label, (20, 40),
                                    cv2.FONT_HERSHEY_SIMPLEX, 1, (0, 255, 0), 2)
                        cv2.imshow("FitTrack", frame)
                        # macOS: imshow requires waitKey even if we ignore keys
                        _ = cv2.waitKey(1)
                    except cv2.error:
                        self.show_window = False
        except Exception as e:
            logger.error("PosePipeline error: %s", e)
            if self.on_error:
                self.on_error(str(e))
        finally:
            if self.cap is not None:
                self.cap.release()
            if self.pose is not None:
                self.pose.close()
            if self.show_window:
                cv2.destroyAllWindows()

    def stop(self):
        self._halt.set()
