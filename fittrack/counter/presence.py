from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from fittrack.common.config import TrackerConfig
from fittrack.counter.frames import Frame

logger = logging.getLogger(__name__)


@dataclass
class PresenceUpdate:
    person_found: bool = False     # first frame above the presence threshold
    became_stable: bool = False    # stability latch flipped this frame
    person_lost: bool = False      # lost-streak reached this call
    lost: bool = False             # currently past the lost threshold


class PresenceTracker:
    """
    Debounced "is someone there and tracked steadily" flag.

    Gain: a leaky streak of stable frames must reach stable_frames_required;
    a shaky frame decrements the streak instead of zeroing it.
    Loss: lost_frames_threshold consecutive calls without any landmarks.
    """

    def __init__(self, cfg: Optional[TrackerConfig] = None):
        self.cfg = cfg or TrackerConfig()
        self.reset()

    def reset(self):
        self.person_detected = False
        self.keypoints_stable = False
        self.stable_frame_count = 0
        self.lost_frame_count = 0

    def observe(self, frame: Frame) -> PresenceUpdate:
        upd = PresenceUpdate()
        self.lost_frame_count = 0

        if frame.confidence <= self.cfg.min_person_confidence:
            return upd

        if not self.person_detected:
            self.person_detected = True
            upd.person_found = True
            logger.debug("person found (confidence %.2f)", frame.confidence)

        if frame.is_stable:
            self.stable_frame_count += 1
            if self.stable_frame_count >= self.cfg.stable_frames_required and not self.keypoints_stable:
                self.keypoints_stable = True
                upd.became_stable = True
                logger.debug("keypoints stable after %d frames", self.stable_frame_count)
        else:
            self.stable_frame_count = max(0, self.stable_frame_count - 1)
        return upd

    def observe_missing(self) -> PresenceUpdate:
        """Detector delivered no person for this tick."""
        upd = PresenceUpdate()
        self.lost_frame_count += 1
        if self.lost_frame_count >= self.cfg.lost_frames_threshold:
            upd.lost = True
            upd.person_lost = self.lost_frame_count == self.cfg.lost_frames_threshold
            self.person_detected = False
            self.keypoints_stable = False
            self.stable_frame_count = 0
        return upd
