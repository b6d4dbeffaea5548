from __future__ import annotations
from typing import Any, List, Mapping, Sequence, Union

from fittrack.counter.frames import Frame

DEFAULT_FRAME_DURATION_MS = 400.0

FrameLike = Union[Frame, Mapping[str, Any]]


def _ts(frame: FrameLike) -> float:
    if isinstance(frame, Frame):
        return frame.timestamp
    try:
        return float(frame["timestamp"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"frame without a usable timestamp: {frame!r:.80}") from e


def tail(frames: Sequence[FrameLike], n: int = 20) -> List[FrameLike]:
    """Quick replay of the newest n frames of a rolling buffer."""
    return list(frames)[-n:] if n > 0 else []


class ReplayTimeline:
    """Playback schedule for a captured set; frames are shown at their average spacing."""

    def __init__(self, frames: Sequence[FrameLike]):
        if not frames:
            raise ValueError("no frames to replay")
        self.frames = list(frames)
        stamps = [_ts(f) for f in self.frames]
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        self.avg_frame_ms = sum(gaps) / len(gaps) if gaps else DEFAULT_FRAME_DURATION_MS

    def __len__(self) -> int:
        return len(self.frames)

    def frame_duration_ms(self, rate: float = 1.0) -> float:
        if rate <= 0:
            raise ValueError("playback rate must be positive")
        return self.avg_frame_ms / rate

    def duration_ms(self, rate: float = 1.0) -> float:
        return self.frame_duration_ms(rate) * (len(self.frames) - 1)

    def frame_index_at(self, elapsed_ms: float, rate: float = 1.0) -> int:
        step = self.frame_duration_ms(rate)
        if step <= 0:
            return len(self.frames) - 1
        idx = int(max(0.0, elapsed_ms) // step)
        return min(idx, len(self.frames) - 1)

    def progress(self, index: int) -> float:
        if len(self.frames) < 2:
            return 100.0
        return index / (len(self.frames) - 1) * 100.0

    def frame_at(self, elapsed_ms: float, rate: float = 1.0) -> FrameLike:
        return self.frames[self.frame_index_at(elapsed_ms, rate)]
