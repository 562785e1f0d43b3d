"""
Development frame source.

Wraps ``cv2.VideoCapture`` to yield ``(timestamp_ms, frame)`` pairs from a
webcam or a video file, so the measurement engine can be exercised away
from the phone app.  Timestamps come from a monotonic clock at capture
time; the engine never assumes a fixed frame rate.
"""

from __future__ import annotations

import logging
from typing import Callable, Generator, Tuple, Union

import cv2
import numpy as np

from .session import monotonic_ms

logger = logging.getLogger(__name__)


class FrameSource:
    """
    Thin wrapper around ``cv2.VideoCapture``.

    Parameters
    ----------
    source:
        Camera index or path to a video file.
    resolution:
        (width, height) requested from the device.
    fps:
        Requested frame rate.  Actual delivery may differ.
    clock:
        Millisecond clock used to stamp frames.
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.source = source
        self.resolution = resolution
        self.fps = fps
        self.clock = clock
        self._cap: "cv2.VideoCapture | None" = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Initialise and start the capture device."""
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open video capture source={self.source!r}")
        w, h = self.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cap = cap
        logger.info("Frame source opened – source=%r resolution=%s fps=%d",
                    self.source, self.resolution, self.fps)

    def close(self) -> None:
        """Release the capture device."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Frame source closed.")

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read(self) -> Tuple[int, "np.ndarray | None"]:
        """Capture one frame; returns ``(timestamp_ms, frame_or_None)``."""
        if self._cap is None:
            raise RuntimeError("Frame source is not open.  Call open() first.")
        ok, frame = self._cap.read()
        ts = self.clock()
        if not ok:
            logger.warning("VideoCapture.read() returned False.")
            return ts, None
        return ts, frame

    def frames(self) -> Generator[Tuple[int, np.ndarray], None, None]:
        """
        Yield ``(timestamp_ms, frame)`` until the source closes or fails.

        Ten consecutive failed reads end the stream.
        """
        null_streak = 0
        while self._cap is not None:
            ts, frame = self.read()
            if frame is None:
                null_streak += 1
                if null_streak >= 10:
                    logger.error("Frame source returned 10 consecutive empty frames – aborting.")
                    break
                continue
            null_streak = 0
            yield ts, frame
