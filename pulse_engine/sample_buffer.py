"""
Time-windowed brightness sample buffer.

Holds ``(timestamp, brightness)`` pairs for the last ``window_ms``
milliseconds of a measurement.  Every insert evicts samples that fell out
of the window relative to the newest sample, so the buffer never grows
past ~30 s of data regardless of the camera frame rate.

The buffer is not thread-safe: a single producer and a single consumer
must serialise access themselves.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

WINDOW_MS = 30_000


@dataclass(frozen=True)
class Sample:
    timestamp: int       # milliseconds
    brightness: float


class SampleBuffer:
    """
    Rolling window of brightness samples ordered by arrival.

    Parameters
    ----------
    window_ms:
        Maximum span, in milliseconds, between the oldest retained sample
        and the newest one.  Default: 30 000.
    """

    def __init__(self, window_ms: int = WINDOW_MS) -> None:
        self.window_ms = window_ms
        self._samples: Deque[Sample] = deque()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def insert(self, sample: Sample) -> bool:
        """
        Append *sample* and evict everything older than the window.

        Returns ``False`` (and leaves the buffer untouched) when the sample's
        timestamp precedes the newest buffered sample.
        """
        if self._samples and sample.timestamp < self._samples[-1].timestamp:
            logger.debug(
                "Dropping out-of-order sample ts=%d (newest=%d)",
                sample.timestamp, self._samples[-1].timestamp,
            )
            return False

        self._samples.append(sample)
        cutoff = sample.timestamp - self.window_ms
        while self._samples[0].timestamp < cutoff:
            self._samples.popleft()
        return True

    def snapshot(self, max_count: Optional[int] = None) -> List[Sample]:
        """Return the most recent *max_count* samples, oldest first."""
        if max_count is None or max_count >= len(self._samples):
            return list(self._samples)
        if max_count <= 0:
            return []
        start = len(self._samples) - max_count
        return [self._samples[i] for i in range(start, len(self._samples))]

    def arrays(self, max_count: Optional[int] = None) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(timestamps_ms, brightness)`` arrays for :meth:`snapshot`."""
        samples = self.snapshot(max_count)
        timestamps = np.fromiter((s.timestamp for s in samples), dtype=np.int64, count=len(samples))
        values = np.fromiter((s.brightness for s in samples), dtype=np.float64, count=len(samples))
        return timestamps, values

    def clear(self) -> None:
        self._samples.clear()

    @property
    def newest(self) -> Optional[Sample]:
        return self._samples[-1] if self._samples else None

    @property
    def span_ms(self) -> int:
        """Time covered by the buffered samples."""
        if len(self._samples) < 2:
            return 0
        return self._samples[-1].timestamp - self._samples[0].timestamp

    def __len__(self) -> int:
        return len(self._samples)
