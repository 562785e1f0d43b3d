"""
Measurement session: the 20 s finger-over-flash capture window.

The session owns one :class:`~pulse_engine.sample_buffer.SampleBuffer` and
walks through::

    Idle --start--> Measuring --complete--> Completed
                                       \\--> InsufficientData --complete/restart--> ...
    any --reset--> Idle

Ingestion is cheap (one append plus eviction).  The heavy analysis –
conditioning, the three estimators and fusion – runs only when the host
asks for a live estimate (at most once per ``analysis_interval_ms``) and
at completion.

When too little data arrives, the session reports InsufficientData and
counts a retry.  Once the retry budget is spent, or when there is some
but not enough data for the full pipeline, it produces a synthetic
reading flagged with ``synthetic=True`` so the caller can tell it apart
from a measured one.  A completed session always carries a result.

Not thread-safe: frames and timer callbacks must be serialised by the
host.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np

from . import conditioner, dosha, estimators
from .dosha import DoshaScore
from .estimators import Method, Quality, RateEstimate
from .finger_detector import FingerDetector, FrameReading, effective_finger_presence
from .fusion import FusedEstimate, fuse
from .metrics import PulseMetrics, build_metrics
from .sample_buffer import Sample, SampleBuffer

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class SessionState(str, Enum):
    IDLE = "idle"
    MEASURING = "measuring"
    COMPLETED = "completed"
    INSUFFICIENT_DATA = "insufficient_data"


class SessionStateError(RuntimeError):
    """Raised when a session operation is called in the wrong state."""


@dataclass
class SessionConfig:
    duration_ms: int = 20_000
    analysis_interval_ms: int = 500
    window_ms: int = 30_000
    live_window_samples: int = 300
    min_samples: int = 10
    min_full_analysis_samples: int = 30
    max_retries: int = 3
    default_bpm: float = 72.0
    synthetic_jitter_bpm: int = 3
    nominal_fps: float = 30.0
    finger_brightness_threshold: float = 50.0


@dataclass(frozen=True)
class Analysis:
    """Everything one pass of the pipeline produced."""
    fused: FusedEstimate
    estimates: Tuple[RateEstimate, ...]
    conditioned: np.ndarray = field(repr=False)
    sample_rate: float
    dc_level: float

    @property
    def peak_intervals_ms(self) -> Tuple[float, ...]:
        for est in self.estimates:
            if est.method is Method.PEAKS:
                return est.intervals_ms
        return ()


@dataclass(frozen=True)
class SessionResult:
    state: SessionState
    metrics: Optional[PulseMetrics] = None
    dosha: Optional[DoshaScore] = None
    quality: Optional[Quality] = None
    method: Optional[Method] = None
    synthetic: bool = False
    sample_count: int = 0
    retries_remaining: int = 0

    def to_dict(self) -> dict:
        """JSON-compatible view for persistence."""
        return {
            "state": self.state.value,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "dosha": self.dosha.to_dict() if self.dosha else None,
            "quality": self.quality.value if self.quality else None,
            "method": self.method.value if self.method else None,
            "synthetic": self.synthetic,
            "sample_count": self.sample_count,
            "retries_remaining": self.retries_remaining,
        }


_NO_ESTIMATE = RateEstimate(heart_rate_bpm=0.0, confidence=0.0, method=Method.FALLBACK)


def analyze(
    timestamps_ms: np.ndarray,
    values: np.ndarray,
    nominal_fps: float = conditioner.NOMINAL_FPS,
) -> Analysis:
    """Run conditioning, the three estimators and fusion over one window."""
    sample_rate = conditioner.effective_sample_rate(timestamps_ms, nominal=nominal_fps)
    conditioned = conditioner.condition(values, sample_rate)
    results = estimators.run_all(conditioned, sample_rate, timestamps_ms)
    for est in results:
        logger.debug("%s: %.1f BPM conf=%.2f", est.method.value, est.heart_rate_bpm, est.confidence)
    return Analysis(
        fused=fuse(results),
        estimates=results,
        conditioned=conditioned,
        sample_rate=sample_rate,
        dc_level=float(np.mean(values)) if len(values) else 0.0,
    )


class MeasurementSession:
    """
    One pulse measurement.

    Parameters
    ----------
    config:
        Durations, thresholds and the live-analysis cadence.
    clock:
        Millisecond clock gating the capture window.  Injectable for tests.
    rng:
        Random generator for the synthetic-estimate jitter.
    detector:
        Frame-level finger detector used by :meth:`ingest_frame`.
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], int] = monotonic_ms,
        rng: Optional[np.random.Generator] = None,
        detector: Optional[FingerDetector] = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.clock = clock
        self.rng = rng if rng is not None else np.random.default_rng()
        self.detector = detector or FingerDetector()

        self._buffer = SampleBuffer(window_ms=self.config.window_ms)
        self._state = SessionState.IDLE
        self._started_at: Optional[int] = None
        self._retry_count = 0
        self._finger_present = False

        self._live: RateEstimate = _NO_ESTIMATE
        self._live_at: Optional[int] = None
        self._live_marker: Optional[Tuple[int, int]] = None
        self._last_live_bpm: Optional[float] = None
        self._result: Optional[SessionResult] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, now_ms: Optional[int] = None) -> None:
        """Clear buffered data and open a new capture window."""
        self._clear()
        self._started_at = self._now(now_ms)
        self._state = SessionState.MEASURING
        logger.info("Measurement started (attempt %d/%d)", self._retry_count + 1, self.config.max_retries)

    def reset_session(self, preserve_retry_count: bool = False) -> None:
        """Discard everything and return to Idle."""
        self._clear()
        self._state = SessionState.IDLE
        self._started_at = None
        if not preserve_retry_count:
            self._retry_count = 0
        logger.info("Session reset (retries=%d)", self._retry_count)

    def _clear(self) -> None:
        self._buffer.clear()
        self._finger_present = False
        self._live = _NO_ESTIMATE
        self._live_at = None
        self._live_marker = None
        self._last_live_bpm = None
        self._result = None

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, brightness: float, timestamp_ms: int, finger_detected: bool = False) -> bool:
        """
        Buffer one brightness sample.

        No-op unless Measuring.  Returns ``True`` when the sample was kept.
        """
        if self._state is not SessionState.MEASURING:
            return False
        value = float(brightness)
        if not math.isfinite(value):
            logger.debug("Dropping non-finite brightness at ts=%d", timestamp_ms)
            return False
        self._finger_present = effective_finger_presence(
            value, finger_detected, self.config.finger_brightness_threshold,
        )
        return self._buffer.insert(Sample(timestamp=int(timestamp_ms), brightness=value))

    def ingest_frame(self, frame: np.ndarray, timestamp_ms: int) -> Optional[FrameReading]:
        """Measure a BGR camera frame and ingest its brightness."""
        if self._state is not SessionState.MEASURING:
            return None
        reading = self.detector.measure(frame)
        self.ingest(reading.brightness, timestamp_ms, reading.finger_detected)
        return reading

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def current_live_estimate(self, now_ms: Optional[int] = None) -> RateEstimate:
        """
        Latest fused estimate for display.

        Recomputed at most once per ``analysis_interval_ms`` and only when
        new samples arrived; otherwise the cached value is returned.
        """
        if self._state is not SessionState.MEASURING or len(self._buffer) == 0:
            return self._live

        now = self._now(now_ms)
        newest = self._buffer.newest
        marker = (len(self._buffer), newest.timestamp)
        if marker == self._live_marker:
            return self._live
        if self._live_at is not None and now - self._live_at < self.config.analysis_interval_ms:
            return self._live

        ts, values = self._buffer.arrays(self.config.live_window_samples)
        analysis = analyze(ts, values, self.config.nominal_fps)
        self._live = analysis.fused.as_rate_estimate()
        self._live_at = now
        self._live_marker = marker
        if not analysis.fused.failed:
            self._last_live_bpm = analysis.fused.heart_rate_bpm
        return self._live

    def complete_session(self, now_ms: Optional[int] = None) -> SessionResult:
        """
        Close the capture window and produce the session result.

        Raises
        ------
        SessionStateError
            If the session is neither Measuring nor waiting on a retry.
        """
        if self._state not in (SessionState.MEASURING, SessionState.INSUFFICIENT_DATA):
            raise SessionStateError(f"Cannot complete a session in state {self._state.value}")

        if not self.window_elapsed(now_ms):
            logger.warning("Completing session early after %d ms", self.elapsed_ms(now_ms))

        count = len(self._buffer)
        cfg = self.config

        if count < cfg.min_samples:
            self._retry_count += 1
            if self._retry_count < cfg.max_retries:
                self._state = SessionState.INSUFFICIENT_DATA
                logger.warning(
                    "Insufficient data: %d samples (need %d); %d retries left",
                    count, cfg.min_samples, cfg.max_retries - self._retry_count,
                )
                return SessionResult(
                    state=SessionState.INSUFFICIENT_DATA,
                    sample_count=count,
                    retries_remaining=cfg.max_retries - self._retry_count,
                )
            logger.warning("Retry budget exhausted; reporting a synthetic estimate")
            return self._finish(self._synthetic_result(count))

        if count < cfg.min_full_analysis_samples:
            logger.warning("Only %d samples; reporting a synthetic estimate", count)
            return self._finish(self._synthetic_result(count))

        ts, values = self._buffer.arrays()
        analysis = analyze(ts, values, cfg.nominal_fps)
        if analysis.fused.failed:
            logger.warning("No plausible heart rate in %d samples; reporting a synthetic estimate", count)
            return self._finish(self._synthetic_result(count))

        metrics = build_metrics(
            analysis.fused, analysis.conditioned, analysis.dc_level, analysis.peak_intervals_ms,
        )
        return self._finish(SessionResult(
            state=SessionState.COMPLETED,
            metrics=metrics,
            dosha=dosha.classify(metrics),
            quality=analysis.fused.quality,
            method=analysis.fused.method,
            synthetic=False,
            sample_count=count,
        ))

    def _synthetic_result(self, count: int) -> SessionResult:
        cfg = self.config
        if self._last_live_bpm is not None:
            bpm = self._last_live_bpm
        else:
            jitter = cfg.synthetic_jitter_bpm
            bpm = cfg.default_bpm + float(self.rng.integers(-jitter, jitter + 1))
        bpm = float(np.clip(bpm, estimators.BPM_MIN, estimators.BPM_MAX))
        metrics = PulseMetrics(
            heart_rate_bpm=int(round(bpm)),
            hrv_ms=float(self.rng.uniform(30.0, 50.0)),
            pulse_strength=float(self.rng.uniform(0.6, 0.85)),
            regularity=float(self.rng.uniform(0.8, 0.95)),
        )
        return SessionResult(
            state=SessionState.COMPLETED,
            metrics=metrics,
            dosha=dosha.classify(metrics),
            quality=Quality.POOR,
            method=Method.SYNTHETIC,
            synthetic=True,
            sample_count=count,
        )

    def _finish(self, result: SessionResult) -> SessionResult:
        self._state = SessionState.COMPLETED
        self._retry_count = 0
        self._result = result
        m = result.metrics
        logger.info(
            "Session completed: %d BPM, HRV %.1f ms, %s%s",
            m.heart_rate_bpm, m.hrv_ms, result.dosha.dominant.value,
            " (synthetic)" if result.synthetic else "",
        )
        return result

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _now(self, now_ms: Optional[int]) -> int:
        return int(now_ms) if now_ms is not None else int(self.clock())

    def elapsed_ms(self, now_ms: Optional[int] = None) -> int:
        if self._started_at is None:
            return 0
        return max(0, self._now(now_ms) - self._started_at)

    def remaining_ms(self, now_ms: Optional[int] = None) -> int:
        if self._started_at is None:
            return self.config.duration_ms
        return max(0, self.config.duration_ms - self.elapsed_ms(now_ms))

    def window_elapsed(self, now_ms: Optional[int] = None) -> bool:
        return self._started_at is not None and self.elapsed_ms(now_ms) >= self.config.duration_ms

    def progress(self, now_ms: Optional[int] = None) -> float:
        """Fraction (0 – 1) of the capture window that has passed."""
        if self.config.duration_ms <= 0:
            return 1.0
        return min(1.0, self.elapsed_ms(now_ms) / self.config.duration_ms)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def sample_count(self) -> int:
        return len(self._buffer)

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def finger_present(self) -> bool:
        return self._finger_present

    @property
    def last_live_bpm(self) -> Optional[float]:
        return self._last_live_bpm

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result
