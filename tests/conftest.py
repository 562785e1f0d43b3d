from __future__ import annotations

import numpy as np
import pytest

from pulse_engine.synthetic import synthetic_ppg


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pulse_72():
    """20 s of a clean 72 BPM fingertip pulse at 30 fps."""
    return synthetic_ppg(72.0, duration_s=20.0, fps=30.0, baseline=150.0, amplitude=8.0)
