"""
Unit tests for the sample buffer, conditioner, estimators and fusion.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_engine import conditioner, estimators
from pulse_engine.estimators import Method, Quality, RateEstimate
from pulse_engine.fusion import fuse
from pulse_engine.sample_buffer import Sample, SampleBuffer
from pulse_engine.synthetic import synthetic_ppg


def _conditioned(bpm, noise=0.0, seed=0, **kwargs):
    ts, values = synthetic_ppg(bpm, noise=noise, rng=np.random.default_rng(seed), **kwargs)
    rate = conditioner.effective_sample_rate(ts)
    return ts, conditioner.condition(values, rate), rate


def _spikes(beat_times_ms, length_ms=5000, step_ms=10):
    """Impulse train sampled at 100 Hz with a beat at each given time."""
    ts = np.arange(0, length_ms, step_ms)
    signal = np.zeros(len(ts))
    for t in beat_times_ms:
        signal[t // step_ms] = 1.0
    return ts, signal


# ---------------------------------------------------------------------------
# SampleBuffer tests
# ---------------------------------------------------------------------------

class TestSampleBuffer:

    def test_empty_snapshot(self):
        buf = SampleBuffer()
        assert buf.snapshot(10) == []
        assert len(buf) == 0
        assert buf.newest is None

    def test_evicts_samples_older_than_window(self):
        buf = SampleBuffer(window_ms=30_000)
        for ts in range(0, 40_001, 1000):
            buf.insert(Sample(ts, 1.0))
        oldest = buf.snapshot()[0]
        assert oldest.timestamp == 10_000
        assert buf.span_ms == 30_000

    def test_window_property_random_timing(self):
        rng = np.random.default_rng(7)
        buf = SampleBuffer()
        ts = 0
        for _ in range(3000):
            ts += int(rng.integers(0, 400))
            buf.insert(Sample(ts, float(rng.normal())))
            newest = buf.newest.timestamp
            assert all(s.timestamp >= newest - 30_000 for s in buf.snapshot())

    def test_rejects_out_of_order_sample(self):
        buf = SampleBuffer()
        assert buf.insert(Sample(1000, 1.0)) is True
        assert buf.insert(Sample(999, 2.0)) is False
        assert len(buf) == 1
        assert buf.insert(Sample(1000, 3.0)) is True   # equal timestamps allowed

    def test_snapshot_returns_most_recent_in_order(self):
        buf = SampleBuffer()
        for i in range(10):
            buf.insert(Sample(i * 33, float(i)))
        snap = buf.snapshot(3)
        assert [s.brightness for s in snap] == [7.0, 8.0, 9.0]
        assert len(buf) == 10
        assert buf.snapshot(0) == []
        assert len(buf.snapshot(100)) == 10

    def test_arrays(self):
        buf = SampleBuffer()
        for i in range(5):
            buf.insert(Sample(i * 10, i * 2.0))
        ts, values = buf.arrays(2)
        np.testing.assert_array_equal(ts, [30, 40])
        np.testing.assert_array_equal(values, [6.0, 8.0])

    def test_clear(self):
        buf = SampleBuffer()
        buf.insert(Sample(0, 1.0))
        buf.clear()
        assert len(buf) == 0


# ---------------------------------------------------------------------------
# Conditioner tests
# ---------------------------------------------------------------------------

class TestSignalConditioner:

    def test_effective_sample_rate(self):
        ts = np.round(np.arange(300) * 1000.0 / 30.0)
        assert conditioner.effective_sample_rate(ts) == pytest.approx(30.0, rel=1e-3)

    def test_effective_sample_rate_degenerate(self):
        assert conditioner.effective_sample_rate(np.array([5])) == 30.0
        assert conditioner.effective_sample_rate(np.array([5, 5, 5]), nominal=25.0) == 25.0

    def test_smoothing_window(self):
        assert conditioner.smoothing_window(30.0) == 3
        assert conditioner.smoothing_window(15.0) == 3
        assert conditioner.smoothing_window(100.0) == 10

    def test_moving_average_truncates_edges(self):
        out = conditioner.moving_average(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 3)
        np.testing.assert_allclose(out, [1.5, 2.0, 3.0, 4.0, 4.5])

    def test_constant_signal_becomes_zero(self):
        out = conditioner.condition(np.full(50, 180.0), 30.0)
        assert len(out) == 50
        np.testing.assert_allclose(out, 0.0, atol=1e-12)

    def test_removes_dc_and_keeps_length(self):
        _, values = synthetic_ppg(72.0, duration_s=10.0, baseline=200.0)
        out = conditioner.condition(values, 30.0)
        assert len(out) == len(values)
        assert abs(np.mean(out)) < 0.1

    def test_empty_input(self):
        assert conditioner.condition(np.array([]), 30.0).size == 0


# ---------------------------------------------------------------------------
# Frequency scan tests
# ---------------------------------------------------------------------------

class TestFrequencyScan:

    def test_scan_grid(self):
        freqs = estimators.scan_frequencies()
        assert freqs[0] == pytest.approx(0.7)
        assert freqs[-1] == pytest.approx(3.5)
        assert len(freqs) == 57

    @pytest.mark.parametrize("bpm", [45, 52, 60, 72, 88, 100, 120, 137, 150, 165, 180])
    def test_rate_within_3_bpm_with_noise(self, bpm):
        ts, signal, rate = _conditioned(float(bpm), noise=0.1, seed=bpm)
        est = estimators.frequency_scan(signal, rate, ts)
        assert est.method is Method.FREQUENCY
        assert est.valid
        assert abs(est.heart_rate_bpm - bpm) <= 3.0, f"Expected ~{bpm} BPM, got {est.heart_rate_bpm:.1f}"

    def test_clean_signal_is_confident(self):
        ts, signal, rate = _conditioned(72.0)
        est = estimators.frequency_scan(signal, rate, ts)
        assert est.confidence == pytest.approx(1.0)

    def test_too_few_samples(self):
        est = estimators.frequency_scan(np.sin(np.arange(31)), 30.0)
        assert est.confidence == 0.0
        assert not est.valid

    def test_flat_signal(self):
        est = estimators.frequency_scan(np.zeros(300), 30.0)
        assert est.confidence == 0.0

    def test_out_of_band_rate_is_invalid(self):
        # 200 BPM sits inside the scan grid but outside the valid band
        ts, signal, rate = _conditioned(200.0)
        est = estimators.frequency_scan(signal, rate, ts)
        assert est.confidence == 0.0
        assert est.heart_rate_bpm == pytest.approx(201.0, abs=3.0)


# ---------------------------------------------------------------------------
# Autocorrelation tests
# ---------------------------------------------------------------------------

class TestAutocorrelation:

    def test_lag_range(self):
        assert estimators.lag_range(30.0) == (10, 40)

    def test_lag_zero_is_one(self):
        acf = estimators.normalized_autocorrelation(np.sin(np.arange(100) * 0.3))
        assert acf[0] == pytest.approx(1.0)

    @pytest.mark.parametrize("bpm", [50, 60, 72, 90, 110, 130, 150, 170])
    def test_agrees_with_frequency_scan(self, bpm):
        ts, signal, rate = _conditioned(float(bpm))
        acf = estimators.autocorrelation(signal, rate, ts)
        freq = estimators.frequency_scan(signal, rate, ts)
        assert acf.valid and freq.valid
        assert abs(acf.heart_rate_bpm - freq.heart_rate_bpm) <= 5.0
        assert abs(acf.heart_rate_bpm - bpm) <= 2.0

    def test_integer_period_not_mistaken_for_multiple(self):
        # 90 BPM at 30 fps repeats every 20 samples; lag 40 correlates just as well
        ts, signal, rate = _conditioned(90.0)
        est = estimators.autocorrelation(signal, rate, ts)
        assert est.heart_rate_bpm == pytest.approx(90.0, abs=1.0)

    def test_confidence_high_on_clean_signal(self):
        ts, signal, rate = _conditioned(72.0)
        est = estimators.autocorrelation(signal, rate, ts)
        assert est.confidence > 0.9

    def test_zero_variance_signal(self):
        est = estimators.autocorrelation(np.full(200, 3.0), 30.0)
        assert est.confidence == 0.0
        assert est.method is Method.AUTOCORRELATION

    def test_too_few_samples(self):
        ts, signal, rate = _conditioned(72.0, duration_s=1.9)
        assert len(signal) < 60
        assert estimators.autocorrelation(signal, rate, ts).confidence == 0.0


# ---------------------------------------------------------------------------
# Peak detection tests
# ---------------------------------------------------------------------------

class TestPeakDetection:

    def test_clean_pulse(self):
        ts, signal, rate = _conditioned(72.0)
        est = estimators.peak_detection(signal, rate, ts)
        assert est.valid
        assert est.heart_rate_bpm == pytest.approx(72.0, abs=1.0)
        assert est.quality is Quality.GOOD
        assert est.hrv_ms < 5.0
        assert est.confidence == pytest.approx(1.0)

    def test_hrv_is_std_of_intervals(self):
        ts, signal = _spikes([1000, 1800, 2700, 3500, 4400])
        est = estimators.peak_detection(signal, 100.0, ts)
        assert est.intervals_ms == (800.0, 900.0, 800.0, 900.0)
        assert est.hrv_ms == pytest.approx(50.0)
        assert est.heart_rate_bpm == pytest.approx(60000.0 / 850.0)
        assert est.quality is Quality.GOOD

    def test_minimum_separation(self):
        ts, signal = _spikes([1000, 1200, 1800, 2600])
        est = estimators.peak_detection(signal, 100.0, ts)
        assert est.intervals_ms == (800.0, 800.0)
        assert est.heart_rate_bpm == pytest.approx(75.0)

    def test_fair_quality(self):
        ts, signal = _spikes([500, 1300, 2100, 3800])
        est = estimators.peak_detection(signal, 100.0, ts)
        assert est.quality is Quality.FAIR
        assert est.confidence == pytest.approx(2 / 3)

    def test_poor_quality(self):
        ts, signal = _spikes([500, 1300, 3000, 4700])
        est = estimators.peak_detection(signal, 100.0, ts)
        assert est.quality is Quality.POOR
        assert est.heart_rate_bpm == pytest.approx(75.0)

    def test_small_bumps_below_threshold_ignored(self):
        ts, signal = _spikes([1000, 1800, 2600, 3400])
        signal[130] = 0.2      # below median + 0.3 * (max - median)
        est = estimators.peak_detection(signal, 100.0, ts)
        assert est.intervals_ms == (800.0, 800.0, 800.0)

    def test_no_peaks(self):
        est = estimators.peak_detection(np.zeros(100), 30.0)
        assert est.confidence == 0.0
        assert est.quality is Quality.POOR

    def test_classify_quality(self):
        assert estimators.classify_quality(0.7, 72.0) is Quality.GOOD
        assert estimators.classify_quality(0.9, 160.0) is Quality.FAIR
        assert estimators.classify_quality(0.5, 72.0) is Quality.FAIR
        assert estimators.classify_quality(0.39, 72.0) is Quality.POOR

    def test_timestamps_reconstructed_from_rate(self):
        _, signal, rate = _conditioned(60.0)
        est = estimators.peak_detection(signal, rate)
        assert est.heart_rate_bpm == pytest.approx(60.0, abs=1.0)


def test_run_all_preference_order():
    ts, signal, rate = _conditioned(72.0)
    methods = [e.method for e in estimators.run_all(signal, rate, ts)]
    assert methods == [Method.FREQUENCY, Method.AUTOCORRELATION, Method.PEAKS]


# ---------------------------------------------------------------------------
# Fusion tests
# ---------------------------------------------------------------------------

def _est(method, bpm, conf, **kw):
    return RateEstimate(heart_rate_bpm=bpm, confidence=conf, method=method, **kw)


class TestFusion:

    def test_frequency_preferred_when_confident(self):
        fused = fuse([
            _est(Method.FREQUENCY, 72.0, 0.8),
            _est(Method.AUTOCORRELATION, 75.0, 0.95),
            _est(Method.PEAKS, 70.0, 1.0, quality=Quality.GOOD, hrv_ms=30.0),
        ])
        assert fused.method is Method.FREQUENCY
        assert fused.heart_rate_bpm == 72.0
        assert fused.quality is Quality.GOOD
        assert fused.hrv_ms == pytest.approx(28.0)

    def test_frequency_fair_quality(self):
        fused = fuse([_est(Method.FREQUENCY, 90.0, 0.5)])
        assert fused.quality is Quality.FAIR
        assert fused.hrv_ms == pytest.approx(40.0)

    def test_autocorrelation_second(self):
        fused = fuse([
            _est(Method.FREQUENCY, 72.0, 0.3),
            _est(Method.AUTOCORRELATION, 80.0, 0.7),
        ])
        assert fused.method is Method.AUTOCORRELATION
        assert fused.heart_rate_bpm == 80.0
        assert fused.hrv_ms == pytest.approx(35.5)

    def test_autocorrelation_confidence_above_one(self):
        fused = fuse([_est(Method.AUTOCORRELATION, 80.0, 1.3)])
        assert fused.confidence == 1.0
        assert fused.hrv_ms == pytest.approx(25.0)

    def test_confident_but_out_of_band_skipped(self):
        fused = fuse([
            _est(Method.FREQUENCY, 190.0, 0.9),
            _est(Method.AUTOCORRELATION, 76.0, 0.5),
        ])
        assert fused.method is Method.AUTOCORRELATION

    def test_peaks_third(self):
        fused = fuse([
            _est(Method.FREQUENCY, 72.0, 0.1),
            _est(Method.AUTOCORRELATION, 72.0, 0.2),
            _est(Method.PEAKS, 66.0, 0.5, quality=Quality.FAIR, hrv_ms=42.0),
        ])
        assert fused.method is Method.PEAKS
        assert fused.heart_rate_bpm == 66.0
        assert fused.quality is Quality.FAIR
        assert fused.hrv_ms == 42.0

    def test_fallback_average(self):
        fused = fuse([
            _est(Method.FREQUENCY, 42.0, 0.0),
            _est(Method.AUTOCORRELATION, 190.0, 0.0),
            _est(Method.PEAKS, 0.0, 0.0, quality=Quality.POOR),
        ])
        assert fused.method is Method.FALLBACK
        assert fused.heart_rate_bpm == pytest.approx(116.0)
        assert fused.quality is Quality.POOR
        assert not fused.failed

    def test_total_failure(self):
        fused = fuse([
            _est(Method.FREQUENCY, 0.0, 0.0),
            _est(Method.AUTOCORRELATION, 0.0, 0.0),
            _est(Method.PEAKS, 210.0, 0.0),
        ])
        assert fused.heart_rate_bpm == 0.0
        assert fused.quality is Quality.POOR
        assert fused.failed

    def test_clean_signal_end_to_end(self):
        ts, signal, rate = _conditioned(72.0)
        fused = fuse(estimators.run_all(signal, rate, ts))
        assert 69.0 <= fused.heart_rate_bpm <= 75.0
        assert fused.quality is Quality.GOOD
