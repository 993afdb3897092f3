from __future__ import annotations

import math

import pytest

from ride_comfort.smoothness import BoardSensitivity, SmoothnessAggregator, roughness_quality


def _aggregator(**overrides: float) -> SmoothnessAggregator:
    params = {
        "window_size": 4,
        "smoothing_alpha": 0.5,
        "max_rate_hz": 1.0,
        "rms_ceiling": 4.0,
        "spike_sigma": 0.0,
    }
    params.update(overrides)
    return SmoothnessAggregator(**params)  # type: ignore[arg-type]


def test_first_sample_emits_and_normalises_stability() -> None:
    agg = _aggregator()
    reading = agg.add_sample(-2.0, at=0.0)
    assert reading is not None
    assert reading.roughness_rms == pytest.approx(2.0)
    assert reading.stability == pytest.approx(0.5)
    assert reading.sample_count == 1
    assert agg.current() == reading


def test_emission_is_throttled_and_low_pass_filtered() -> None:
    agg = _aggregator()
    first = agg.add_sample(2.0, at=0.0)
    assert agg.add_sample(0.0, at=0.5) is None
    assert agg.current() == first

    reading = agg.add_sample(0.0, at=1.0)
    assert reading is not None
    instant = math.sqrt((2.0**2 + 0.0 + 0.0) / 3.0)
    assert reading.roughness_rms == pytest.approx(2.0 + 0.5 * (instant - 2.0))
    assert 0.0 <= reading.stability <= 1.0


def test_window_is_bounded() -> None:
    agg = _aggregator(window_size=2, smoothing_alpha=1.0)
    for i, value in enumerate([9.0, 1.0, 1.0]):
        agg.add_sample(value, at=float(i))
    reading = agg.current()
    assert reading is not None
    assert reading.sample_count == 2
    assert reading.roughness_rms == pytest.approx(1.0)


def test_non_finite_samples_are_ignored() -> None:
    agg = _aggregator()
    assert agg.add_sample(float("nan"), at=0.0) is None
    assert agg.add_sample(float("inf"), at=1.0) is None
    assert agg.current() is None


def test_spikes_are_rejected() -> None:
    agg = _aggregator(window_size=64, smoothing_alpha=1.0, spike_sigma=3.0)
    for i in range(20):
        agg.add_sample(1.0 if i % 2 == 0 else 1.2, at=float(i))
    assert agg.add_sample(50.0, at=20.0) is None

    reading = agg.add_sample(1.1, at=21.0)
    assert reading is not None
    assert reading.roughness_rms < 1.5


def test_board_sensitivity_scales_rms() -> None:
    agg = _aggregator(sensitivity=BoardSensitivity.DOWNHILL)
    reading = agg.add_sample(2.0, at=0.0)
    assert reading is not None
    assert reading.roughness_rms == pytest.approx(1.4)

    agg.set_sensitivity(BoardSensitivity.CRUISER)
    assert agg.sensitivity == pytest.approx(0.85)


def test_reset_starts_a_new_session() -> None:
    agg = _aggregator()
    agg.add_sample(3.0, at=0.0)
    agg.reset()
    assert agg.current() is None
    reading = agg.add_sample(1.0, at=0.1)
    assert reading is not None
    assert reading.roughness_rms == pytest.approx(1.0)


@pytest.mark.parametrize(
    "overrides",
    [{"window_size": 0}, {"smoothing_alpha": 0.0}, {"smoothing_alpha": 1.5}, {"max_rate_hz": 0.0}],
)
def test_invalid_construction_raises(overrides: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        _aggregator(**overrides)


def test_roughness_quality_clamps() -> None:
    assert roughness_quality(0.0, rms_ceiling=3.5) == 1.0
    assert roughness_quality(7.0, rms_ceiling=3.5) == 0.0
    assert roughness_quality(1.75, rms_ceiling=3.5) == pytest.approx(0.5)
