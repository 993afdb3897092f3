from __future__ import annotations

import math
import threading

import pytest

from ride_comfort.segment_store import SegmentStore, freshness, make_step_id


def test_first_write_creates_record() -> None:
    store = SegmentStore(capacity=4)
    stat = store.write("r:0", roughness=1.2, quality=0.7, at=100.0)
    assert stat.step_id == "r:0"
    assert stat.roughness_rms == pytest.approx(1.2)
    assert stat.quality == pytest.approx(0.7)
    assert stat.sample_count == 1

    read = store.read("r:0", now=100.0)
    assert read is not None
    assert read.freshness_score == 1.0
    assert store.read("r:1", now=100.0) is None


def test_blend_weights_new_sample_higher() -> None:
    store = SegmentStore(capacity=4, blend_alpha=0.6)
    store.write("r:0", roughness=1.0, quality=0.8, at=0.0)
    stat = store.write("r:0", roughness=3.0, quality=0.2, at=5.0)
    assert stat.roughness_rms == pytest.approx(0.6 * 3.0 + 0.4 * 1.0)
    assert stat.quality == pytest.approx(0.6 * 0.2 + 0.4 * 0.8)
    assert stat.sample_count == 2
    assert stat.last_updated == 5.0


def test_out_of_order_write_keeps_latest_timestamp() -> None:
    store = SegmentStore(capacity=4)
    store.write("r:0", roughness=1.0, quality=0.8, at=50.0)
    stat = store.write("r:0", roughness=1.0, quality=0.8, at=40.0)
    assert stat.last_updated == 50.0


def test_freshness_decays_monotonically() -> None:
    store = SegmentStore(capacity=4, freshness_horizon_s=1_800.0)
    store.write("r:0", roughness=1.0, quality=0.5, at=0.0)
    scores = [store.read("r:0", now=t).freshness_score for t in (0.0, 60.0, 600.0, 1_800.0, 7_200.0)]  # type: ignore[union-attr]
    assert scores[0] == 1.0
    assert all(a > b for a, b in zip(scores, scores[1:]))
    assert scores[3] == pytest.approx(math.exp(-3.0))
    assert scores[-1] < 1e-4


def test_freshness_helper_bounds() -> None:
    assert freshness(-5.0, horizon_s=60.0) == 1.0
    assert 0.0 <= freshness(1e9, horizon_s=60.0) <= 1.0


def test_eviction_removes_stalest_not_least_recently_read() -> None:
    store = SegmentStore(capacity=2)
    store.write("a", roughness=1.0, quality=0.5, at=10.0)
    store.write("b", roughness=1.0, quality=0.5, at=20.0)
    store.write("a", roughness=1.0, quality=0.5, at=30.0)
    # Reads do not refresh anything.
    for _ in range(5):
        store.read("b", now=31.0)

    store.write("c", roughness=1.0, quality=0.5, at=40.0)
    assert len(store) == 2
    assert store.read("b", now=41.0) is None
    assert store.read("a", now=41.0) is not None
    assert store.read("c", now=41.0) is not None
    assert store.stats()["evictions"] == 1


def test_read_many_and_clear() -> None:
    store = SegmentStore(capacity=8)
    for i in range(3):
        store.write(make_step_id("r", i), roughness=1.0, quality=0.5, at=float(i))
    stats = store.read_many(["r:0", "r:2", "r:9"], now=10.0)
    assert sorted(stats) == ["r:0", "r:2"]
    assert store.clear() == 3
    assert len(store) == 0


@pytest.mark.parametrize(
    "kwargs",
    [{"capacity": 0}, {"capacity": -1}, {"capacity": 2, "blend_alpha": 0.0}, {"capacity": 2, "freshness_horizon_s": 0.0}],
)
def test_invalid_construction_raises(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        SegmentStore(**kwargs)  # type: ignore[arg-type]


def test_concurrent_writers_never_expose_torn_blend() -> None:
    store = SegmentStore(capacity=4, blend_alpha=0.6)
    # quality is a linear function of roughness, so any fully applied blend keeps
    # the pair on the same line.
    store.write("r:0", roughness=1.0, quality=1.0 - 1.0 / 4.0, at=0.0)
    writers = 6
    per_writer = 300
    errors: list[str] = []
    stop = threading.Event()

    def writer(seed: int) -> None:
        for i in range(per_writer):
            rms = 1.0 if (i + seed) % 2 == 0 else 3.0
            store.write("r:0", roughness=rms, quality=1.0 - rms / 4.0, at=float(i))

    def reader() -> None:
        while not stop.is_set():
            stat = store.read("r:0", now=0.0)
            if stat is None:
                errors.append("missing")
                return
            if abs(stat.quality - (1.0 - stat.roughness_rms / 4.0)) > 1e-9:
                errors.append(f"torn: {stat}")
                return

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(writers)]
    watcher = threading.Thread(target=reader)
    watcher.start()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    stop.set()
    watcher.join()

    assert errors == []
    stat = store.read("r:0", now=0.0)
    assert stat is not None
    assert stat.sample_count == 1 + writers * per_writer
    assert 1.0 <= stat.roughness_rms <= 3.0


def test_step_ids_are_path_safe() -> None:
    step_id = make_step_id("route 7", 12)
    assert step_id == "route 7:12"
    assert "#" not in step_id and "/" not in step_id
