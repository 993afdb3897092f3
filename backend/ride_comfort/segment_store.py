from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock

from .logging_utils import log_event
from .settings import settings


def make_step_id(route_id: str, step_index: int) -> str:
    return f"{route_id}:{int(step_index)}"


@dataclass(frozen=True)
class SegmentStat:
    """Read-side snapshot of one step's rolling statistics."""

    step_id: str
    quality: float
    roughness_rms: float
    last_updated: float
    freshness_score: float
    sample_count: int


@dataclass
class _SegmentRecord:
    quality: float
    roughness_rms: float
    last_updated: float
    sample_count: int


def freshness(elapsed_s: float, *, horizon_s: float) -> float:
    """Exponential decay: 1.0 at zero elapsed, ~0.05 at the horizon, -> 0 beyond."""
    if elapsed_s <= 0.0:
        return 1.0
    tau = max(float(horizon_s), 1e-9) / 3.0
    return min(1.0, max(0.0, math.exp(-float(elapsed_s) / tau)))


class SegmentStore:
    """Bounded per-step statistics with stale-first eviction.

    Every read and write goes through one lock, so a reader always sees a
    fully applied blend. Freshness is derived at read time from
    `last_updated`; it is never stored.
    """

    def __init__(
        self,
        *,
        capacity: int,
        blend_alpha: float = 0.6,
        freshness_horizon_s: float = 1_800.0,
    ) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        if not 0.0 < float(blend_alpha) <= 1.0:
            raise ValueError("blend_alpha must be in (0, 1]")
        if float(freshness_horizon_s) <= 0.0:
            raise ValueError("freshness_horizon_s must be > 0")
        self._capacity = int(capacity)
        self._alpha = float(blend_alpha)
        self._horizon_s = float(freshness_horizon_s)
        self._lock = Lock()
        self._items: dict[str, _SegmentRecord] = {}

        self._writes = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def _snapshot(self, step_id: str, record: _SegmentRecord, now: float) -> SegmentStat:
        return SegmentStat(
            step_id=step_id,
            quality=record.quality,
            roughness_rms=record.roughness_rms,
            last_updated=record.last_updated,
            freshness_score=freshness(now - record.last_updated, horizon_s=self._horizon_s),
            sample_count=record.sample_count,
        )

    def _evict_stalest(self) -> str:
        # Lowest freshness == oldest last_updated; dict order breaks ties.
        victim = min(self._items, key=lambda key: self._items[key].last_updated)
        del self._items[victim]
        self._evictions += 1
        return victim

    def write(self, step_id: str, *, roughness: float, quality: float, at: float) -> SegmentStat:
        rms = max(0.0, float(roughness))
        q = min(1.0, max(0.0, float(quality)))
        evicted: str | None = None
        with self._lock:
            record = self._items.get(step_id)
            if record is None:
                if len(self._items) >= self._capacity:
                    evicted = self._evict_stalest()
                record = _SegmentRecord(quality=q, roughness_rms=rms, last_updated=float(at), sample_count=1)
                self._items[step_id] = record
            else:
                a = self._alpha
                record.quality = (a * q) + ((1.0 - a) * record.quality)
                record.roughness_rms = (a * rms) + ((1.0 - a) * record.roughness_rms)
                record.last_updated = max(record.last_updated, float(at))
                record.sample_count += 1
            self._writes += 1
            stat = self._snapshot(step_id, record, float(at))

        if evicted is not None:
            log_event("segment_evicted", level=logging.DEBUG, step_id=evicted, capacity=self._capacity)
        return stat

    def read(self, step_id: str, *, now: float | None = None) -> SegmentStat | None:
        ts = time.time() if now is None else float(now)
        with self._lock:
            record = self._items.get(step_id)
            if record is None:
                return None
            return self._snapshot(step_id, record, ts)

    def read_many(self, step_ids: list[str], *, now: float | None = None) -> dict[str, SegmentStat]:
        ts = time.time() if now is None else float(now)
        with self._lock:
            return {
                step_id: self._snapshot(step_id, self._items[step_id], ts)
                for step_id in step_ids
                if step_id in self._items
            }

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def stats(self) -> dict[str, float | int]:
        with self._lock:
            return {
                "size": len(self._items),
                "capacity": self._capacity,
                "writes": self._writes,
                "evictions": self._evictions,
                "blend_alpha": self._alpha,
                "freshness_horizon_s": self._horizon_s,
            }


def build_segment_store() -> SegmentStore:
    return SegmentStore(
        capacity=settings.segment_store_capacity,
        blend_alpha=settings.segment_store_blend_alpha,
        freshness_horizon_s=settings.segment_store_freshness_horizon_s,
    )
