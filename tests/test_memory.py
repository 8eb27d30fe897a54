"""RSS 計測（MemoryMonitor）のテスト."""

from __future__ import annotations

import numpy as np

import heatfem.memory as memory
from heatfem.memory import MemoryMonitor


class TestMemoryMonitor:
    """ベースライン・ピーク・増分."""

    def test_peak_not_below_baseline(self):
        with MemoryMonitor() as mon:
            block = np.ones(4_000_000)
            mon.sample()
            del block
        assert mon.baseline_bytes > 0
        assert mon.peak_bytes >= mon.baseline_bytes
        assert mon.peak_bytes >= mon.final_bytes
        assert mon.used_bytes >= 0

    def test_sample_returns_current_rss(self):
        mon = MemoryMonitor().start()
        rss = mon.sample()
        assert rss > 0
        assert mon.peak_bytes >= rss

    def test_used_bytes_never_negative(self):
        mon = MemoryMonitor()
        mon.baseline_bytes = 10
        mon.final_bytes = 5
        assert mon.used_bytes == 0

    def test_public_api(self):
        assert memory.__all__ == ["MemoryMonitor"]
