"""プロセスメモリ（RSS）の計測.

psutil でプロセスの常駐メモリを取得し、計測開始からの増分と
sample() 呼び出し時点までのピークを記録する。
"""

from __future__ import annotations

import os
import threading

import psutil


class MemoryMonitor:
    """RSS の増分とピークを記録する.

    Example:
        with MemoryMonitor() as mon:
            lu = splu(A)
            mon.sample()
            x = lu.solve(b)
        mon.used_bytes, mon.peak_bytes
    """

    def __init__(self) -> None:
        self._process = psutil.Process(os.getpid())
        self._lock = threading.Lock()
        self.baseline_bytes = 0
        self.peak_bytes = 0
        self.final_bytes = 0

    def _rss(self) -> int:
        return int(self._process.memory_info().rss)

    def start(self) -> MemoryMonitor:
        rss = self._rss()
        with self._lock:
            self.baseline_bytes = rss
            self.peak_bytes = rss
            self.final_bytes = rss
        return self

    def sample(self) -> int:
        """現在の RSS を取得してピークを更新する."""
        rss = self._rss()
        with self._lock:
            if rss > self.peak_bytes:
                self.peak_bytes = rss
        return rss

    def stop(self) -> None:
        rss = self.sample()
        with self._lock:
            self.final_bytes = rss

    @property
    def used_bytes(self) -> int:
        """計測開始から終了までの RSS 増分（負にはしない）."""
        return max(0, self.final_bytes - self.baseline_bytes)

    def __enter__(self) -> MemoryMonitor:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


__all__ = ["MemoryMonitor"]
