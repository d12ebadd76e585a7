# src/fundledger/runtime/block_clock.py
from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Protocol


def _now_ms() -> int:
    return int(time.time() * 1000)


class BlockClock(Protocol):
    def height(self) -> int:
        ...


class ManualBlockClock:
    """Height only moves when told to. Tests and scripted dev runs."""

    def __init__(self, start: int = 0) -> None:
        if int(start) < 0:
            raise ValueError("start height must be >= 0")
        self._lock = threading.Lock()
        self._height = int(start)

    def height(self) -> int:
        with self._lock:
            return self._height

    def advance(self, n: int = 1) -> int:
        if int(n) < 0:
            raise ValueError("cannot move the clock backwards")
        with self._lock:
            self._height += int(n)
            return self._height


class IntervalBlockClock:
    """Height derived from wall time: one block every `block_interval_ms` since genesis.

    Never goes backwards, even if the wall clock does.
    """

    def __init__(
        self,
        *,
        genesis_ms: int,
        block_interval_ms: int,
        now_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        if int(block_interval_ms) <= 0:
            raise ValueError("block_interval_ms must be > 0")
        self.genesis_ms = int(genesis_ms)
        self.block_interval_ms = int(block_interval_ms)
        self._now_ms = now_ms or _now_ms
        self._lock = threading.Lock()
        self._last = 0

    def height(self) -> int:
        elapsed = int(self._now_ms()) - self.genesis_ms
        h = max(0, elapsed // self.block_interval_ms)
        with self._lock:
            if h > self._last:
                self._last = h
            return self._last
