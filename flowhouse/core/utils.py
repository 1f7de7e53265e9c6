"""
Small shared utilities.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Record elapsed milliseconds in the yielded dict under ``elapsed_ms``.

    Used for the latency_ms reported by the query service and executor logs.
    """
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


@dataclass(frozen=True)
class Deadline:
    """Absolute point in monotonic time after which work must stop."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at
