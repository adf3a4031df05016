"""Clock protocol used for all lazy expiry checks."""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current wall-clock time in milliseconds since the epoch."""

    def now_ms(self) -> int:
        ...


class SystemClock:
    """Wall-clock time from :func:`time.time`."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)
