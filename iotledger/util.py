"""
Utility functions for iotledger.

Time helpers and constant-time comparison.
"""

import hmac
import time
from typing import Callable, Union

Clock = Callable[[], int]


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


class FixedClock:
    """Manually advanced clock for deterministic replays and tests."""

    def __init__(self, start: int = 1767225600):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> int:
        self.now += seconds
        return self.now
