"""
Transaction Reference Generation

References are human-facing identifiers of the form
TXN<yyyyMMddHHmmssSSS><4-digit random>. Candidates are not guaranteed to be
unique; the service checks them against the store and retries.
"""

import random
from datetime import datetime
from typing import Callable, Optional

from .models import utc_now


class ReferenceGenerator:
    """Produces candidate transaction references"""

    def __init__(
        self,
        prefix: str = "TXN",
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None
    ):
        self.prefix = prefix
        self._clock = clock or utc_now
        self._rng = rng or random.SystemRandom()

    def generate(self) -> str:
        """Build a candidate from a millisecond timestamp and a random suffix"""
        now = self._clock()
        timestamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
        suffix = self._rng.randint(0, 9999)
        return f"{self.prefix}{timestamp}{suffix:04d}"
