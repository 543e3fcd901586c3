from __future__ import annotations

import threading
import time
from typing import Callable, Dict


class ProviderCooldown:
    """Suspends a provider for a while after it reports exhausted quota."""

    def __init__(self, seconds: float = 0.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = max(0.0, float(seconds))
        self._clock = clock
        self._until: Dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.seconds > 0

    def suspend(self, provider: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._until[provider] = self._clock() + self.seconds

    def is_suspended(self, provider: str) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            until = self._until.get(provider)
            if until is None:
                return False
            if self._clock() >= until:
                del self._until[provider]
                return False
            return True
