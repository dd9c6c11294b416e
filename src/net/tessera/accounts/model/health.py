import asyncio


class HealthGauge:
    """
    Error counter behind the readiness endpoint.

    Handlers and background tasks record every unexpected failure (a storage error, not a
    rejected login) with `womp`. `tick_health_task` forgets one failure per tick. While
    more failures are outstanding than `health_threshold`, `/internal/ready` answers 503.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._failures = value
        self._threshold = health_threshold
        self._lock = asyncio.Lock()

    @property
    def value(self) -> int:
        return self._failures

    async def womp(self, d: int = 1) -> int:
        """Record `d` failures and return the outstanding count."""
        async with self._lock:
            self._failures += int(d)
            return self._failures

    async def tick(self) -> None:
        async with self._lock:
            self._failures = max(0, self._failures - 1)

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._failures <= self._threshold
