import asyncio
import time


class Clock:
    """Monotonic time source used for token refill, backoff sleeps and deadlines."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def timer(self, seconds: float) -> None:
        """Completes once ``seconds`` have elapsed. Raced against work to enforce timeouts."""
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()
