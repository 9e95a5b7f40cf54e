import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fileportal.core.config import settings


def fixed_delay(attempt: int, base_delay: float) -> float:
    return base_delay


@dataclass
class RetryPolicy:
    """Bounded attempts with a settling pause after each one.

    ``sleep`` is injectable so tests can run the policy against a fake clock.
    """

    max_attempts: int = 2
    delay: float = 0.1
    backoff: Callable[[int, float], float] = fixed_delay
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        return self.backoff(attempt, self.delay)

    async def pause(self, attempt: int) -> None:
        await self.sleep(self.delay_for(attempt))

    @classmethod
    def for_blob_delete(cls) -> "RetryPolicy":
        return cls(max_attempts=settings.DELETE_MAX_ATTEMPTS, delay=settings.delete_settle_delay)
