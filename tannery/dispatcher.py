# tannery/dispatcher.py
"""
Fire-and-forget runner for notification and email side effects.

Env vars:
- SIDE_EFFECTS_EAGER (default: false): await effects inline instead of
  scheduling them (tests, serverless runtimes that freeze after the response)
- SIDE_EFFECT_RETRIES (default: 0): extra attempts after a failure
"""

import asyncio
import os
from typing import Awaitable, Callable, Set

from tannery import monitoring

SIDE_EFFECTS_EAGER = os.getenv("SIDE_EFFECTS_EAGER", "false").lower() in ("1", "true", "yes")
SIDE_EFFECT_RETRIES = int(os.getenv("SIDE_EFFECT_RETRIES", "0"))

EffectFactory = Callable[[], Awaitable[object]]


class SideEffectDispatcher:
    """Schedules side effects on the running loop without making the caller wait.

    Failures are logged and counted, never raised to the caller. `factory`
    must build a fresh awaitable on every call so retries can re-run it.
    """

    def __init__(self, eager: bool = None, retries: int = None, retry_delay: float = 0.5):
        self.eager = SIDE_EFFECTS_EAGER if eager is None else eager
        self.retries = SIDE_EFFECT_RETRIES if retries is None else retries
        self.retry_delay = retry_delay
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def spawn(self, label: str, factory: EffectFactory) -> None:
        if self.eager:
            await self._run(label, factory)
            return
        task = asyncio.get_running_loop().create_task(self._run(label, factory))
        # the loop only keeps weak references to tasks
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, label: str, factory: EffectFactory) -> bool:
        effect = label.split(":", 1)[0]
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await factory()
                monitoring.inc_side_effect(effect, "ok")
                return True
            except Exception as e:
                monitoring.logger.warning(
                    "Side effect failed",
                    extra={"effect": label, "attempt": attempt, "attempts": attempts, "error": str(e)},
                )
                if attempt < attempts:
                    monitoring.inc_side_effect(effect, "retry")
                    await asyncio.sleep(self.retry_delay * attempt)
        monitoring.logger.error("Side effect abandoned", extra={"effect": label})
        monitoring.inc_side_effect(effect, "failed")
        return False

    async def drain(self) -> None:
        """Wait for every scheduled effect (shutdown hook, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
