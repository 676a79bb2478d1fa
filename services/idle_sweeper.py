"""Background task abandoning idle interview sessions."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from config.settings import settings

from services.orchestrator import InterviewOrchestrator

logger = logging.getLogger(__name__)


class IdleSweeper:
    def __init__(self, orchestrator: InterviewOrchestrator, interval_s: Optional[float] = None) -> None:
        self.orchestrator = orchestrator
        self.interval_s = settings.SWEEP_INTERVAL_S if interval_s is None else interval_s
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="idle-sweeper")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self) -> list[str]:
        return await self.orchestrator.sweep_idle()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                abandoned = await self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("idle sweep failed")
                continue
            if abandoned:
                logger.info("idle sweep abandoned %d session(s)", len(abandoned))


__all__ = ["IdleSweeper"]
