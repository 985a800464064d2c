from __future__ import annotations

import logging

from .ports import RemoteStatePort


class LogicalClock:
    """Remote slot counter; all job progress is measured in these ticks."""

    def __init__(self, remote: RemoteStatePort, *, logger: logging.Logger | None = None):
        self._remote = remote
        self._logger = logger or logging.getLogger(__name__)
        self._last_known = 0

    @property
    def last_known(self) -> int:
        return self._last_known

    def observe(self, tick: int) -> int:
        if tick > self._last_known:
            self._last_known = tick
        return self._last_known

    async def now(self) -> int:
        """Return the current tick, or 0 when the remote cannot provide one."""
        try:
            tick = int(await self._remote.fetch_current_tick() or 0)
        except Exception as exc:
            self._logger.warning("Failed to fetch current tick: %s", exc)
            return 0
        if tick <= 0:
            return 0
        return self.observe(tick)
