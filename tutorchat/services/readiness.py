"""
Readiness Poller — bounded wait for attachments to reach a terminal state.

One abstraction, two call sites:

  server  MessageService.send         fetch_states reads the record store
  client  AttachmentsClient.wait_…    fetch_states calls GET /attachments/status

Fixed interval, no backoff. Each tick re-queries the whole id set with a
single fetch_states() call and returns as soon as every id is terminal.
The sleep is clipped to the time left, and each fetch is cut off at
`time left + interval`, so wait() returns within `deadline + interval`
however slow the status source is.

A fetch that raises or is cut off is logged and counted as "not resolved
yet"; the poller never fails its caller. Ids missing from a fetch
result are also unresolved.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Sequence
from uuid import UUID

from tutorchat.core.config import settings
from tutorchat.models.attachments import ExtractionState

logger = logging.getLogger(__name__)

FetchStates = Callable[[Sequence[UUID]], Awaitable[Mapping[UUID, "ExtractionState | str"]]]


@dataclass(frozen=True)
class ReadinessResult:
    states:    dict[UUID, ExtractionState] = field(default_factory=dict)
    resolved:  bool = True
    timed_out: bool = False
    elapsed:   float = 0.0

    @property
    def pending_ids(self) -> list[UUID]:
        return [i for i, s in self.states.items() if not s.is_terminal]


class ReadinessPoller:
    def __init__(
        self,
        fetch_states: FetchStates,
        interval: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetch    = fetch_states
        self._interval = settings.poll_interval_seconds if interval is None else interval
        self._clock    = clock
        self._sleep    = sleep
        if self._interval <= 0:
            raise ValueError("Poll interval must be positive")

    async def wait(self, ids: Sequence[UUID], deadline: float) -> ReadinessResult:
        """
        Poll until every id is terminal or `deadline` seconds have elapsed.
        Always queries at least once, even with a zero deadline.
        """
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return ReadinessResult()

        start  = self._clock()
        states: dict[UUID, ExtractionState] = {}
        ticks  = 0

        while True:
            ticks += 1
            fetch_timeout = max(deadline - (self._clock() - start), 0) + self._interval
            try:
                fetched = await asyncio.wait_for(self._fetch(unique_ids), fetch_timeout)
                states = {i: ExtractionState(s) for i, s in fetched.items() if i in unique_ids}
            except asyncio.TimeoutError:
                logger.warning(
                    "Readiness fetch timed out | tick=%d timeout=%.2fs", ticks, fetch_timeout
                )
            except Exception as exc:
                logger.warning("Readiness fetch failed | tick=%d error=%s", ticks, exc)

            elapsed = self._clock() - start
            if len(states) == len(unique_ids) and all(s.is_terminal for s in states.values()):
                logger.debug("Attachments ready | count=%d ticks=%d", len(unique_ids), ticks)
                return ReadinessResult(states, resolved=True, timed_out=False, elapsed=elapsed)

            remaining = deadline - elapsed
            if remaining <= 0:
                logger.info(
                    "Readiness wait timed out | pending=%d of %d elapsed=%.2fs",
                    len(unique_ids) - sum(1 for s in states.values() if s.is_terminal),
                    len(unique_ids), elapsed,
                )
                return ReadinessResult(states, resolved=False, timed_out=True, elapsed=elapsed)

            await self._sleep(min(self._interval, remaining))
