"""Resilient consumption of a realtime change feed for one ConversationView."""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional

from app.client.reconciler import ConversationView
from app.logging_config import get_logger

logger = get_logger("client.realtime")

INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 30.0

EventSourceFactory = Callable[[], AsyncIterator[dict]]


class RealtimeSubscription:
    """Feeds realtime deltas into a view and resubscribes after transport errors.

    Backoff starts at 1 s, doubles per consecutive failure up to 30 s and resets
    after any successfully applied event. Every (re)subscription re-runs the
    view's initial fetch so rows missed while disconnected are picked up.
    """

    def __init__(
        self,
        view: ConversationView,
        source_factory: EventSourceFactory,
        *,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        max_backoff: float = MAX_BACKOFF_SECONDS,
        max_reconnects: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.view = view
        self.source_factory = source_factory
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.max_reconnects = max_reconnects
        self.sleep = sleep
        self.backoff = initial_backoff
        self.reconnects = 0
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    def next_backoff(self) -> float:
        """Return the delay to wait now and advance the schedule."""
        delay = self.backoff
        self.backoff = min(self.backoff * 2, self.max_backoff)
        return delay

    async def _consume_once(self) -> None:
        await self.view.initialize()
        async for event in self.source_factory():
            if self._stopped:
                return
            try:
                await self.view.apply_event(event)
            except Exception as e:
                logger.error(
                    "Failed to apply realtime event",
                    extra={"context": {"conversation_id": self.view.conversation_id, "error": str(e)}},
                    exc_info=True,
                )
                continue
            self.backoff = self.initial_backoff

    async def run(self) -> None:
        while not self._stopped:
            try:
                await self._consume_once()
                if self._stopped:
                    return
                logger.info(
                    "Realtime stream ended, resubscribing",
                    extra={"context": {"conversation_id": self.view.conversation_id}},
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Realtime transport error",
                    extra={
                        "context": {
                            "conversation_id": self.view.conversation_id,
                            "error": str(e),
                            "reconnects": self.reconnects,
                        }
                    },
                )

            if self.max_reconnects is not None and self.reconnects >= self.max_reconnects:
                logger.warning(
                    "Realtime reconnect limit reached",
                    extra={"context": {"conversation_id": self.view.conversation_id, "reconnects": self.reconnects}},
                )
                return
            self.reconnects += 1
            await self.sleep(self.next_backoff())
