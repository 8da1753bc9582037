"""Asynchronous message bus between chat surfaces and the agent.

Inbound traffic flows through one bounded FIFO queue with a single
consumer (the agent loop).  Outbound traffic flows through a second
bounded queue and is fanned out to every handler subscribed to the
message's channel.  Each delivery runs in its own task so that a slow or
failing handler never holds up the dispatcher or the other handlers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Set, Union

from .agent_types import InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100

OutboundHandler = Callable[[OutboundMessage], Union[None, Awaitable[None]]]


class MessageBus:
    """Two bounded queues plus per-channel outbound subscriptions.

    Parameters
    ----------
    maxsize : int
        Capacity of each queue.  Publishers wait when a queue is full;
        nothing is dropped.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._subscribers: Dict[str, List[OutboundHandler]] = {}
        self._deliveries: Set[asyncio.Task] = set()
        self._running = False

    ###########################################################################
    # Inbound
    ###########################################################################

    async def publish_inbound(self, msg: InboundMessage) -> None:
        await self._inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """Return the next inbound message, waiting until one is available."""
        return await self._inbound.get()

    @property
    def inbound_size(self) -> int:
        return self._inbound.qsize()

    ###########################################################################
    # Outbound
    ###########################################################################

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        await self._outbound.put(msg)

    @property
    def outbound_size(self) -> int:
        return self._outbound.qsize()

    def subscribe_outbound(self, channel: str, handler: OutboundHandler) -> Callable[[], None]:
        """Register ``handler`` for messages addressed to ``channel``.

        Returns a callable that removes the subscription again.
        """
        self._subscribers.setdefault(channel, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._subscribers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    async def dispatch_outbound(self, poll_interval_s: float = 1.0) -> None:
        """Deliver outbound messages until :meth:`stop` is called."""
        self._running = True
        while self._running:
            try:
                msg = await asyncio.wait_for(self._outbound.get(), timeout=poll_interval_s)
            except asyncio.TimeoutError:
                continue
            try:
                self._fan_out(msg)
            finally:
                self._outbound.task_done()

    def stop(self) -> None:
        self._running = False

    async def drain(self) -> None:
        """Wait for queued outbound messages and in-flight deliveries."""
        await self._outbound.join()
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    def _fan_out(self, msg: OutboundMessage) -> None:
        handlers = list(self._subscribers.get(msg.channel, []))
        if not handlers:
            logger.debug("No outbound subscriber for channel %s; dropping message", msg.channel)
            return
        for handler in handlers:
            task = asyncio.create_task(self._deliver(handler, msg))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    @staticmethod
    async def _deliver(handler: OutboundHandler, msg: OutboundMessage) -> None:
        try:
            outcome: Any = handler(msg)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Outbound handler failed for %s:%s", msg.channel, msg.chat_id)


__all__ = ["MessageBus", "OutboundHandler", "DEFAULT_QUEUE_SIZE"]
