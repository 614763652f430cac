"""Cross-instance relay for invalidation events.

Uses Redis Pub/Sub so that an event published on one Cachewire instance
also reaches the subscribers connected to every other instance. Each
instance forwards its own local publishes to the channel and dispatches
events from other instances into its local bus; messages carrying its
own instance id are ignored.

Delivery stays best-effort: Pub/Sub does not buffer for instances that
are disconnected when a message is sent.

Example:
    relay = RedisEventRelay(bus, redis, instance_id="api-1")
    await relay.start()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import orjson
from redis.exceptions import RedisError

from cachewire.events.schemas import InvalidationEvent

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

    from cachewire.events.bus import InvalidationEventBus

logger = logging.getLogger(__name__)

# Pub/Sub channel name
RELAY_CHANNEL = "cachewire:events"


class RedisEventRelay:
    """Bridges a local InvalidationEventBus to a Redis Pub/Sub channel."""

    def __init__(
        self,
        bus: InvalidationEventBus,
        client: Redis,
        instance_id: str,
        channel: str = RELAY_CHANNEL,
    ):
        self.bus = bus
        self.client = client
        self.instance_id = instance_id
        self.channel = channel
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._pubsub: PubSub | None = None
        self._pending: set[asyncio.Task[bool]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self.forwarded = 0
        self.received = 0

    async def start(self) -> None:
        """Subscribe to the channel and begin relaying."""
        if self._running:
            return

        self._loop = asyncio.get_running_loop()
        self._pubsub = self.client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self.bus.add_listener(self._on_local_event)

        self._running = True
        self._task = asyncio.create_task(self._listen_loop())
        logger.info("Started event relay on channel %s as %s", self.channel, self.instance_id)

    async def stop(self) -> None:
        """Stop relaying and release the Pub/Sub connection."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for task in list(self._pending):
            task.cancel()

        if self._pubsub:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None

        logger.info("Stopped event relay")

    def _on_local_event(self, event: InvalidationEvent) -> None:
        """Bus listener: schedule forwarding of a local publish.

        Runs on whichever thread called publish; off-loop calls are handed
        to the loop the relay was started on.
        """
        if not self._running or self._loop is None or event.origin not in (None, self.instance_id):
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is not self._loop:
            asyncio.run_coroutine_threadsafe(self.forward(event), self._loop)
            return
        task = self._loop.create_task(self.forward(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def forward(self, event: InvalidationEvent) -> bool:
        """Publish a local event to the other instances."""
        if event.origin is None:
            event = InvalidationEvent(
                type=event.type,
                pattern=event.pattern,
                tenant_id=event.tenant_id,
                metadata=event.metadata,
                event_id=event.event_id,
                timestamp=event.timestamp,
                origin=self.instance_id,
            )
        try:
            await self.client.publish(self.channel, event.to_bytes())
        except (RedisError, OSError) as e:
            logger.warning("Failed to relay event %s: %s", event.event_id, e)
            return False
        self.forwarded += 1
        return True

    async def _listen_loop(self) -> None:
        """Main loop for receiving relayed events."""
        while self._running and self._pubsub:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )

                if message is None:
                    continue

                if message["type"] == "message":
                    self.handle_message(message["data"])

            except asyncio.CancelledError:
                break
            except (RedisError, OSError) as e:
                logger.error("Error in event relay listener: %s", e)
                await asyncio.sleep(1)

    def handle_message(self, data: bytes | str) -> int:
        """Dispatch a relayed event into the local bus.

        Returns:
            Number of local subscribers reached (0 for own or bad messages).
        """
        try:
            event = InvalidationEvent.from_bytes(data)
        except (orjson.JSONDecodeError, KeyError, ValueError) as e:
            logger.error("Failed to parse relayed event: %s", e)
            return 0

        if event.origin == self.instance_id:
            return 0

        self.received += 1
        return self.bus.dispatch(event)
