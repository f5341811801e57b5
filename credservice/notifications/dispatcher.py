"""
Reliable notification dispatcher.

Owns one broker connection + channel for the process, declares the durable
email queue, and keeps the pair alive: a background watcher waits for either
close signal and reconnects with exponential backoff (1s doubling, capped at
30s) until it succeeds or shutdown is requested.

Publishing fails fast. Callers own the compensating action when a job could
not be handed to the broker.
"""
import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Iterator, Optional

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.exceptions import AMQPError, ChannelInvalidStateError

from credservice.auth.errors import DispatchUnavailable
from credservice.notifications.jobs import NotificationJob

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "email_queue"
INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 30.0
DEFAULT_TIMEOUT_SECONDS = 5.0

CONNECT_ERRORS = (AMQPError, OSError, asyncio.TimeoutError)
PUBLISH_ERRORS = (AMQPError, ChannelInvalidStateError, OSError, asyncio.TimeoutError)

Connector = Callable[..., Awaitable[Any]]


def backoff_delays(
    initial: float = INITIAL_BACKOFF_SECONDS,
    cap: float = MAX_BACKOFF_SECONDS,
) -> Iterator[float]:
    """Yield 1, 2, 4, ... seconds, never exceeding `cap`."""
    delay = initial
    while True:
        yield delay
        delay = min(delay * 2, cap)


def _signal(event: asyncio.Event) -> Callable[..., None]:
    def callback(*_: Any) -> None:
        event.set()
    return callback


class NotificationDispatcher:
    """
    Broker connection owner exposing `publish` to the credential flows.

    Create one per process in the composition root, call `start()` at
    startup and `close()` at shutdown. Only connect/reconnect/close mutate
    the connection state, under `_lock`; `publish` reads the current channel
    without taking it.
    """
    def __init__(
        self,
        amqp_url: str,
        queue_name: str = DEFAULT_QUEUE_NAME,
        *,
        shutdown: Optional[asyncio.Event] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        max_backoff: float = MAX_BACKOFF_SECONDS,
    ):
        self._amqp_url = amqp_url
        self.queue_name = queue_name
        self._owns_shutdown = shutdown is None
        self._shutdown = shutdown if shutdown is not None else asyncio.Event()
        self._timeout = timeout
        self._connector = connector or aio_pika.connect
        self._sleep = sleep
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff

        self._lock = asyncio.Lock()
        self._connection: Any = None
        self._channel: Any = None
        self._connection_closed = asyncio.Event()
        self._channel_closed = asyncio.Event()
        self._watcher: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        connection, channel = self._connection, self._channel
        return (
            connection is not None
            and channel is not None
            and not connection.is_closed
            and not channel.is_closed
        )

    async def connect(self) -> "NotificationDispatcher":
        """
        Open the connection, channel and queue if not already open.

        Idempotent: when a live connection exists the same dispatcher is
        returned without dialing the broker again.
        """
        async with self._lock:
            if not self.is_connected:
                await self._open()
        return self

    async def start(self) -> "NotificationDispatcher":
        """
        Connect and arm the reconnect watcher.

        A broker that is down at startup does not stop the service: the
        watcher keeps retrying in the background and publishes fail fast
        until it succeeds.

        After `close()` a dispatcher that created its own shutdown event
        starts again with a fresh one. A dispatcher given a shutdown event
        at construction keeps obeying that event, so restarting it once the
        event is set raises RuntimeError.
        """
        if self._shutdown.is_set():
            if not self._owns_shutdown:
                raise RuntimeError("Shutdown event is already set; create a new dispatcher to restart")
            self._shutdown = asyncio.Event()
        try:
            await self.connect()
        except CONNECT_ERRORS as e:
            logger.error(f"Broker unavailable at startup: {e.__class__.__name__}: {e}. Retrying in background")
        if self._watcher is None or self._watcher.done():
            self._watcher = asyncio.create_task(self._watch(), name="notification-dispatcher-watcher")
        return self

    async def reconnect(self) -> None:
        """Retry `connect` with capped exponential backoff until it succeeds or shutdown."""
        delays = backoff_delays(self._initial_backoff, self._max_backoff)
        attempt = 0
        while not self._shutdown.is_set():
            attempt += 1
            try:
                async with self._lock:
                    await self._open()
                logger.info(f"Broker reconnected after {attempt} attempt(s)")
                return
            except CONNECT_ERRORS as e:
                delay = next(delays)
                logger.warning(f"Reconnection failed: {e.__class__.__name__}: {e}. Retrying in {delay:g}s...")
                await self._backoff(delay)

    async def publish(self, job: NotificationJob) -> None:
        """
        Publish a job to the queue as a persistent JSON message.

        Raises:
            DispatchUnavailable: no open channel, broker error, or timeout
        """
        channel = self._channel
        if channel is None or channel.is_closed:
            logger.warning(f"Publish to [{self.queue_name}] rejected: channel unavailable")
            raise DispatchUnavailable()

        message = Message(
            body=job.to_json(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        try:
            await asyncio.wait_for(
                channel.default_exchange.publish(message, routing_key=self.queue_name),
                timeout=self._timeout,
            )
        except PUBLISH_ERRORS as e:
            logger.error(f"Publish to [{self.queue_name}] failed: {e.__class__.__name__}: {e}")
            raise DispatchUnavailable() from e

        logger.info(f"Message published to queue [{self.queue_name}] template={job.template}")

    async def close(self) -> None:
        """Stop the watcher and close channel then connection."""
        self._shutdown.set()
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
        async with self._lock:
            await self._release()
        logger.info("Broker connection closed")

    async def _backoff(self, delay: float) -> None:
        """Wait `delay` seconds, returning early once shutdown is signalled."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopper.cancel()

    async def _open(self) -> None:
        # Caller holds self._lock
        await self._release()

        connection = await asyncio.wait_for(self._connector(self._amqp_url), timeout=self._timeout)
        try:
            channel = await asyncio.wait_for(connection.channel(), timeout=self._timeout)
            await asyncio.wait_for(
                channel.declare_queue(self.queue_name, durable=True, auto_delete=False),
                timeout=self._timeout,
            )
        except BaseException:
            await self._close_quietly(connection, "connection")
            raise

        connection_closed = asyncio.Event()
        channel_closed = asyncio.Event()
        connection.close_callbacks.add(_signal(connection_closed))
        channel.close_callbacks.add(_signal(channel_closed))

        self._connection = connection
        self._channel = channel
        self._connection_closed = connection_closed
        self._channel_closed = channel_closed
        logger.info(f"Broker connected and queue [{self.queue_name}] declared")

    async def _release(self) -> None:
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None
        await self._close_quietly(channel, "channel")
        await self._close_quietly(connection, "connection")

    async def _close_quietly(self, resource: Any, kind: str) -> None:
        if resource is None or resource.is_closed:
            return
        try:
            await asyncio.wait_for(resource.close(), timeout=self._timeout)
        except PUBLISH_ERRORS as e:
            logger.debug(f"Ignoring error while closing broker {kind}: {e}")

    async def _watch(self) -> None:
        while not self._shutdown.is_set():
            if not self.is_connected:
                await self.reconnect()
                continue

            waiters = [
                asyncio.ensure_future(self._connection_closed.wait()),
                asyncio.ensure_future(self._channel_closed.wait()),
                asyncio.ensure_future(self._shutdown.wait()),
            ]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

            if self._shutdown.is_set():
                break
            layer = "connection" if self._connection_closed.is_set() else "channel"
            logger.warning(f"Broker {layer} closed. Reconnecting...")
            await self.reconnect()

        # Shutdown signalled; nothing reopens the connection after this
        async with self._lock:
            await self._release()
        logger.info("Stopping broker reconnect watcher")
