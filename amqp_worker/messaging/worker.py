"""
Queue Worker Module
===================
Base class for workers that publish to and/or consume from one broker queue.

This module provides:
- Lazy, single-flight connection and channel acquisition
- Pluggable error sink for acquisition and connection faults
- Publishing with a serialization hook
- Single-consumer subscription
- Ordered teardown with a configurable failure policy
"""

import asyncio
import inspect
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from ..core.config import Config, TEARDOWN_POLICIES, get_config
from ..core.exceptions import (
    AcquisitionError,
    BrokerConnectionError,
    ChannelCreationError,
    ChannelUnavailableError,
    DuplicateListenerError,
    InvalidPayloadError,
    MissingDestinationError,
    PublishError,
    MessageHandlerError,
    TeardownError,
    UnimplementedHandlerError,
    WorkerDefunctError,
    mask_credentials,
)
from ..core.logging_config import WorkerLogger, get_worker_logger

from .client import (
    BrokerClient,
    ChannelHandle,
    ConnectionHandle,
    ConsumerHandle,
    merge_options,
)
from .serialization import identity

Options = Optional[Dict[str, Any]]
MessageHandler = Callable[[Any], Union[Awaitable[None], None]]
ErrorSink = Callable[[BaseException], Any]
TeardownHook = Callable[[], Union[Awaitable[None], None]]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def _is_destination(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


class QueueWorker:
    """
    Worker bound to a single broker queue.

    A worker owns at most one connection and one channel. Both are opened
    on first use (publish, subscribe or explicit acquisition) and released
    only by ``teardown()``. At most one consumer may be attached per worker.

    Behaviour can be customised either by passing callables to the
    constructor or by subclassing and overriding ``handle_message`` /
    ``serialize_message``.

    Example:
        >>> worker = QueueWorker("orders", message_handler=handle)
        >>> await worker.subscribe()
        >>> await worker.publish(b"hello")
        >>> await worker.teardown()
    """

    def __init__(
        self,
        destination: Optional[str] = None,
        connection_target: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        client: Optional[BrokerClient] = None,
        declare_options: Options = None,
        consume_options: Options = None,
        publish_options: Options = None,
        message_handler: Optional[MessageHandler] = None,
        serializer: Optional[Callable[[Any], Any]] = None,
        error_sink: Optional[ErrorSink] = None,
        before_teardown: Optional[TeardownHook] = None,
        teardown_policy: Optional[str] = None,
        reset_listening_on_teardown: Optional[bool] = None,
        worker_id: Optional[str] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize the worker. No network I/O happens here.

        Args:
            destination: Queue to publish to and/or consume from
            connection_target: Broker URL (built from configuration if not specified)
            host: Broker host override used when building the URL
            port: Broker port override used when building the URL
            client: Broker client (defaults to the aio-pika client)
            declare_options: Default queue declare options
            consume_options: Default consume options
            publish_options: Default publish options
            message_handler: Callable invoked once per delivered message
            serializer: Hook turning a message into bytes (identity by default)
            error_sink: Callable or coroutine function receiving acquisition
                and connection faults, and handler failures wrapped in
                MessageHandlerError; without one, acquisition failures are raised
            before_teardown: Callable awaited before resources are released
            teardown_policy: What a failed teardown does with stale handles:
                ``retain``, ``clear`` or ``defunct``
            reset_listening_on_teardown: Allow re-subscribing after teardown
            worker_id: Identifier used in logs
            config: Configuration (uses global configuration if not specified)
        """
        self._config = config or get_config()

        teardown_policy = teardown_policy or self._config.worker.teardown_policy
        if teardown_policy not in TEARDOWN_POLICIES:
            raise ValueError(f"Unknown teardown policy: {teardown_policy}")
        if reset_listening_on_teardown is None:
            reset_listening_on_teardown = self._config.worker.reset_listening_on_teardown

        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._destination = destination
        self._connection_target = (
            connection_target or self._config.broker.build_url(host, port)
        )

        if client is None:
            from .aiopika import AioPikaClient
            client = AioPikaClient(timeout=self._config.broker.connection_timeout)
        self._client = client

        self._declare_options = dict(declare_options or {})
        self._consume_options = dict(consume_options or {})
        self._publish_options = dict(publish_options or {})

        self._message_handler = message_handler
        self._serializer = serializer or identity
        self._error_sink = error_sink
        self._before_teardown = before_teardown
        self._teardown_policy = teardown_policy
        self._reset_listening_on_teardown = reset_listening_on_teardown

        self._connection: Optional[ConnectionHandle] = None
        self._channel: Optional[ChannelHandle] = None
        self._consumer: Optional[ConsumerHandle] = None
        self._listening = False
        self._defunct = False
        self._sink_tasks: Set["asyncio.Future"] = set()

        self._connection_lock = asyncio.Lock()
        self._channel_lock = asyncio.Lock()
        self._subscribe_lock = asyncio.Lock()

        self.logger: WorkerLogger = get_worker_logger(self.worker_id, destination)

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def destination(self) -> Optional[str]:
        return self._destination

    @destination.setter
    def destination(self, value: Optional[str]) -> None:
        self._destination = value
        self.logger.destination = value

    @property
    def connection_target(self) -> str:
        return self._connection_target

    @property
    def connection(self) -> Optional[ConnectionHandle]:
        return self._connection

    @property
    def channel(self) -> Optional[ChannelHandle]:
        return self._channel

    @property
    def consumer_tag(self) -> Optional[str]:
        return self._consumer.tag if self._consumer else None

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def is_defunct(self) -> bool:
        return self._defunct

    @property
    def teardown_policy(self) -> str:
        return self._teardown_policy

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(worker_id={self.worker_id!r}, "
            f"destination={self._destination!r}, listening={self._listening})"
        )

    # ------------------------------------------------------------------
    # Error policy
    # ------------------------------------------------------------------

    async def _handle_error(self, error: AcquisitionError) -> None:
        """Deliver an acquisition error to the sink, or raise it."""
        if self._error_sink is None:
            raise error from error.cause
        await _maybe_await(self._error_sink(error))

    def _on_connection_fault(self, source: ConnectionHandle, exc: BaseException) -> None:
        if source is not self._connection:
            self.logger.debug(f"Ignoring fault from a released connection: {exc}")
            return
        error = BrokerConnectionError(
            f"Broker connection fault: {exc}",
            target=self._connection_target,
            cause=exc,
        )
        if self._error_sink is None:
            # Nothing is waiting on this fault; log and keep running
            self.logger.error(f"Unhandled connection fault: {exc}", exc_info=exc)
            return

        self.logger.warning(f"Connection fault routed to error sink: {exc}")
        result = self._error_sink(error)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._sink_tasks.add(task)
            task.add_done_callback(self._sink_task_done)

    def _sink_task_done(self, task: "asyncio.Future") -> None:
        self._sink_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Error sink failed: {exc}", exc_info=exc)

    def _ensure_usable(self) -> None:
        if self._defunct:
            raise WorkerDefunctError(self.worker_id)

    # ------------------------------------------------------------------
    # Resource acquisition
    # ------------------------------------------------------------------

    async def acquire_connection(self) -> Optional[ConnectionHandle]:
        """
        Return the worker's connection, opening it on first use.

        Returns:
            The connection, or None if opening failed and the failure was
            delivered to the error sink.

        Raises:
            BrokerConnectionError: If opening failed and no error sink is set
        """
        self._ensure_usable()
        if self._connection is not None:
            return self._connection

        async with self._connection_lock:
            if self._connection is not None:
                return self._connection

            try:
                connection = await self._client.connect(self._connection_target)
            except Exception as e:
                self.logger.error(f"Failed to connect to broker: {e}")
                await self._handle_error(BrokerConnectionError(
                    f"Failed to connect to broker: {e}",
                    target=self._connection_target,
                    cause=e,
                ))
                return None

            connection.on_error(
                lambda exc, source=connection: self._on_connection_fault(source, exc)
            )
            self._connection = connection
            self.logger.info(
                f"Connected to broker at {mask_credentials(self._connection_target)}"
            )
            return connection

    async def acquire_channel(self) -> Optional[ChannelHandle]:
        """
        Return the worker's channel, opening it (and the connection) on first use.

        Returns:
            The channel, or None if acquisition failed and the failure was
            delivered to the error sink.

        Raises:
            BrokerConnectionError: If connecting failed and no error sink is set
            ChannelCreationError: If channel creation failed and no error sink is set
        """
        self._ensure_usable()
        if self._channel is not None:
            return self._channel

        async with self._channel_lock:
            if self._channel is not None:
                return self._channel

            connection = await self.acquire_connection()
            if connection is None:
                return None

            try:
                channel = await connection.create_channel()
            except Exception as e:
                self.logger.error(f"Failed to create channel: {e}")
                await self._handle_error(ChannelCreationError(
                    f"Failed to create channel: {e}",
                    cause=e,
                ))
                return None

            self._channel = channel
            self.logger.debug("Channel created")
            return channel

    async def _require_channel(self, destination: str) -> ChannelHandle:
        channel = await self.acquire_channel()
        if channel is None:
            raise ChannelUnavailableError(
                f"No channel available for {destination}",
                destination,
            )
        return channel

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def serialize_message(self, message: Any) -> Any:
        """Turn an application message into bytes. Override to customise."""
        return self._serializer(message)

    def _serialize(self, message: Any, destination: str) -> bytes:
        try:
            data = self.serialize_message(message)
        except Exception as e:
            raise InvalidPayloadError(
                f"Message could not be serialized: {e}",
                destination,
                type(message).__name__,
                cause=e,
            ) from e

        if isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        if not isinstance(data, bytes):
            raise InvalidPayloadError(
                "Message must serialize to bytes",
                destination,
                type(data).__name__,
            )
        return data

    async def publish(
        self,
        message: Any,
        options: Options = None,
        destination: Optional[str] = None,
        channel: Optional[ChannelHandle] = None,
    ) -> None:
        """
        Publish a message to the worker's destination.

        Returns once the client call has been issued; broker confirmation
        is not awaited.

        Args:
            message: Message to publish (bytes unless a serializer is set)
            options: Publish options merged over the worker defaults
            destination: Queue override
            channel: Channel override (skips channel acquisition)

        Raises:
            MissingDestinationError: If no destination is set
            InvalidPayloadError: If the message does not serialize to bytes
            ChannelUnavailableError: If no channel could be acquired
            PublishError: If the client rejected the publish call
        """
        destination = destination or self._destination
        if not _is_destination(destination):
            raise MissingDestinationError()

        data = self._serialize(message, destination)
        publish_options = merge_options(self._publish_options, options)

        if channel is None:
            channel = await self._require_channel(destination)

        try:
            await channel.publish(destination, data, publish_options)
        except Exception as e:
            raise PublishError(
                f"Failed to publish message: {e}",
                destination,
                cause=e,
            ) from e

        self.logger.debug(f"Published {len(data)} bytes to {destination}")

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    async def handle_message(self, message: Any) -> None:
        """
        Process one delivered message.

        Calls the ``message_handler`` given to the constructor. Subclasses
        may override this instead.

        Raises:
            UnimplementedHandlerError: If no handler was provided
        """
        if self._message_handler is None:
            raise UnimplementedHandlerError(destination=self._destination)
        await _maybe_await(self._message_handler(message))

    def _has_message_handler(self) -> bool:
        return (
            self._message_handler is not None
            or type(self).handle_message is not QueueWorker.handle_message
        )

    async def _deliver(self, message: Any) -> None:
        try:
            await _maybe_await(self.handle_message(message))
        except Exception as e:
            self.logger.error(f"Error processing message: {e}", exc_info=e)
            if self._error_sink is None:
                return
            error = MessageHandlerError(
                f"Message handler failed: {e}",
                destination=self._destination,
                cause=e,
            )
            try:
                await _maybe_await(self._error_sink(error))
            except Exception as sink_error:
                self.logger.error(f"Error sink failed: {sink_error}", exc_info=sink_error)

    async def subscribe(
        self,
        declare_options: Options = None,
        consume_options: Options = None,
    ) -> ConsumerHandle:
        """
        Declare the destination queue and attach the worker's consumer.

        Args:
            declare_options: Declare options merged over the worker defaults
            consume_options: Consume options merged over the worker defaults

        Returns:
            ConsumerHandle: Handle carrying the consumer tag

        Raises:
            DuplicateListenerError: If a consumer is already attached
            MissingDestinationError: If no destination is set
            UnimplementedHandlerError: If no message handler was provided
            ChannelUnavailableError: If no channel could be acquired
        """
        async with self._subscribe_lock:
            if self._listening:
                raise DuplicateListenerError(self._destination)

            destination = self._destination
            if not _is_destination(destination):
                raise MissingDestinationError()

            if not self._has_message_handler():
                raise UnimplementedHandlerError(destination=destination)

            declare_options = merge_options(self._declare_options, declare_options)
            consume_options = merge_options(self._consume_options, consume_options)

            channel = await self._require_channel(destination)
            await channel.declare(destination, declare_options)
            consumer = await channel.consume(destination, self._deliver, consume_options)

            self._consumer = consumer
            self._listening = True
            self.logger.info(f"Listening on {destination} (consumer {consumer.tag})")
            return consumer

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _release(self) -> None:
        self._channel = None
        self._connection = None

    async def _close_orphaned_connection(self) -> None:
        # The channel failed to close; the connection is about to be dropped
        try:
            await self._connection.close()
        except Exception as e:
            self.logger.error(f"Failed to close connection after channel close failure: {e}")

    async def teardown(self) -> None:
        """
        Run the before-teardown hook, then close the channel and connection.

        On a failed close the handles are retained, cleared or the worker is
        marked defunct, according to ``teardown_policy``.

        Raises:
            TeardownError: If the hook or a close call failed
        """
        self.logger.info("Tearing down worker")

        if self._before_teardown is not None:
            try:
                await _maybe_await(self._before_teardown())
            except Exception as e:
                raise TeardownError(
                    f"before_teardown hook failed: {e}",
                    "before_teardown",
                    cause=e,
                ) from e

        async with self._channel_lock, self._connection_lock:
            step = "close_channel"
            try:
                if self._channel is not None:
                    await self._channel.close()
                step = "close_connection"
                if self._connection is not None:
                    await self._connection.close()
            except Exception as e:
                if self._teardown_policy != "retain":
                    if step == "close_channel" and self._connection is not None:
                        await self._close_orphaned_connection()
                    self._release()
                if self._teardown_policy == "defunct":
                    self._defunct = True
                self.logger.error(
                    f"Teardown failed at {step} (policy {self._teardown_policy}): {e}"
                )
                raise TeardownError(
                    f"Teardown failed at {step}: {e}",
                    step,
                    cause=e,
                ) from e

            self._release()
            self._consumer = None
            if self._reset_listening_on_teardown:
                self._listening = False

        self.logger.info("Worker torn down")

    async def __aenter__(self) -> "QueueWorker":
        await self.acquire_channel()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.teardown()
