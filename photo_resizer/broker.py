"""
RabbitMQ connection handling.

`ConnectionSupervisor` owns the worker's single connection/channel pair and
rebuilds it from scratch after any fault: transport errors, missed
heartbeats, or the broker closing the connection or channel. There is no
retry limit and no exponential backoff; the worker has nothing else to do
while the broker is away, and the durable queue keeps buffering work.

`QueuePublisher` is the producer side used by the ingestion API.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection
from pika.exceptions import AMQPError

from . import config

logger = logging.getLogger(__name__)

# (channel, method, properties, body), as passed by BlockingChannel.basic_consume
MessageCallback = Callable[[BlockingChannel, Any, pika.BasicProperties, bytes], None]
ConnectionFactory = Callable[[pika.URLParameters], BlockingConnection]

PERSISTENT_DELIVERY = 2


def queue_arguments(settings: config.Settings) -> Optional[Dict[str, str]]:
    if settings.dead_letter_exchange:
        return {"x-dead-letter-exchange": settings.dead_letter_exchange}
    return None


def declare_queue(channel: BlockingChannel, settings: config.Settings) -> None:
    channel.queue_declare(
        queue=settings.queue_name,
        durable=True,
        arguments=queue_arguments(settings),
    )


def connection_parameters(settings: config.Settings) -> pika.URLParameters:
    return pika.URLParameters(settings.amqp_url())


class ConnectionSupervisor:
    """Keeps a consumer attached to the work queue for the life of the process."""

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        connection_factory: ConnectionFactory = pika.BlockingConnection,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings or config.get_settings()
        self._connection_factory = connection_factory
        self._sleep = sleep
        self._connection: Optional[BlockingConnection] = None
        self._channel: Optional[BlockingChannel] = None
        self._stopping = False

    @property
    def current_channel(self) -> Optional[BlockingChannel]:
        """The live channel, or None while disconnected."""
        if self._channel is not None and self._channel.is_open:
            return self._channel
        return None

    def connect(self) -> BlockingChannel:
        """Open a new connection and channel, declare the queue, and limit prefetch to one."""
        connection = self._connection_factory(connection_parameters(self._settings))
        try:
            channel = connection.channel()
            declare_queue(channel, self._settings)
            channel.basic_qos(prefetch_count=1)
        except AMQPError:
            self._close_quietly(connection)
            raise
        self._connection = connection
        self._channel = channel
        logger.info("[AMQP] connected, consuming from queue %s", self._settings.queue_name)
        return channel

    def on_fault(self, exc: BaseException) -> None:
        """Discard the current connection/channel pair; it is never repaired in place."""
        logger.error("[AMQP] %s: %s", type(exc).__name__, exc)
        self._teardown()

    def run(self, on_message: MessageCallback) -> None:
        """
        Consume until `stop()` is called, reconnecting after every fault.

        Blocks the calling thread. Messages are delivered one at a time to
        `on_message`, which is responsible for acking.
        """
        self._stopping = False
        delay = self._settings.reconnect_delay_seconds
        while not self._stopping:
            try:
                channel = self.connect()
                channel.basic_consume(
                    queue=self._settings.queue_name,
                    on_message_callback=on_message,
                    auto_ack=False,
                )
                channel.start_consuming()
            except AMQPError as exc:
                if self._stopping:
                    break
                self.on_fault(exc)
            else:
                if self._stopping:
                    break
                # Consumer was cancelled or the channel closed without an error.
                self.on_fault(ConnectionError("consumer stopped unexpectedly"))
            logger.error("[AMQP] reconnecting in %ss", delay)
            self._sleep(delay)
        self._teardown()

    def stop(self) -> None:
        """
        Request a clean shutdown of `run()`.

        Safe to call from a signal handler or another thread: the actual
        `stop_consuming` is scheduled onto the connection's own I/O loop.
        """
        self._stopping = True
        channel = self.current_channel
        connection = self._connection
        if channel is not None and connection is not None:
            try:
                connection.add_callback_threadsafe(channel.stop_consuming)
            except AMQPError as exc:
                logger.debug("[AMQP] could not schedule stop_consuming: %s", exc)

    def close(self) -> None:
        self._stopping = True
        self._teardown()

    def _teardown(self) -> None:
        connection = self._connection
        self._connection = None
        self._channel = None
        if connection is not None:
            self._close_quietly(connection)

    @staticmethod
    def _close_quietly(connection: BlockingConnection) -> None:
        if not connection.is_open:
            return
        try:
            connection.close()
        except AMQPError as exc:
            logger.debug("[AMQP] error while closing connection: %s", exc)


class QueuePublisher:
    """Publishes photo ids for the worker; one short-lived connection per publish."""

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        connection_factory: ConnectionFactory = pika.BlockingConnection,
    ):
        self._settings = settings or config.get_settings()
        self._connection_factory = connection_factory

    def publish(self, photo_id: Any) -> None:
        connection = self._connection_factory(connection_parameters(self._settings))
        try:
            channel = connection.channel()
            declare_queue(channel, self._settings)
            channel.basic_publish(
                exchange="",
                routing_key=self._settings.queue_name,
                body=str(photo_id).encode("utf-8"),
                properties=pika.BasicProperties(delivery_mode=PERSISTENT_DELIVERY),
            )
            logger.info("Queued photo %s on %s", photo_id, self._settings.queue_name)
        finally:
            if connection.is_open:
                connection.close()
