"""Keeps a process-local rooms board cache in step with the events exchange."""
from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

import pika
from pika.exceptions import AMQPError
from pydantic import ValidationError

from .cache import ROOMS_BOARD_KEY, SimpleTTLCache, rooms_board_cache
from .events import RoomsSnapshotChanged
from .notifier import RoomSnapshotCacheNotifier

logger = logging.getLogger(__name__)


class RoomsBoardSubscriber:
    """Consumes ``roomsUpdated`` broadcasts and writes them into the board cache.

    Each subscriber binds its own exclusive queue to the fanout exchange, so
    every rooms process sees every snapshot. While the broker is unreachable
    ``is_listening`` is false and the cache entry is dropped; readers should
    go to the database until the subscription is back.
    """

    def __init__(
        self,
        url: str,
        exchange: str,
        cache: SimpleTTLCache[list[dict[str, Any]]] = rooms_board_cache,
        retry_delay: float = 5.0,
    ) -> None:
        self.parameters = pika.URLParameters(url)
        self.exchange = exchange
        self.cache = cache
        self.retry_delay = retry_delay
        self._writer = RoomSnapshotCacheNotifier(cache)
        self._listening = threading.Event()
        self._stopping = threading.Event()
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel: Any = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_listening(self) -> bool:
        return self._listening.is_set()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="rooms-board-subscriber", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        connection, channel = self._connection, self._channel
        if connection is not None and channel is not None:
            try:
                connection.add_callback_threadsafe(channel.stop_consuming)
            except AMQPError:
                logger.debug("Subscriber connection already closed")
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def handle(self, body: bytes) -> None:
        try:
            message = json.loads(body)
        except ValueError:
            logger.warning("Ignoring undecodable message on %s", self.exchange)
            return
        if not isinstance(message, dict) or message.get("event") != "roomsUpdated":
            return
        try:
            event = RoomsSnapshotChanged.model_validate(message)
        except ValidationError:
            logger.warning("Ignoring malformed roomsUpdated message on %s", self.exchange)
            return
        self._writer.publish(event)

    def _on_message(self, channel, method, properties, body: bytes) -> None:
        self.handle(body)

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                self._consume()
            except AMQPError as exc:
                logger.warning("Rooms board subscriber lost the broker: %s", exc)
            self._stopping.wait(self.retry_delay)

    def _consume(self) -> None:
        connection = pika.BlockingConnection(self.parameters)
        self._connection = connection
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=self.exchange, exchange_type="fanout", durable=True)
            queue_name = channel.queue_declare(queue="", exclusive=True).method.queue
            channel.queue_bind(exchange=self.exchange, queue=queue_name)
            channel.basic_consume(queue=queue_name, on_message_callback=self._on_message, auto_ack=True)
            self._channel = channel
            if self._stopping.is_set():
                return
            self.cache.pop(ROOMS_BOARD_KEY)
            self._listening.set()
            logger.info("Rooms board subscribed to %s", self.exchange)
            channel.start_consuming()
        finally:
            self._listening.clear()
            self.cache.pop(ROOMS_BOARD_KEY)
            self._channel = None
            self._connection = None
            if connection.is_open:
                connection.close()
