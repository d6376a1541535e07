"""Change notifiers: where booking events go after commit."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Protocol

import pika
from circuitbreaker import circuit
from pika.exceptions import AMQPError
from sqlalchemy import select
from sqlalchemy.orm import Session

from .cache import ROOMS_BOARD_KEY, SimpleTTLCache, rooms_board_cache
from .config import Settings
from .errors import ConfigurationError, NotifierFailure
from .events import BookingCreated, ChangeNotifier, Event, RoomsSnapshotChanged
from .models import NotificationSubscription

logger = logging.getLogger(__name__)

PUSH_ICON = "/icon-192.png"


class SubscriptionExpired(NotifierFailure):
    detail = "Push subscription is no longer valid"


class CompositeNotifier:
    """Fans each event out to several notifiers; one failing does not stop the rest."""

    def __init__(self, notifiers: Iterable[ChangeNotifier]) -> None:
        self.notifiers: List[ChangeNotifier] = list(notifiers)
        if not self.notifiers:
            raise ConfigurationError("CompositeNotifier needs at least one notifier")

    def publish(self, event: Event) -> None:
        for notifier in self.notifiers:
            try:
                notifier.publish(event)
            except Exception:
                logger.exception("%s failed on %s event", type(notifier).__name__, event.event)


class LoggingNotifier:
    def publish(self, event: Event) -> None:
        logger.info("event=%s payload=%s", event.event, event.model_dump_json())


class RoomSnapshotCacheNotifier:
    """Keeps the rooms board cache equal to the last committed snapshot."""

    def __init__(self, cache: SimpleTTLCache[list[dict[str, Any]]] = rooms_board_cache) -> None:
        self.cache = cache

    def publish(self, event: Event) -> None:
        if isinstance(event, RoomsSnapshotChanged):
            self.cache.set(ROOMS_BOARD_KEY, [room.model_dump(mode="json") for room in event.rooms])


class RabbitMQPublisher:
    """Publishes JSON messages over short-lived blocking connections."""

    def __init__(self, url: str) -> None:
        self.parameters = pika.URLParameters(url)

    @circuit(failure_threshold=5, recovery_timeout=60)
    def broadcast(self, exchange: str, message: Dict[str, Any]) -> None:
        self._publish(message, exchange=exchange, routing_key="", fanout=True)

    @circuit(failure_threshold=5, recovery_timeout=60)
    def enqueue(self, queue: str, message: Dict[str, Any]) -> None:
        self._publish(message, exchange="", routing_key=queue, fanout=False)

    def _publish(self, message: Dict[str, Any], exchange: str, routing_key: str, fanout: bool) -> None:
        try:
            connection = pika.BlockingConnection(self.parameters)
        except AMQPError as exc:
            raise NotifierFailure(f"RabbitMQ unreachable: {exc}") from exc
        try:
            channel = connection.channel()
            if fanout:
                channel.exchange_declare(exchange=exchange, exchange_type="fanout", durable=True)
            else:
                channel.queue_declare(queue=routing_key, durable=True)
            channel.basic_publish(
                exchange=exchange,
                routing_key=routing_key,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
            )
        except AMQPError as exc:
            raise NotifierFailure(f"RabbitMQ publish failed: {exc}") from exc
        finally:
            if connection.is_open:
                connection.close()


class BrokerBroadcastNotifier:
    """Real-time fan-out: every event goes to the events exchange."""

    def __init__(self, publisher: RabbitMQPublisher, exchange: str) -> None:
        self.publisher = publisher
        self.exchange = exchange

    def publish(self, event: Event) -> None:
        self.publisher.broadcast(self.exchange, event.model_dump(mode="json"))


class PushGateway(Protocol):
    def send(self, subscription: Dict[str, Any], payload: Dict[str, str]) -> None:
        ...


class QueuedPushGateway:
    """Hands push jobs to the delivery worker through a durable queue."""

    def __init__(self, publisher: RabbitMQPublisher, queue: str) -> None:
        self.publisher = publisher
        self.queue = queue

    def send(self, subscription: Dict[str, Any], payload: Dict[str, str]) -> None:
        self.publisher.enqueue(self.queue, {"subscription": subscription, "payload": payload})


def _is_valid(subscription: NotificationSubscription) -> bool:
    return bool(subscription.endpoint and subscription.p256dh and subscription.auth)


def _as_web_push(subscription: NotificationSubscription) -> Dict[str, Any]:
    return {
        "endpoint": subscription.endpoint,
        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
    }


class PushNotifier:
    """Tells every other professor that a room was just booked."""

    def __init__(self, session_factory: Callable[[], Session], gateway: PushGateway) -> None:
        self.session_factory = session_factory
        self.gateway = gateway

    def publish(self, event: Event) -> None:
        if not isinstance(event, BookingCreated):
            return
        booking = event.booking
        db = self.session_factory()
        try:
            subscriptions = list(
                db.scalars(select(NotificationSubscription).where(NotificationSubscription.user_id != booking.user_id))
            )
            if not subscriptions:
                logger.info("No push subscriptions to notify for booking %s", booking.id)
                return

            valid = []
            for subscription in subscriptions:
                if _is_valid(subscription):
                    valid.append(subscription)
                else:
                    logger.warning("Skipping malformed push subscription %s", subscription.id)

            payload = {
                "title": f"New Booking: Room {booking.room_number}",
                "body": f"Booked by {booking.user.name or 'Unknown'} for {booking.purpose or 'Unknown purpose'}",
                "icon": PUSH_ICON,
            }
            for subscription in valid:
                try:
                    self.gateway.send(_as_web_push(subscription), payload)
                except SubscriptionExpired:
                    logger.info("Removing expired push subscription %s", subscription.endpoint)
                    db.delete(subscription)
                except NotifierFailure as exc:
                    logger.warning("Push to %s failed: %s", subscription.endpoint, exc)
            db.commit()
        finally:
            db.close()


def build_notifier(settings: Settings, session_factory: Callable[[], Session]) -> CompositeNotifier:
    notifiers: List[ChangeNotifier] = [RoomSnapshotCacheNotifier()]
    if settings.notifier_backend == "log":
        notifiers.append(LoggingNotifier())
    elif settings.notifier_backend == "rabbitmq":
        publisher = RabbitMQPublisher(settings.rabbitmq_url)
        notifiers.append(BrokerBroadcastNotifier(publisher, settings.events_exchange))
        notifiers.append(PushNotifier(session_factory, QueuedPushGateway(publisher, settings.push_queue)))
    else:
        raise ConfigurationError(f"Unknown notifier backend: {settings.notifier_backend}")
    return CompositeNotifier(notifiers)
