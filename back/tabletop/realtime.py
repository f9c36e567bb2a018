"""
Order change notifications.

The API publishes a small event to Redis after every write to orders or order
items. The WebSocket bridge fans those events out to subscribed views, and each
view answers any event with a full refetch of its order list.

Channels:
- orders:restaurant:{restaurant_id} - staff views of a restaurant
- orders:table:{table_id} - the customer at a table
"""
import inspect
import json
import logging
from typing import Any, Callable

import redis

from .settings import settings

logger = logging.getLogger(__name__)

RESTAURANT_CHANNEL = "orders:restaurant:{}"
TABLE_CHANNEL = "orders:table:{}"

redis_client: redis.Redis | None = None


def get_redis() -> redis.Redis | None:
    global redis_client
    if redis_client is None:
        try:
            client = redis.from_url(settings.redis_url)
            client.ping()
            redis_client = client
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable at {settings.redis_url}: {e}")
            redis_client = None
    return redis_client


def publish_order_change(
    restaurant_id: str,
    event_type: str,
    order_id: str,
    table_id: str | None = None,
    status: str | None = None,
) -> dict:
    """Publish an order change. A Redis failure is logged, never raised."""
    event = {
        "type": event_type,
        "restaurant_id": restaurant_id,
        "order_id": order_id,
        "table_id": table_id,
        "status": status,
    }
    r = get_redis()
    if r is None:
        return event

    data = json.dumps(event)
    try:
        r.publish(RESTAURANT_CHANNEL.format(restaurant_id), data)
        if table_id is not None:
            r.publish(TABLE_CHANNEL.format(table_id), data)
    except redis.RedisError as e:
        logger.warning(f"Failed to publish {event_type} for order {order_id}: {e}")
    return event


def parse_channel(channel: str) -> tuple[str, str] | None:
    """'orders:restaurant:abc' -> ('restaurant', 'abc')"""
    parts = channel.split(":", 2)
    if len(parts) != 3 or parts[0] != "orders" or parts[1] not in ("restaurant", "table"):
        return None
    return parts[1], parts[2]


class Subscription:
    """Handle for one registered listener. close() releases it exactly once."""

    def __init__(self, hub: "ChangeHub", key: tuple[str, str], on_change: Callable[[dict], Any]):
        self._hub = hub
        self.key = key
        self.on_change = on_change
        self.closed = False

    def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self._hub._release(self)
        return True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class ChangeHub:
    """In-process registry of listeners keyed by (scope, id)."""

    def __init__(self):
        self._subscriptions: dict[tuple[str, str], set[Subscription]] = {}

    def subscribe(self, scope: str, scope_id: str, on_change: Callable[[dict], Any]) -> Subscription:
        subscription = Subscription(self, (scope, scope_id), on_change)
        self._subscriptions.setdefault(subscription.key, set()).add(subscription)
        return subscription

    def subscribe_restaurant(self, restaurant_id: str, on_change: Callable[[dict], Any]) -> Subscription:
        return self.subscribe("restaurant", restaurant_id, on_change)

    def subscribe_table(self, table_id: str, on_change: Callable[[dict], Any]) -> Subscription:
        return self.subscribe("table", table_id, on_change)

    def _release(self, subscription: Subscription) -> None:
        listeners = self._subscriptions.get(subscription.key)
        if listeners is None:
            return
        listeners.discard(subscription)
        if not listeners:
            del self._subscriptions[subscription.key]

    def listeners(self, scope: str, scope_id: str) -> list[Subscription]:
        return list(self._subscriptions.get((scope, scope_id), ()))

    def count(self, scope: str | None = None) -> int:
        return sum(
            len(subs) for key, subs in self._subscriptions.items()
            if scope is None or key[0] == scope
        )

    async def dispatch(self, channel: str, event: dict) -> int:
        """
        Deliver an event to every listener on the channel. Listeners may be
        plain or async callables; one that raises is released. Returns how
        many listeners took the event.
        """
        parsed = parse_channel(channel)
        if parsed is None:
            logger.debug(f"Ignoring message on unknown channel {channel}")
            return 0

        delivered = 0
        for subscription in self.listeners(*parsed):
            try:
                result = subscription.on_change(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                # Dead socket; its handler's finally block may not have run yet
                logger.info(f"Dropping listener on {channel}: {e}")
                subscription.close()
        return delivered


class ViewRefresher:
    """
    Keeps a view's order list current by refetching everything on each change.
    No incremental merging: the latest fetch replaces the previous list.
    """

    def __init__(self, hub: ChangeHub, restaurant_id: str, fetch: Callable[[], list]):
        self.fetch = fetch
        self.orders: list = fetch()
        self.refresh_count = 0
        self.subscription = hub.subscribe_restaurant(restaurant_id, self._on_change)

    def _on_change(self, event: dict) -> None:
        self.orders = self.fetch()
        self.refresh_count += 1

    def close(self) -> bool:
        return self.subscription.close()
