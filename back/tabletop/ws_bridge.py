"""
WebSocket Bridge

Subscribes to the Redis order channels and tells connected views to refresh.
- orders:table:{table_id} - the customer's order status page
- orders:restaurant:{restaurant_id} - kitchen, bar, wait and dashboard views

The first message on an accepted socket is {"type": "subscribed"}. After that
clients get {"type": "refresh", ...} and refetch over HTTP (customers from
GET /order/{token}/orders). No order data is pushed through the socket.

Run with: uvicorn tabletop.ws_bridge:app
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .permissions import VIEW_ROLES, can_access_view
from .realtime import ChangeHub
from .security import decode_access_token
from .settings import settings
from .table_tokens import decode_table_token

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008
RECONNECT_DELAY_SECONDS = 5

hub = ChangeHub()


def refresh_message(event: dict) -> dict:
    return {
        "type": "refresh",
        "event": event.get("type"),
        "order_id": event.get("order_id"),
        "status": event.get("status"),
    }


async def broadcast(channel: str, data: str | bytes) -> int:
    """Send a refresh to every socket on the channel. Returns how many were reached."""
    try:
        event = json.loads(data)
    except ValueError:
        logger.warning(f"Dropping malformed message on {channel}")
        return 0
    if not isinstance(event, dict):
        logger.warning(f"Dropping non-object message on {channel}")
        return 0
    return await hub.dispatch(channel, event)


async def redis_listener():
    """Subscribe to Redis and forward to the hub, reconnecting on failure."""
    while True:
        try:
            r = redis.from_url(settings.redis_url)
            pubsub = r.pubsub()
            await pubsub.psubscribe("orders:*")

            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode()
                await broadcast(channel, message["data"])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Redis connection error: {e}", exc_info=True)
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(redis_listener())
    yield
    task.cancel()


app = FastAPI(title="Tabletop WS Bridge", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "table_connections": hub.count("table"),
        "restaurant_connections": hub.count("restaurant"),
        "total_connections": hub.count(),
    }


async def _hold_open(websocket: WebSocket, subscription) -> None:
    scope, scope_id = subscription.key
    try:
        # The listener is registered from here on
        await websocket.send_json({"type": "subscribed", "channel": f"orders:{scope}:{scope_id}"})
        while True:
            # Incoming messages are ignored; the loop only detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()


def _sender(websocket: WebSocket):
    async def send(event: dict) -> None:
        await websocket.send_json(refresh_message(event))
    return send


@app.websocket("/ws/table/{table_token}")
async def websocket_table_endpoint(websocket: WebSocket, table_token: str):
    """Customers: only updates for the table the QR code names."""
    await websocket.accept()

    payload = decode_table_token(table_token)
    if payload is None:
        logger.warning("Rejected table socket with invalid token")
        await websocket.close(code=POLICY_VIOLATION, reason="Invalid table token")
        return

    subscription = hub.subscribe_table(payload.table_id, _sender(websocket))
    await _hold_open(websocket, subscription)


@app.websocket("/ws/restaurant/{restaurant_id}/{view}")
async def websocket_restaurant_endpoint(
    websocket: WebSocket,
    restaurant_id: str,
    view: str,
    token: str | None = Query(None),
):
    """Staff views: requires a JWT for this restaurant whose role may open `view`."""
    await websocket.accept()

    if view not in VIEW_ROLES:
        await websocket.close(code=POLICY_VIOLATION, reason="Unknown view")
        return

    claims = decode_access_token(token) if token else None
    if claims is None:
        logger.warning(f"Rejected {view} socket for restaurant {restaurant_id}: bad token")
        await websocket.close(code=POLICY_VIOLATION, reason="Invalid authentication token")
        return

    if claims["restaurant_id"] != restaurant_id:
        logger.warning(f"Rejected {view} socket: token is for restaurant {claims['restaurant_id']}")
        await websocket.close(code=POLICY_VIOLATION, reason="Restaurant mismatch")
        return

    if not can_access_view(claims.get("role"), view):
        await websocket.close(code=POLICY_VIOLATION, reason="Not authorized")
        return

    subscription = hub.subscribe_restaurant(restaurant_id, _sender(websocket))
    await _hold_open(websocket, subscription)
