from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from registry import connection_registry
from rooms import RoomRouter
from calls import CallBroker
from dispatcher import Dispatcher
from constants import CORS_ORIGINS, RING_SWEEP_INTERVAL_SECONDS, RING_TIMEOUT_SECONDS
from schemas.events import Outgoing
import json
import asyncio
from typing import Dict, Iterable
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

room_router = RoomRouter(connection_registry)
call_broker = CallBroker(connection_registry, ring_timeout=RING_TIMEOUT_SECONDS)
dispatcher = Dispatcher(connection_registry, room_router, call_broker)

# Outbound frame queue per live connection
# Format: {connection_id: asyncio.Queue of frames}
# Envelopes are queued synchronously in the order they are produced, and a single
# writer task per connection drains its queue, so per-sender order is kept.
outbound_queues: Dict[str, asyncio.Queue] = {}


def deliver(outgoing: Iterable[Outgoing]):
    """Queue envelopes for their target connections. Targets that are gone are skipped."""
    for envelope in outgoing:
        queue = outbound_queues.get(envelope.target)
        if queue is None:
            logger.debug(f"Dropping {envelope.event.value} for {envelope.target}: connection is gone")
            continue
        queue.put_nowait(envelope.to_frame())


async def write_to_socket(connection_id: str, websocket: WebSocket, queue: asyncio.Queue):
    """Background task that sends queued frames to one connection in order."""
    try:
        while True:
            frame = await queue.get()
            await websocket.send_text(json.dumps(frame))
            logger.debug(f"Sent {frame['event']} to connection {connection_id}")
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"Stopped writing to connection {connection_id}: {e}")
        # Nothing drains this queue any more
        if outbound_queues.get(connection_id) is queue:
            outbound_queues.pop(connection_id, None)


async def sweep_ringing_calls(interval: float):
    """Background task that ends calls left ringing past the ring timeout."""
    logger.info(f"Ringing call sweep started (timeout {RING_TIMEOUT_SECONDS}s, every {interval}s)")
    while True:
        await asyncio.sleep(interval)
        try:
            deliver(call_broker.expire_ringing())
        except Exception as e:
            logger.error(f"Error sweeping ringing calls: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_task = None
    if RING_TIMEOUT_SECONDS > 0:
        sweep_task = asyncio.create_task(sweep_ringing_calls(RING_SWEEP_INTERVAL_SECONDS))
    yield
    if sweep_task:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            logger.info("Ringing call sweep stopped")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling and chat relay for one client.

    The connection identity is announced to the client in a `connected` envelope
    right after the handshake; it is the address other clients use to call it.
    """
    await websocket.accept()
    connection_id, greeting = dispatcher.connect()
    queue = asyncio.Queue()
    outbound_queues[connection_id] = queue
    writer = asyncio.create_task(write_to_socket(connection_id, websocket, queue))
    logger.info(f"WebSocket connection {connection_id} accepted (live connections: {connection_registry.connection_count()})")
    deliver(greeting)

    message_count = 0
    try:
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection_id}")
            deliver(dispatcher.handle_frame(connection_id, data))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"Error receiving from connection {connection_id}: {e}", exc_info=True)
    finally:
        # Stop queueing to this connection before its state is torn down
        outbound_queues.pop(connection_id, None)
        deliver(dispatcher.disconnect(connection_id))
        logger.info(f"Connection {connection_id} cleaned up after {message_count} frames")

        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
