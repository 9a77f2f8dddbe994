"""WebSocket handler for live graph updates.

This module handles the push channel: each connection registers a
QueueSubscriber with the Broadcaster for one root, forwards its events to
the client, and accepts small commands (ping, refresh) from the client.
"""

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from config import settings
from events import GraphEvent, GraphEventType, QueueSubscriber

if TYPE_CHECKING:
    from sync_manager import SyncManager

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

# Close code for connections to a root that is not tracked.
WS_CLOSE_ROOT_NOT_TRACKED = 4404

_sync_manager: "SyncManager | None" = None


def set_sync_manager(manager: "SyncManager") -> None:
    """Set the sync manager used by WebSocket handlers."""
    global _sync_manager
    _sync_manager = manager
    logger.info("websocket_sync_manager_configured")


def get_sync_manager() -> "SyncManager":
    """Return configured sync manager for WebSocket handlers."""
    if _sync_manager is None:
        raise RuntimeError(
            "SyncManager not configured for WebSocket handlers. "
            "Call set_sync_manager() during startup."
        )
    return _sync_manager


@websocket_router.websocket("/ws/{root_id}")
async def websocket_endpoint(websocket: WebSocket, root_id: str) -> None:
    """WebSocket endpoint for live snapshot streaming.

    This endpoint handles bidirectional communication:
    - Server -> Client: connected, update (full snapshot), error, closed events
    - Client -> Server: Commands (ping, refresh)

    Args:
        websocket: The WebSocket connection.
        root_id: The root whose snapshots to stream.
    """
    manager = get_sync_manager()
    await websocket.accept()

    if not manager.is_tracked(root_id):
        logger.warning("websocket_root_not_tracked", root_id=root_id)
        await websocket.close(code=WS_CLOSE_ROOT_NOT_TRACKED, reason=f"Root {root_id} is not tracked")
        return

    subscriber = QueueSubscriber(
        root_id,
        max_queue_size=settings.subscriber_queue_size,
        send_timeout_seconds=settings.subscriber_send_timeout_seconds,
    )
    logger.info("websocket_connected", root_id=root_id, subscriber_id=subscriber.subscriber_id)

    try:
        connected = GraphEvent(
            type=GraphEventType.CONNECTED,
            root_id=root_id,
            data={"subscriber_id": subscriber.subscriber_id},
        )
        await websocket.send_json(connected.model_dump(mode="json"))

        # Registration pushes the current snapshot into the queue, if any.
        await manager.broadcaster.add_subscriber(root_id, subscriber)

        async def send_events() -> None:
            """Forward queued events to the WebSocket client."""
            try:
                while True:
                    event = await subscriber.get()
                    await websocket.send_json(event.model_dump(mode="json"))
                    # CLOSED is the sentinel from close(); stop after forwarding it.
                    if event.type == GraphEventType.CLOSED:
                        logger.info("subscriber_closed_sentinel", root_id=root_id)
                        break
                    logger.debug("event_sent", root_id=root_id, event_type=event.type.value)
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send", root_id=root_id)
            except Exception as e:
                logger.error("websocket_send_error", root_id=root_id, error=str(e))

        async def receive_commands() -> None:
            """Receive and process commands from the WebSocket client."""
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message", root_id=root_id)
                        continue
                    command_type = data.get("type")

                    logger.info("command_received", root_id=root_id, command_type=command_type)

                    if command_type == "ping":
                        await websocket.send_json(
                            {"type": "pong", "timestamp": data.get("timestamp")}
                        )
                    elif command_type == "refresh":
                        await handle_refresh_command(root_id)
                    else:
                        logger.warning(
                            "unknown_command",
                            root_id=root_id,
                            command_type=command_type,
                        )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive", root_id=root_id)
            except Exception as e:
                logger.error("websocket_receive_error", root_id=root_id, error=str(e))

        send_task = asyncio.create_task(send_events())
        receive_task = asyncio.create_task(receive_commands())

        # Wait for either task to complete (usually due to disconnect)
        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", root_id=root_id)
    except Exception as e:
        logger.error("websocket_error", root_id=root_id, error=str(e))
    finally:
        manager.broadcaster.remove_subscriber(root_id, subscriber)
        await subscriber.close()
        logger.info("websocket_cleanup_complete", root_id=root_id)


async def handle_refresh_command(root_id: str) -> None:
    """Handle a refresh command from the WebSocket client.

    The refreshed snapshot arrives through the normal broadcast path.
    """
    manager = get_sync_manager()
    try:
        await manager.refresh_root(root_id)
    except Exception as e:
        logger.warning("refresh_command_failed", root_id=root_id, error=str(e))
