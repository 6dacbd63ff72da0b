"""WebSocket connection manager: topic broadcasts to dashboard sessions."""

import asyncio
import logging
from typing import Set, Dict, Any
from datetime import datetime, timezone
from fastapi import WebSocket, WebSocketDisconnect

from models import BroadcastMessage

logger = logging.getLogger(__name__)

class WebSocketManager:
    """Manages WebSocket connections and per-topic broadcasts.

    Delivery is best effort: clients that are not connected when a message
    is broadcast never see it.
    """

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self.active_connections: Dict[WebSocket, str] = {}
        self.connection_info: Dict[WebSocket, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, topic: str) -> None:
        """Accept a new WebSocket connection subscribed to ``topic``."""
        await websocket.accept()
        self.active_connections[websocket] = topic

        # Store connection info
        self.connection_info[websocket] = {
            'topic': topic,
            'connected_at': datetime.now(timezone.utc),
            'client_info': websocket.headers.get('user-agent', 'Unknown')
        }

        logger.info(f"New WebSocket connection on {topic}. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.pop(websocket)
            self.connection_info.pop(websocket, None)
            logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    def subscribers(self, topic: str) -> Set[WebSocket]:
        return {ws for ws, ws_topic in self.active_connections.items() if ws_topic == topic}

    async def broadcast(self, topic: str, message: BroadcastMessage) -> int:
        """Broadcast a message to every subscriber of ``topic``; returns how many received it."""
        targets = self.subscribers(topic)
        if not targets:
            return 0
        delivered = await self._broadcast_message(targets, message)
        logger.debug(f"Broadcasted {message.event} on {topic} to {delivered}/{len(targets)} clients")
        return delivered

    async def send_heartbeat(self) -> None:
        """Send heartbeat to all connected clients."""
        if not self.active_connections:
            return

        message = BroadcastMessage(
            event="heartbeat",
            data={"server_time": datetime.now(timezone.utc).isoformat()}
        )

        await self._broadcast_message(set(self.active_connections), message)

    async def send_message(self, websocket: WebSocket, message: BroadcastMessage) -> None:
        """Send a message to a specific WebSocket."""
        await websocket.send_text(message.model_dump_json())

    async def _broadcast_message(self, targets: Set[WebSocket], message: BroadcastMessage) -> int:
        """Send to the given clients concurrently, pruning the ones that fail."""
        message_json = message.model_dump_json()
        disconnected_clients: Set[WebSocket] = set()

        # Send to all clients concurrently
        tasks = [
            asyncio.create_task(self._send_message_safe(websocket, message_json, disconnected_clients))
            for websocket in targets
        ]
        await asyncio.gather(*tasks, return_exceptions=True)

        # Clean up disconnected clients
        for websocket in disconnected_clients:
            self.disconnect(websocket)

        return len(targets) - len(disconnected_clients)

    async def _send_message_safe(self, websocket: WebSocket, message_json: str, disconnected_clients: Set[WebSocket]) -> None:
        """Safely send a message, handling disconnections and hung clients."""
        try:
            await asyncio.wait_for(websocket.send_text(message_json), self.send_timeout)
        except WebSocketDisconnect:
            disconnected_clients.add(websocket)
        except asyncio.TimeoutError:
            logger.warning("Dropping WebSocket client that did not accept a message in time")
            disconnected_clients.add(websocket)
        except Exception as e:
            logger.error(f"Error sending message to WebSocket: {e}")
            disconnected_clients.add(websocket)

    def get_connection_stats(self) -> Dict[str, Any]:
        """Get statistics about current connections."""
        return {
            "total_connections": len(self.active_connections),
            "connections": [
                {
                    "topic": info["topic"],
                    "connected_at": info["connected_at"].isoformat(),
                    "client_info": info["client_info"]
                }
                for info in self.connection_info.values()
            ]
        }
