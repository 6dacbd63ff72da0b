"""Main application entry point for the order notification service."""

import asyncio
import hmac
import json
import logging
import signal
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request, Query
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from config import config
from database.connection import DatabaseManager
from messaging.webhooks import extract_statuses, verify_signature, verify_subscription
from models import (
    AdminNotificationRequest,
    BroadcastMessage,
    ChangeKind,
    ConnectionCheckRequest,
    ConnectionCheckResult,
    DeliveryAttempt,
    OrderEvent,
    PendingNotificationsResult,
    RawChange,
    SessionSnapshot,
    utcnow,
)
from order_status import normalize_status
from pipeline import NotificationPipeline

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(settings=config, db=None, pipeline: Optional[NotificationPipeline] = None,
               validate: bool = True) -> FastAPI:
    """Build the FastAPI app around one notification pipeline."""
    db = db or DatabaseManager(settings)
    pipeline = pipeline or NotificationPipeline(settings, db)
    background: Set[asyncio.Task] = set()

    async def heartbeat_loop():
        """Send periodic heartbeats to clients and check the messaging provider."""
        while True:
            try:
                await asyncio.sleep(settings.HEARTBEAT_INTERVAL)
                await pipeline.websockets.send_heartbeat()
                await pipeline.session.heartbeat()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in heartbeat loop: {e}")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        logger.info("Starting order notification service")

        try:
            # Validate configuration
            if validate:
                for warning in settings.validate():
                    logger.warning(f"Configuration warning: {warning}")

            # Initialize database
            await db.initialize()

            # Start change log polling and the messaging session
            await pipeline.start()

            # Start heartbeat task
            heartbeat_task = asyncio.create_task(heartbeat_loop())

            logger.info("System startup completed successfully")

            yield

        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        finally:
            # Shutdown
            logger.info("Shutting down order notification service")

            # Cancel heartbeat task
            if 'heartbeat_task' in locals():
                heartbeat_task.cancel()
                try:
                    await heartbeat_task
                except asyncio.CancelledError:
                    pass

            for task in list(background):
                task.cancel()
            if background:
                await asyncio.gather(*background, return_exceptions=True)

            await pipeline.stop()

            # Close database connections
            await db.close()

            logger.info("System shutdown completed")

    # Create FastAPI app
    app = FastAPI(
        title="Order Notification Service",
        description="Fans new and pending orders out to the dashboard bell and the store admin",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.pipeline = pipeline

    def _spawn(coro) -> None:
        task = asyncio.create_task(coro)
        background.add(task)
        task.add_done_callback(background.discard)

    async def _serve_websocket(websocket: WebSocket, topic: str) -> None:
        await pipeline.websockets.connect(websocket, topic)

        try:
            while True:
                # Keep connection alive and answer client pings
                data = await websocket.receive_text()

                try:
                    client_message = json.loads(data)
                except ValueError:
                    continue  # Ignore malformed messages
                if isinstance(client_message, dict) and client_message.get("type") == "ping":
                    pong_message = BroadcastMessage(event="heartbeat", data={"message": "pong"})
                    await pipeline.websockets.send_message(websocket, pong_message)

        except WebSocketDisconnect:
            pipeline.websockets.disconnect(websocket)
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            pipeline.websockets.disconnect(websocket)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for the pending-order notification bell."""
        await _serve_websocket(websocket, settings.NOTIFICATION_TOPIC)

    @app.websocket("/ws/{topic}")
    async def websocket_topic_endpoint(websocket: WebSocket, topic: str):
        """WebSocket endpoint subscribed to an explicit topic."""
        await _serve_websocket(websocket, topic)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        try:
            db_healthy = await db.health_check()
            session = pipeline.session.get_state()

            return {
                "status": "healthy" if db_healthy else "unhealthy",
                "database": "connected" if db_healthy else "disconnected",
                "event_listener": "running" if pipeline.listener.running else "stopped",
                "messaging_provider": session.state.value,
                "websocket_connections": len(pipeline.websockets.active_connections),
                "timestamp": utcnow().isoformat()
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Service unavailable")

    @app.get("/stats")
    async def get_stats():
        """Get system statistics."""
        try:
            return {
                "websocket_connections": pipeline.websockets.get_connection_stats(),
                "recent_changes_last_hour": await db.count_recent_changes(),
                "event_listener_status": "running" if pipeline.listener.running else "stopped",
                "events_dispatched": pipeline.dispatcher.events_dispatched,
                "deliveries": pipeline.dispatcher.stats(),
                "messaging_provider": pipeline.session.get_state().model_dump(mode="json"),
            }
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    @app.get("/api/notifications/pending", response_model=PendingNotificationsResult)
    async def pending_notifications(scope_id: Optional[str] = Query(default=None)):
        """Orders awaiting attention, for clients catching up after a reconnect."""
        return await pipeline.pending_notifications(scope_id)

    @app.post("/api/notifications/admin", response_model=DeliveryAttempt)
    async def send_admin_notification(request: AdminNotificationRequest):
        """Send (or prepare a manual link for) the admin notification of one order."""
        event = OrderEvent(
            order_id=request.order_id,
            change_kind=ChangeKind.CREATED,
            status=normalize_status(request.status),
            occurred_at=utcnow(),
            snapshot=request.snapshot,
        )
        return await pipeline.messaging.notify_admin(event)

    @app.post("/api/webhooks/orders", status_code=202)
    async def order_webhook(request: Request):
        """Database webhook for order rows; accepted immediately, dispatched in the background."""
        secret = settings.ORDER_WEBHOOK_SECRET
        if secret and not hmac.compare_digest(request.headers.get("x-webhook-secret", ""), secret):
            raise HTTPException(status_code=403, detail="Forbidden")
        try:
            payload: Dict[str, Any] = await request.json()
            raw = RawChange.from_webhook_payload(payload)
        except (ValueError, ValidationError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable order webhook: {e}")
            return {"accepted": False}

        _spawn(pipeline.listener.handle_raw_change(raw))
        return {"accepted": True}

    @app.get("/api/messaging/status", response_model=SessionSnapshot)
    async def messaging_status():
        return pipeline.session.get_state()

    @app.post("/api/messaging/connect", response_model=SessionSnapshot)
    async def messaging_connect():
        return await pipeline.session.connect()

    @app.post("/api/messaging/confirm", response_model=SessionSnapshot)
    async def messaging_confirm():
        return await pipeline.session.confirm_authentication()

    @app.post("/api/messaging/logout", response_model=SessionSnapshot)
    async def messaging_logout():
        return await pipeline.session.logout()

    @app.post("/api/messaging/reset", response_model=SessionSnapshot)
    async def messaging_reset():
        return await pipeline.session.reset()

    @app.post("/api/messaging/test", response_model=ConnectionCheckResult)
    async def messaging_test(request: Optional[ConnectionCheckRequest] = None):
        """Send a fixed test message to check the provider can deliver."""
        recipient = request.recipient if request else None
        return await pipeline.messaging.check_connection(recipient)

    @app.get("/api/whatsapp/webhook", response_class=PlainTextResponse)
    async def whatsapp_webhook_verify(
        mode: Optional[str] = Query(default=None, alias="hub.mode"),
        token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        challenge: str = Query(default="", alias="hub.challenge"),
    ):
        """Cloud API subscription handshake."""
        if verify_subscription(mode, token, settings.WEBHOOK_VERIFY_TOKEN):
            return PlainTextResponse(challenge)
        raise HTTPException(status_code=403, detail="Forbidden")

    @app.post("/api/whatsapp/webhook")
    async def whatsapp_webhook(request: Request):
        """Cloud API delivery-status callbacks."""
        body = await request.body()
        if settings.WHATSAPP_APP_SECRET:
            signature = request.headers.get("x-hub-signature-256") or request.headers.get("x-hub-signature")
            if not verify_signature(body, signature, settings.WHATSAPP_APP_SECRET):
                raise HTTPException(status_code=403, detail="Invalid signature")
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON")

        statuses = extract_statuses(payload)
        for status in statuses:
            if status["status"] == "failed":
                logger.warning(f"WhatsApp message {status['id']} to {status['recipient_id']} failed: {status['errors']}")
            else:
                logger.info(f"WhatsApp message {status['id']} is {status['status']}")
        return {"status": "ok", "statuses": len(statuses)}

    return app


app = create_app()


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info(f"Received signal {signum}, shutting down...")
    sys.exit(0)

if __name__ == "__main__":
    # Register signal handlers
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    # Run the server
    uvicorn.run(
        "main:app",
        host=config.SERVER_HOST,
        port=config.SERVER_PORT,
        log_level=config.LOG_LEVEL.lower(),
        reload=False
    )
