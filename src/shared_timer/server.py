"""
Shared Timer Service

Socket.IO server that gives every connection its own
ConnectionEventHandler. Timer owners broadcast ticks to the group created
with their timer; any connection that joins the group receives them.
"""

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .channel import SocketIOChannel
from .config import NAMESPACE, Settings
from .handler import ConnectionEventHandler, ErrorReport
from .ids import IdProvider, RandomIdProvider

logger = logging.getLogger(__name__)

LIFECYCLE_EVENTS = {"connect", "disconnect"}

settings = Settings()


# ============================================================
# SOCKET.IO NAMESPACE
# ============================================================


class TimerNamespace(socketio.AsyncNamespace):
    """Routes each connection's events to that connection's handler."""

    def __init__(
        self,
        namespace: str = NAMESPACE,
        id_provider: IdProvider | None = None,
        tick_interval_ms: float = settings.tick_interval_ms,
    ):
        super().__init__(namespace)
        self.id_provider = id_provider or RandomIdProvider()
        self.tick_interval_ms = tick_interval_ms
        self.connections: dict[str, ConnectionEventHandler] = {}

    @property
    def timers_active(self) -> int:
        return sum(
            1
            for handler in self.connections.values()
            if handler.timer is not None and handler.timer.running
        )

    async def trigger_event(self, event, *args):
        if event in LIFECYCLE_EVENTS:
            return await super().trigger_event(event, *args)

        sid, *data = args
        handler = self.connections.get(sid)
        channel = handler.channel if handler else None
        if channel is None or not channel.handles(event):
            logger.warning("Unknown event %s from %s", event, sid)
            return ErrorReport(error=f"Unknown event: {event}").model_dump()

        return await channel.dispatch(event, *data)

    async def on_connect(self, sid, environ, auth=None):
        channel = SocketIOChannel(self.server, sid, self.namespace)
        handler = ConnectionEventHandler(
            channel, id_provider=self.id_provider, tick_interval_ms=self.tick_interval_ms
        )
        handler.subscribe()
        self.connections[sid] = handler
        logger.info("Client connected: %s", sid)

    async def on_disconnect(self, sid, reason=None):
        handler = self.connections.pop(sid, None)
        if handler is not None:
            await handler.close()
        logger.info("Client disconnected: %s (%s)", sid, reason)

    async def close_all(self):
        """Close every connection handler, cancelling their ticks."""
        for sid in list(self.connections):
            await self.connections.pop(sid).close()


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=settings.cors_origins)
namespace = TimerNamespace()
sio.register_namespace(namespace)


# ============================================================
# FASTAPI APP
# ============================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Shared Timer Service started")
    yield
    await namespace.close_all()
    logger.info("Shared Timer Service stopped")


app = FastAPI(
    title="Shared Timer Service",
    description="Stopwatch and countdown timers shared over Socket.IO groups",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.cors_origins == "*" else settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "connections": len(namespace.connections),
        "timers_active": namespace.timers_active,
    }


# Socket.IO traffic is served on /socket.io, everything else falls through to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


# ============================================================
# MAIN
# ============================================================


def main():
    import uvicorn

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(asgi_app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
