"""
Group channel: the transport capabilities a connection handler relies on.

``GroupChannel`` is the structural contract; ``SocketIOChannel`` provides
it for a single Socket.IO connection on top of ``socketio.AsyncServer``
rooms.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import socketio

from .config import NAMESPACE

logger = logging.getLogger(__name__)

CommandHandler = Callable[..., Awaitable[None]]


@runtime_checkable
class GroupChannel(Protocol):
    id: str

    async def join(self, group: str) -> None: ...

    async def leave(self, group: str) -> None: ...

    def on(self, event: str, handler: CommandHandler) -> None: ...

    async def broadcast_to_group(self, group: str, event: str, payload: dict) -> None: ...

    def membership(self) -> set[str]: ...


class SocketIOChannel:
    """One connection's view of the Socket.IO server."""

    def __init__(self, server: socketio.AsyncServer, sid: str, namespace: str = NAMESPACE):
        self.server = server
        self.id = sid
        self.namespace = namespace
        self.handlers: dict[str, CommandHandler] = {}

    async def join(self, group: str):
        await self.server.enter_room(self.id, group, namespace=self.namespace)

    async def leave(self, group: str):
        await self.server.leave_room(self.id, group, namespace=self.namespace)

    def on(self, event: str, handler: CommandHandler):
        self.handlers[event] = handler

    async def broadcast_to_group(self, group: str, event: str, payload: dict):
        await self.server.emit(event, payload, to=group, namespace=self.namespace)

    def membership(self) -> set[str]:
        # Every Socket.IO connection sits in a room named after its own sid
        rooms = self.server.rooms(self.id, namespace=self.namespace)
        return {room for room in rooms if room != self.id}

    def handles(self, event: str) -> bool:
        return event in self.handlers

    async def dispatch(self, event: str, *args: Any) -> Any:
        """Run the handler registered for ``event``.

        Returns the payload the handler acknowledged with, which Socket.IO
        sends back as the ack of the client's emit.
        """
        replies: list[Any] = []

        def ack(payload: Any = None):
            replies.append(payload)

        await self.handlers[event](*args, ack=ack)
        if len(replies) > 1:
            logger.warning("Handler for %s acknowledged %d times", event, len(replies))
        return replies[0] if replies else None
