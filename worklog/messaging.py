from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import AuthorityUnreachable


class MessageType(str, Enum):
    START_TIMER = "START_TIMER"
    PAUSE_TIMER = "PAUSE_TIMER"
    CLEAR_TIMER = "CLEAR_TIMER"
    GET_TIMER_STATUS = "GET_TIMER_STATUS"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"


@dataclass(frozen=True, slots=True)
class Message:
    type: MessageType | str
    data: dict[str, Any] = field(default_factory=dict)


class AuthorityChannel:
    """Request/response mailbox between observers and the timer authority.

    Requests are queued and handled one at a time in arrival order. A request
    that is not answered within ``timeout`` seconds, or that is sent on a
    closed channel, raises ``AuthorityUnreachable``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[Message, asyncio.Future] | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def request(self, message: Message, timeout: float) -> dict[str, Any]:
        if self._closed:
            raise AuthorityUnreachable("Authority channel is closed")

        reply = asyncio.get_running_loop().create_future()
        await self._queue.put((message, reply))
        try:
            return await asyncio.wait_for(reply, timeout)
        except asyncio.TimeoutError as exc:
            raise AuthorityUnreachable(f"No reply to {message.type} within {timeout}s") from exc

    async def receive(self) -> tuple[Message, asyncio.Future] | None:
        """Next pending request, or None once the channel has been closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Fail anything still queued so callers fall back instead of waiting out the timeout.
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not None and not item[1].done():
                item[1].set_exception(AuthorityUnreachable("Authority channel closed"))
        self._queue.put_nowait(None)


class Broadcast:
    """Fire-and-forget fan-out for notifications such as SETTINGS_UPDATED."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._subscribers: list[Callable[[Message], None]] = []
        self.logger = logger or logging.getLogger(__name__)

    def subscribe(self, callback: Callable[[Message], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, message: Message) -> None:
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception:
                # One broken subscriber must not keep the others stale.
                self.logger.exception("Subscriber failed to handle %s", message.type)
