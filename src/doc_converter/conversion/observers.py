"""Registry of live observers (WebSocket peers) receiving job events."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from .interfaces import Observer
from .models import Job, job_delete_event, job_update_event

logger = logging.getLogger(__name__)


class ObserverRegistry:
    """Track connected observers and fan job events out to all of them.

    Membership changes go through ``_lock``; a broadcast only holds it long
    enough to snapshot the members. Each observer carries its own lock so two
    concurrent broadcasts never interleave frames on one connection.
    """

    def __init__(self) -> None:
        self._observers: Dict[Observer, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._observers)

    async def register(self, observer: Observer) -> None:
        async with self._lock:
            self._observers.setdefault(observer, asyncio.Lock())
        logger.debug(f"Observer registered ({len(self._observers)} active)")

    async def unregister(self, observer: Observer) -> None:
        async with self._lock:
            removed = self._observers.pop(observer, None)
        if removed is not None:
            logger.debug(f"Observer unregistered ({len(self._observers)} active)")

    async def broadcast(self, event: dict[str, Any]) -> int:
        """Send ``event`` to every registered observer; returns the delivery count.

        A failed send is logged and skipped. The failing observer stays
        registered until its own read loop notices the disconnect.
        """
        try:
            message = json.dumps(event)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize {event.get('type')} event: {e}")
            return 0

        async with self._lock:
            recipients = list(self._observers.items())

        delivered = 0
        for observer, send_lock in recipients:
            if await self._deliver(observer, send_lock, message, event.get("type")):
                delivered += 1
        return delivered

    async def send(self, observer: Observer, event: dict[str, Any]) -> bool:
        """Send ``event`` to a single registered observer."""
        async with self._lock:
            send_lock = self._observers.get(observer)
        if send_lock is None:
            return False
        return await self._deliver(observer, send_lock, json.dumps(event), event.get("type"))

    async def _deliver(self, observer: Observer, send_lock: asyncio.Lock, message: str, kind: Any) -> bool:
        try:
            async with send_lock:
                await observer.send_text(message)
        except Exception as e:
            logger.warning(f"Failed to send {kind} event to observer: {e}")
            return False
        return True

    async def broadcast_job_update(self, job: Job) -> int:
        return await self.broadcast(job_update_event(job))

    async def broadcast_job_delete(self, job_id: str) -> int:
        return await self.broadcast(job_delete_event(job_id))

    async def reset(self) -> None:
        """Drop all observers (primarily for tests and shutdown)."""
        async with self._lock:
            self._observers.clear()
