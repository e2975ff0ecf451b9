"""Debounce and burst merge at the turn boundary.

After a message arrives we wait a short window, then check it is still
the latest user message for that user/scope. If a newer one arrived the
turn is aborted (the newer turn supersedes it). Otherwise every message
in the trailing burst window is merged into one input.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from switchboard.utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

BURST_SEPARATOR = "\n\n"


@dataclass
class LoggedMessage:
    id: str
    content: str
    created_at: datetime


class MessageSource(Protocol):
    async def latest_user_message(self, user_id: str, scope: str) -> LoggedMessage | None: ...

    async def user_messages_since(self, user_id: str, scope: str, since: datetime) -> list[LoggedMessage]: ...


@dataclass
class DebounceResult:
    aborted: bool
    message: str = ""
    merged_ids: list[str] = field(default_factory=list)


class Debouncer:
    """Waits, re-checks recency and coalesces bursts for one incoming message."""

    def __init__(
        self,
        messages: MessageSource,
        wait_ms: int = 3500,
        burst_window_ms: int = 10000,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.messages = messages
        self.wait = wait_ms / 1000
        self.burst_window = timedelta(milliseconds=burst_window_ms)
        self._sleep = sleep

    async def settle(
        self,
        user_id: str,
        scope: str,
        message_id: str,
        content: str,
        received_at: datetime | None = None,
    ) -> DebounceResult:
        received_at = ensure_aware(received_at or utcnow())
        if self.wait > 0:
            await self._sleep(self.wait)

        latest = await self.messages.latest_user_message(user_id, scope)
        if latest is not None and latest.id != message_id:
            logger.info("Superseded by newer message for %s/%s, aborting turn", user_id, scope)
            return DebounceResult(aborted=True)

        burst = await self.messages.user_messages_since(user_id, scope, received_at - self.burst_window)
        parts = [m for m in burst if m.content.strip()]
        if len(parts) <= 1:
            return DebounceResult(aborted=False, message=content, merged_ids=[message_id])

        parts.sort(key=lambda m: ensure_aware(m.created_at))
        logger.debug("Merging %d burst messages for %s/%s", len(parts), user_id, scope)
        return DebounceResult(
            aborted=False,
            message=BURST_SEPARATOR.join(m.content.strip() for m in parts),
            merged_ids=[m.id for m in parts],
        )
