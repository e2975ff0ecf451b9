"""Persistence for orchestration state, the message log and audit records.

Read-modify-write without row locks. At save time the stack is re-merged
against the freshest stored document: if another writer updated the
stack after this turn loaded it, and more recently than this turn did,
the stored stack wins.

All methods follow the session injection pattern: pass ``session`` to
join an outer transaction, or omit it to get a committed unit of work.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.orchestration.debounce import LoggedMessage
from switchboard.orchestration.schemas import OrchestrationState
from switchboard.storage.database import Database
from switchboard.storage.models import ChatMessage, ConversationState, RoutingAuditRecord
from switchboard.utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)


def _stored_stack(blob: dict[str, Any]) -> OrchestrationState:
    return OrchestrationState.from_blob({"stack": blob.get("stack", [])})


class StateStore:
    """Loads and merge-saves the per-user orchestration document."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # load()
    # ------------------------------------------------------------------

    async def load(self, user_id: str, scope: str = "web", session: AsyncSession | None = None) -> OrchestrationState:
        """Load state, or a fresh one if none stored. Never fails on bad data."""
        if session is None:
            async with self.db.session() as session:
                return await self._load(user_id, scope, session)
        return await self._load(user_id, scope, session)

    async def _load(self, user_id: str, scope: str, session: AsyncSession) -> OrchestrationState:
        row = await session.get(ConversationState, (user_id, scope))
        if row is None:
            return OrchestrationState()
        return OrchestrationState.from_blob(row.state)

    # ------------------------------------------------------------------
    # save()
    # ------------------------------------------------------------------

    async def save(
        self,
        user_id: str,
        scope: str,
        state: OrchestrationState,
        loaded_stack_at: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> OrchestrationState:
        """Persist ``state`` after re-merging its stack against the stored one.

        ``loaded_stack_at`` is the stack_updated_at seen when the turn
        started. Returns the state as written.
        """
        if session is None:
            async with self.db.session() as session:
                result = await self._save(user_id, scope, state, loaded_stack_at, session)
                await session.commit()
                return result
        return await self._save(user_id, scope, state, loaded_stack_at, session)

    async def _save(
        self,
        user_id: str,
        scope: str,
        state: OrchestrationState,
        loaded_stack_at: datetime | None,
        session: AsyncSession,
    ) -> OrchestrationState:
        row = await session.get(ConversationState, (user_id, scope))
        if row is not None and row.stack_updated_at is not None:
            stored_at = ensure_aware(row.stack_updated_at)
            ours = ensure_aware(state.stack_updated_at) if state.stack_updated_at else None
            moved_on = loaded_stack_at is None or stored_at > ensure_aware(loaded_stack_at)
            if moved_on and (ours is None or stored_at > ours):
                logger.info("Stored stack for %s/%s is newer, keeping it", user_id, scope)
                state.stack = _stored_stack(row.state).stack
                state.stack_updated_at = stored_at

        if state.updated_at is None:
            state.updated_at = utcnow()
        blob = state.to_blob()
        if row is None:
            row = ConversationState(
                user_id=user_id,
                scope=scope,
                state=blob,
                stack_updated_at=state.stack_updated_at,
            )
            session.add(row)
        else:
            row.state = blob
            row.stack_updated_at = state.stack_updated_at
        await session.flush()
        return state

    # ------------------------------------------------------------------
    # delete()
    # ------------------------------------------------------------------

    async def delete(self, user_id: str, scope: str = "web", session: AsyncSession | None = None) -> bool:
        if session is None:
            async with self.db.session() as session:
                result = await self._delete(user_id, scope, session)
                await session.commit()
                return result
        return await self._delete(user_id, scope, session)

    async def _delete(self, user_id: str, scope: str, session: AsyncSession) -> bool:
        result = await session.execute(
            delete(ConversationState).where(
                ConversationState.user_id == user_id,
                ConversationState.scope == scope,
            )
        )
        return bool(result.rowcount)


class MessageLog:
    """Chat message log; the debouncer reads recency and bursts from it."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def append(
        self,
        user_id: str,
        scope: str,
        content: str,
        role: str = "user",
        created_at: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> LoggedMessage:
        if session is None:
            async with self.db.session() as session:
                result = await self._append(user_id, scope, content, role, created_at, session)
                await session.commit()
                return result
        return await self._append(user_id, scope, content, role, created_at, session)

    async def _append(
        self,
        user_id: str,
        scope: str,
        content: str,
        role: str,
        created_at: datetime | None,
        session: AsyncSession,
    ) -> LoggedMessage:
        msg = ChatMessage(
            user_id=user_id,
            scope=scope,
            role=role,
            content=content,
            created_at=created_at or utcnow(),
        )
        session.add(msg)
        await session.flush()
        return LoggedMessage(id=msg.id, content=msg.content, created_at=ensure_aware(msg.created_at))

    async def latest_user_message(self, user_id: str, scope: str) -> LoggedMessage | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(ChatMessage)
                .where(
                    ChatMessage.user_id == user_id,
                    ChatMessage.scope == scope,
                    ChatMessage.role == "user",
                )
                .order_by(ChatMessage.created_at.desc())
                .limit(1)
            )
            msg = result.scalar_one_or_none()
            if msg is None:
                return None
            return LoggedMessage(id=msg.id, content=msg.content, created_at=ensure_aware(msg.created_at))

    async def user_messages_since(self, user_id: str, scope: str, since: datetime) -> list[LoggedMessage]:
        async with self.db.session() as session:
            result = await session.execute(
                select(ChatMessage)
                .where(
                    ChatMessage.user_id == user_id,
                    ChatMessage.scope == scope,
                    ChatMessage.role == "user",
                    ChatMessage.created_at >= since,
                )
                .order_by(ChatMessage.created_at)
            )
            return [
                LoggedMessage(id=m.id, content=m.content, created_at=ensure_aware(m.created_at))
                for m in result.scalars()
            ]


class AuditLog:
    """Routing audit records, one per processed turn."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def record(
        self,
        user_id: str,
        scope: str,
        record: dict[str, Any],
        session: AsyncSession | None = None,
    ) -> None:
        if session is None:
            async with self.db.session() as session:
                await self._record(user_id, scope, record, session)
                await session.commit()
                return
        await self._record(user_id, scope, record, session)

    async def _record(self, user_id: str, scope: str, record: dict[str, Any], session: AsyncSession) -> None:
        session.add(
            RoutingAuditRecord(
                user_id=user_id,
                scope=scope,
                turn_index=int(record.get("turn_index") or 0),
                target=str(record.get("target") or ""),
                reason=str(record.get("reason") or ""),
                record=record,
            )
        )
        await session.flush()

    async def recent(self, user_id: str, limit: int = 20, scope: str | None = None) -> list[dict[str, Any]]:
        async with self.db.session() as session:
            stmt = select(RoutingAuditRecord).where(RoutingAuditRecord.user_id == user_id)
            if scope is not None:
                stmt = stmt.where(RoutingAuditRecord.scope == scope)
            stmt = stmt.order_by(RoutingAuditRecord.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return [
                {
                    "scope": r.scope,
                    "created_at": ensure_aware(r.created_at).isoformat(),
                    **r.record,
                }
                for r in result.scalars()
            ]
