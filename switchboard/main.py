"""Switchboard entry point.

Initializes all components and starts the server:
  Settings -> Database -> Stores -> EventBus -> Classifier -> Orchestrator -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from switchboard.api.classifier import HttpSignalClassifier
from switchboard.api.rest import create_app
from switchboard.config import Settings
from switchboard.events import TURN_ROUTED, Event, EventBus
from switchboard.orchestration import Orchestrator
from switchboard.storage.database import Database
from switchboard.storage.migrator import run_migrations
from switchboard.storage.store import AuditLog, MessageLog, StateStore

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage.

    1. Database - connection pool + schema
    2. StateStore / MessageLog / AuditLog
    3. EventBus - optional, persists audit records when enabled
    4. HttpSignalClassifier - optional (None if no classifier URL)
    5. Orchestrator
    """
    database = Database(settings)
    await database.connect()
    if settings.db_url.startswith("sqlite"):
        await database.create_all()
    else:
        await run_migrations(database.engine)

    store = StateStore(database)
    messages = MessageLog(database)
    audit_log = AuditLog(database)

    bus = None
    if settings.event_bus_enabled:
        bus = EventBus()

        async def persist_to_db(event: Event) -> None:
            if event.type != TURN_ROUTED or not settings.audit_enabled:
                return
            await audit_log.record(event.user_id, event.scope, event.data)

        async def log_event(event: Event) -> None:
            logger.debug("Event %s for %s/%s: %s", event.type, event.user_id, event.scope, event.data)

        bus.set_persister(persist_to_db)
        bus.on_any(log_event)
        await bus.start()

    classifier = None
    if settings.classifier_url:
        classifier = HttpSignalClassifier(settings)
        await classifier.start()
    else:
        logger.warning("SWITCHBOARD_CLASSIFIER_URL not set, /turn requests must carry signals")

    orchestrator = Orchestrator(
        store,
        settings,
        messages=messages,
        classifier=classifier,
        # With the bus running, audit records go through its persister
        audit_log=None if bus is not None else audit_log,
        bus=bus,
    )

    return {
        "database": database,
        "store": store,
        "messages": messages,
        "audit_log": audit_log,
        "bus": bus,
        "classifier": classifier,
        "orchestrator": orchestrator,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down Switchboard...")

    bus = components.get("bus")
    if bus:
        await bus.stop()

    classifier = components.get("classifier")
    if classifier:
        await classifier.close()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("Switchboard shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app. Components come to life in the lifespan.

    Routes are bound to late-resolving handles so the app can be built
    synchronously, before the event loop that opens the database exists.
    """
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info(
            "Switchboard started: debounce=%s audit=%s bus=%s classifier=%s",
            settings.debounce_enabled,
            settings.audit_enabled,
            settings.event_bus_enabled,
            bool(settings.classifier_url),
        )
        try:
            yield
        finally:
            await shutdown_components(components)
            components.clear()

    return create_app(
        orchestrator=_Late(components, "orchestrator"),
        store=_Late(components, "store"),
        database=_Late(components, "database"),
        audit_log=_Late(components, "audit_log"),
        lifespan=lifespan,
    )


class _Late:
    """Stand-in for a component created later in the lifespan."""

    __slots__ = ("_components", "_key")

    def __init__(self, components: dict, key: str) -> None:
        self._components = components
        self._key = key

    def __getattr__(self, name: str):
        try:
            target = self._components[self._key]
        except KeyError:
            raise RuntimeError(f"Switchboard component {self._key!r} is not running") from None
        return getattr(target, name)


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if settings.database_url:
        logger.info("Database: %s", settings.database_url.split("://", 1)[0])
    else:
        logger.info("Database: %s:%s/%s", settings.db_host, settings.db_port, settings.db_name)
    logger.info("Classifier: %s", settings.classifier_url or "disabled")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
