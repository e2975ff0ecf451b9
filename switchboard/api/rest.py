"""REST API for Switchboard.

Endpoints:
  POST   /turn               - Process one user message through the orchestrator
  GET    /state/{user_id}    - Current orchestration state (?scope=web)
  DELETE /state/{user_id}    - Reset orchestration state (?scope=web)
  GET    /audit/{user_id}    - Recent routing audit records (?limit=20&scope=)
  GET    /health             - Health check (DB connectivity and schema)
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from switchboard.api.classifier import ClassifierUnavailable
from switchboard.orchestration import Orchestrator
from switchboard.storage.database import Database
from switchboard.storage.store import AuditLog, StateStore

logger = logging.getLogger(__name__)


def create_app(
    orchestrator: Orchestrator,
    store: StateStore,
    database: Database,
    audit_log: AuditLog | None = None,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def turn(request: Request) -> JSONResponse:
        """POST /turn - Run one turn."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Body must be a JSON object"}, status_code=400)

        user_id = body.get("user_id")
        message = body.get("message")
        if not user_id:
            return JSONResponse({"error": "Missing required field: user_id"}, status_code=400)
        if not message:
            return JSONResponse({"error": "Missing required field: message"}, status_code=400)
        scope = body.get("scope") or "web"

        try:
            outcome = await orchestrator.handle_message(
                str(user_id), str(message), scope=str(scope), signals=body.get("signals")
            )
        except ClassifierUnavailable as e:
            logger.error("Classifier unavailable: %s", e)
            return JSONResponse({"error": str(e)}, status_code=502)
        except Exception as e:
            logger.error("Turn error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

        result = outcome.as_dict()
        if not body.get("debug", False):
            result.pop("state", None)
        return JSONResponse(result)

    async def get_state(request: Request) -> JSONResponse:
        """GET /state/{user_id} - Current orchestration document."""
        user_id = request.path_params["user_id"]
        scope = request.query_params.get("scope", "web")
        try:
            state = await store.load(user_id, scope)
            return JSONResponse({"user_id": user_id, "scope": scope, "state": state.to_blob()})
        except Exception as e:
            logger.error("GET /state failed: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

    async def reset_state(request: Request) -> JSONResponse:
        """DELETE /state/{user_id} - Clear stack, queue, deferred topics and paused slot."""
        user_id = request.path_params["user_id"]
        scope = request.query_params.get("scope", "web")
        try:
            state = await orchestrator.reset(user_id, scope)
            return JSONResponse({"status": "reset", "user_id": user_id, "scope": scope, "state": state.to_blob()})
        except Exception as e:
            logger.error("DELETE /state failed: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

    async def list_audit(request: Request) -> JSONResponse:
        """GET /audit/{user_id} - Recent routing decisions."""
        if audit_log is None:
            return JSONResponse({"error": "Audit log not configured"}, status_code=503)
        user_id = request.path_params["user_id"]
        try:
            limit = int(request.query_params.get("limit", "20"))
        except ValueError:
            return JSONResponse({"error": "limit must be an integer"}, status_code=400)
        limit = max(1, min(limit, 100))
        scope = request.query_params.get("scope")
        try:
            records = await audit_log.recent(user_id, limit=limit, scope=scope)
            return JSONResponse({"user_id": user_id, "records": records})
        except Exception as e:
            logger.error("GET /audit failed: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
            missing = await database.missing_tables()
            if missing:
                return JSONResponse({"status": "unhealthy", "missing_tables": sorted(missing)}, status_code=503)
            return JSONResponse({"status": "healthy"})
        except Exception as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    routes = [
        Route("/turn", turn, methods=["POST"]),
        Route("/state/{user_id}", get_state, methods=["GET"]),
        Route("/state/{user_id}", reset_state, methods=["DELETE"]),
        Route("/audit/{user_id}", list_audit),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
