"""HTTP client for the external signal classifier.

Posts the merged user message plus a compact flow context to the
classifier service and parses the reply into a SignalBundle. A reply
that parses badly is "no signal"; only an unreachable or failing
service raises ClassifierUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from switchboard.config import Settings
from switchboard.orchestration import stack
from switchboard.orchestration.schemas import OrchestrationState, SignalBundle

logger = logging.getLogger(__name__)


class ClassifierUnavailable(RuntimeError):
    """The classifier collaborator could not be reached."""


class SignalClassifier(Protocol):
    async def classify(self, message: str, state: OrchestrationState) -> SignalBundle: ...


def flow_context(state: OrchestrationState) -> dict[str, Any]:
    """What the classifier needs to know about in-flight work."""
    active = stack.get_active(state)
    pending = state.pending_confirmation
    return {
        "active_kind": active.kind.value if active else None,
        "active_phase": active.phase if active else None,
        "active_topic": active.topic if active else None,
        "pending_confirmation": pending.type.value if pending else None,
        "deferred_kinds": sorted({t.kind.value for t in state.deferred.topics}),
        "paused_kind": state.paused.kind.value if state.paused else None,
    }


class HttpSignalClassifier:
    """SignalClassifier backed by an HTTP service."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http
        self._owns_http = http is None

    async def start(self) -> None:
        if self._http is None:
            timeout = httpx.Timeout(
                connect=5.0,
                read=float(self._settings.classifier_timeout),
                write=5.0,
                pool=5.0,
            )
            self._http = httpx.AsyncClient(timeout=timeout)
            logger.info("Classifier client initialized (%s)", self._settings.classifier_url)

    async def close(self) -> None:
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def classify(self, message: str, state: OrchestrationState) -> SignalBundle:
        """Call the classifier; retry once on timeout or 5xx."""
        if self._http is None:
            raise RuntimeError("httpx client not initialized -- call start() first")

        payload = {"message": message, "context": flow_context(state)}
        last_error: Exception | None = None
        for attempt in range(2):
            try:
                response = await self._http.post(self._settings.classifier_url, json=payload)
                if response.status_code == 200:
                    try:
                        body = response.json()
                    except ValueError:
                        logger.warning("Classifier returned non-JSON body, treating as no signal")
                        return SignalBundle()
                    return SignalBundle.parse_lenient(body.get("signals", body) if isinstance(body, dict) else body)

                last_error = ClassifierUnavailable(
                    f"Classifier error ({response.status_code}): {response.text[:200]}"
                )
                if response.status_code >= 500 and attempt == 0:
                    logger.warning("Classifier returned %d, retrying", response.status_code)
                    await asyncio.sleep(0.5)
                    continue
                break
            except httpx.TimeoutException as e:
                last_error = ClassifierUnavailable(f"Classifier request timed out: {e}")
                if attempt == 0:
                    logger.warning("Classifier timeout, retrying: %s", e)
                    continue
            except httpx.HTTPError as e:
                last_error = ClassifierUnavailable(f"Classifier HTTP error: {e}")
                break

        raise last_error or ClassifierUnavailable("Classifier call failed")
