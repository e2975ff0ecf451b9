"""Built-in turn handlers, one per routing target."""

from switchboard.handlers.architect import ArchitectHandler
from switchboard.handlers.companion import CompanionHandler
from switchboard.handlers.safety import SafetyHandler
from switchboard.orchestration.schemas import HandlerName, PauseReason
from switchboard.orchestration.turn import TurnHandler


def default_handlers() -> dict[HandlerName, TurnHandler]:
    return {
        HandlerName.COMPANION: CompanionHandler(),
        HandlerName.ARCHITECT: ArchitectHandler(),
        HandlerName.FIREFIGHTER: SafetyHandler(PauseReason.FIREFIGHTER),
        HandlerName.SENTRY: SafetyHandler(PauseReason.SENTRY),
    }


__all__ = [
    "ArchitectHandler",
    "CompanionHandler",
    "SafetyHandler",
    "default_handlers",
]
