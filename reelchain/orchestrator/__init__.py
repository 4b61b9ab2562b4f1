from .backoff import BackoffPolicy
from .orchestrator import GenerationOrchestrator, OrchestratorContext
from .state import TRANSITIONS, can_transition, transition

__all__ = [
    "BackoffPolicy",
    "GenerationOrchestrator",
    "OrchestratorContext",
    "TRANSITIONS",
    "can_transition",
    "transition",
]
