"""Error taxonomy shared by every stage of the pipeline."""

from typing import Optional


class ReelchainError(Exception):
    pass


class ValidationError(ReelchainError, ValueError):
    """Input was rejected before any credits were touched."""


class EmptyScriptError(ValidationError):
    def __init__(self, message: str = "Cannot segment an empty script"):
        super().__init__(message)


class InvalidConstraintsError(ValidationError):
    pass


class PlanValidationError(ValidationError):
    pass


class ConstraintViolationUnresolvable(ReelchainError):
    def __init__(self, detail: str, segment_index: Optional[int] = None):
        self.detail = detail
        self.segment_index = segment_index
        super().__init__(f"Constraint violation could not be resolved: {detail}")


class BudgetError(ReelchainError):
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient credits: requested {requested}, available {available}")


class LedgerError(ReelchainError):
    pass


class LedgerStateError(LedgerError):
    """A reservation was committed or released more than once, or does not exist."""


class ProviderError(ReelchainError):
    def __init__(self, message: str, status_code: Optional[int] = None, provider: Optional[str] = None):
        self.status_code = status_code
        self.provider = provider
        super().__init__(message)


class ProviderTransientError(ProviderError):
    pass


class TaskNotFoundError(ProviderTransientError):
    def __init__(self, task_id: str, provider: Optional[str] = None):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}", status_code=404, provider=provider)


class ProviderPermanentError(ProviderError):
    pass


class CacheCorruptionError(ReelchainError):
    pass


class IllegalTransitionError(ReelchainError):
    pass


class ConfigError(ReelchainError):
    pass


class BoundaryProposerError(ReelchainError):
    """The boundary proposer is unavailable or returned an unusable answer."""
