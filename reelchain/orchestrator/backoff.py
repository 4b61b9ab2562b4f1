from dataclasses import dataclass
from typing import Iterator, Optional

from reelchain.core.errors import ConfigError


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    max_attempts: int = 3           # submissions per take
    fallback_after: int = 2         # consecutive failures before switching provider
    not_found_grace: float = 30.0   # seconds after submit during which 404 is transient
    take_timeout: float = 300.0
    call_timeout: float = 60.0      # bound on a single submit or poll call
    attempt_timeout: Optional[float] = None  # poll budget per submission; None means only take_timeout applies

    def __post_init__(self):
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ConfigError(f"Invalid backoff delays: base={self.base_delay} max={self.max_delay}")
        if self.multiplier < 1:
            raise ConfigError(f"Backoff multiplier must be >= 1, got {self.multiplier}")
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.take_timeout <= 0:
            raise ConfigError(f"take_timeout must be positive, got {self.take_timeout}")
        if self.call_timeout <= 0:
            raise ConfigError(f"call_timeout must be positive, got {self.call_timeout}")

    def delay(self, attempt: int) -> float:
        """Delay before the poll numbered ``attempt`` (0-based)."""
        return min(self.base_delay * (self.multiplier ** max(attempt, 0)), self.max_delay)

    def delays(self) -> Iterator[float]:
        attempt = 0
        while True:
            yield self.delay(attempt)
            attempt += 1
