from dataclasses import dataclass
from typing import Optional

from reelchain.providers.base import VideoProvider


@dataclass(frozen=True)
class ProviderPolicy:
    """Chooses between the primary provider and an optional fallback."""

    primary: VideoProvider
    fallback: Optional[VideoProvider] = None
    fallback_after: int = 2

    def select(self, consecutive_failures: int) -> VideoProvider:
        if self.fallback is not None and consecutive_failures >= self.fallback_after:
            return self.fallback
        return self.primary

    def is_fallback(self, provider: VideoProvider) -> bool:
        return self.fallback is not None and provider is self.fallback
