import math
from enum import Enum
from typing import Dict, Optional

from reelchain.core.models import Take


class QualityTier(str, Enum):
    ECONOMY = "economy"
    BASIC = "basic"
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def credits_per_second(self) -> int:
        return _CREDITS_PER_SECOND[self]

    @property
    def max_duration(self) -> float:
        return _MAX_DURATION[self]

    @property
    def display_name(self) -> str:
        return {
            QualityTier.ECONOMY: "Starter",
            QualityTier.BASIC: "Standard",
            QualityTier.PRO: "Premium",
            QualityTier.PREMIUM: "Runway",
        }[self]


_CREDITS_PER_SECOND: Dict[QualityTier, int] = {
    QualityTier.ECONOMY: 20,
    QualityTier.BASIC: 31,
    QualityTier.PRO: 37,
    QualityTier.PREMIUM: 93,
}

_MAX_DURATION: Dict[QualityTier, float] = {
    QualityTier.ECONOMY: 10.0,
    QualityTier.BASIC: 8.0,
    QualityTier.PRO: 10.0,
    QualityTier.PREMIUM: 10.0,
}


class CostEstimator:
    """Credits for a take: per-second tier rate times requested duration, rounded up."""

    def __init__(self, tier: QualityTier = QualityTier.BASIC, credits_per_second: Optional[float] = None):
        self.tier = QualityTier(tier)
        self.credits_per_second = credits_per_second if credits_per_second is not None else self.tier.credits_per_second

    def duration_for(self, take: Take) -> float:
        return min(take.requested_duration, self.tier.max_duration)

    def estimate(self, take: Take) -> int:
        return max(1, math.ceil(self.credits_per_second * self.duration_for(take)))

    def provider_params(self, take: Take) -> Dict[str, object]:
        return {"duration": int(math.ceil(self.duration_for(take))), "quality": self.tier.value}
