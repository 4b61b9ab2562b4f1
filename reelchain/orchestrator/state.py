from typing import Dict, FrozenSet

from reelchain.core.errors import IllegalTransitionError
from reelchain.core.models import Take, TakeStatus

S = TakeStatus

TRANSITIONS: Dict[TakeStatus, FrozenSet[TakeStatus]] = {
    S.PENDING: frozenset({S.CACHE_CHECK, S.FAILED}),
    S.CACHE_CHECK: frozenset({S.CACHE_HIT, S.CACHE_MISS}),
    S.CACHE_HIT: frozenset({S.EXTRACTING_ANCHOR, S.COMMITTED}),
    S.CACHE_MISS: frozenset({S.RESERVING, S.FAILED}),
    S.RESERVING: frozenset({S.SUBMITTING, S.FAILED}),
    S.SUBMITTING: frozenset({S.POLLING, S.RETRYING, S.FALLBACK_PROVIDER, S.ROLLED_BACK}),
    S.POLLING: frozenset({S.SUCCEEDED, S.RETRYING, S.FALLBACK_PROVIDER, S.ROLLED_BACK}),
    S.RETRYING: frozenset({S.SUBMITTING, S.ROLLED_BACK}),
    S.FALLBACK_PROVIDER: frozenset({S.SUBMITTING, S.ROLLED_BACK}),
    S.SUCCEEDED: frozenset({S.EXTRACTING_ANCHOR, S.COMMITTED, S.ROLLED_BACK}),
    S.EXTRACTING_ANCHOR: frozenset({S.COMMITTED}),
    S.ROLLED_BACK: frozenset({S.FAILED}),
    S.COMMITTED: frozenset(),
    S.FAILED: frozenset(),
}


def can_transition(current: TakeStatus, target: TakeStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(take: Take, target: TakeStatus) -> None:
    if not can_transition(take.status, target):
        raise IllegalTransitionError(f"Take {take.index}: {take.status.value} -> {target.value} is not allowed")
    take.status = target
    take.history.append(target)
