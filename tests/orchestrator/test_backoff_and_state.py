import pytest

from conftest import make_takes
from reelchain.core.errors import ConfigError, IllegalTransitionError
from reelchain.core.models import TakeStatus
from reelchain.orchestrator.backoff import BackoffPolicy
from reelchain.orchestrator.state import TRANSITIONS, can_transition, transition


def test_backoff_doubles_and_caps():
    policy = BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=60.0)
    assert [policy.delay(i) for i in range(8)] == [1, 2, 4, 8, 16, 32, 60, 60]


def test_backoff_delays_generator_matches_delay():
    policy = BackoffPolicy(base_delay=0.5, multiplier=3.0, max_delay=5.0)
    gen = policy.delays()
    assert [next(gen) for _ in range(4)] == [0.5, 1.5, 4.5, 5.0]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_delay": 5.0, "max_delay": 1.0},
        {"multiplier": 0.5},
        {"max_attempts": 0},
        {"take_timeout": 0},
        {"call_timeout": 0},
    ],
)
def test_backoff_rejects_invalid_values(kwargs):
    with pytest.raises(ConfigError):
        BackoffPolicy(**kwargs)


def test_terminal_states_have_no_exits():
    assert TRANSITIONS[TakeStatus.COMMITTED] == frozenset()
    assert TRANSITIONS[TakeStatus.FAILED] == frozenset()
    assert TakeStatus.COMMITTED.is_terminal and TakeStatus.FAILED.is_terminal


def test_only_failed_path_skips_the_cache_check():
    assert can_transition(TakeStatus.PENDING, TakeStatus.FAILED)
    assert not can_transition(TakeStatus.PENDING, TakeStatus.SUBMITTING)
    assert not can_transition(TakeStatus.CACHE_HIT, TakeStatus.RESERVING)
    assert can_transition(TakeStatus.ROLLED_BACK, TakeStatus.FAILED)
    assert not can_transition(TakeStatus.ROLLED_BACK, TakeStatus.COMMITTED)


def test_transition_records_history_and_rejects_illegal_moves():
    take = make_takes(["Only take."])[0]
    transition(take, TakeStatus.CACHE_CHECK)
    transition(take, TakeStatus.CACHE_MISS)
    assert take.history == [TakeStatus.PENDING, TakeStatus.CACHE_CHECK, TakeStatus.CACHE_MISS]

    with pytest.raises(IllegalTransitionError):
        transition(take, TakeStatus.COMMITTED)
    assert take.status == TakeStatus.CACHE_MISS
