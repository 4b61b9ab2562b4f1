import asyncio
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

from reelchain.cache.result_cache import ResultCache
from reelchain.continuity.planner import ContinuityPlanner
from reelchain.core.errors import ProviderPermanentError, ProviderTransientError, TaskNotFoundError
from reelchain.core.models import ContinuityMode, Segment
from reelchain.ledger.credit_ledger import CreditLedger
from reelchain.orchestrator.backoff import BackoffPolicy
from reelchain.orchestrator.orchestrator import OrchestratorContext
from reelchain.providers.base import FAILED, PROCESSING, SUCCEEDED, PollStatus
from reelchain.providers.selection import ProviderPolicy


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@dataclass
class SubmitCall:
    prompt: str
    params: Dict[str, Any]
    seed_image: Optional[bytes]
    task_id: str


class ScriptedProvider:
    """
    Provider whose behaviour per submission follows a script:
    ok, fail, transient, permanent, not_found, hang. Unscripted submissions succeed.
    Prompts listed in fail_prompts are always rejected as permanent errors.
    """

    def __init__(
        self,
        name: str = "primary",
        script: Optional[List[str]] = None,
        polls_before_done: int = 1,
        fail_prompts: Optional[set] = None,
    ):
        self.name = name
        self.script = list(script or [])
        self.fail_prompts = set(fail_prompts or ())
        self.polls_before_done = polls_before_done
        self.calls: List[SubmitCall] = []
        self.poll_count = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._tasks: Dict[str, Dict[str, Any]] = {}

    @property
    def identity(self) -> str:
        return f"{self.name}:model"

    async def submit(self, prompt, params, seed_image=None) -> str:
        await asyncio.sleep(0)
        if prompt in self.fail_prompts:
            behaviour = "permanent"
        else:
            behaviour = self.script.pop(0) if self.script else "ok"
        task_id = f"{self.name}-task-{len(self.calls)}"
        self.calls.append(SubmitCall(prompt, dict(params), seed_image, task_id))
        if behaviour == "transient":
            raise ProviderTransientError("503 busy", status_code=503, provider=self.name)
        if behaviour == "permanent":
            raise ProviderPermanentError("401 unauthorized", status_code=401, provider=self.name)
        self._tasks[task_id] = {"behaviour": behaviour, "polls": 0}
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        return task_id

    async def poll(self, task_id: str) -> PollStatus:
        await asyncio.sleep(0)
        self.poll_count += 1
        task = self._tasks[task_id]
        task["polls"] += 1
        behaviour = task["behaviour"]
        if behaviour == "not_found":
            raise TaskNotFoundError(task_id, provider=self.name)
        if behaviour == "hang" or task["polls"] < self.polls_before_done:
            return PollStatus(PROCESSING)
        self.in_flight -= 1
        if behaviour == "fail":
            return PollStatus(FAILED, reason="render failed")
        return PollStatus(SUCCEEDED, asset_url=f"https://cdn.example.com/{task_id}.mp4")

    @property
    def submit_count(self) -> int:
        return len(self.calls)


class StuckProvider(ScriptedProvider):
    """Accepts submissions, then never answers a poll."""

    async def poll(self, task_id: str) -> PollStatus:
        self.poll_count += 1
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


class InMemoryAssetStore:
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    def put(self, data: bytes) -> str:
        ref = hashlib.sha256(data).hexdigest()
        self.blobs[ref] = data
        return ref

    def get(self, ref: str) -> bytes:
        return self.blobs[ref]

    def exists(self, ref: str) -> bool:
        return ref in self.blobs

    def path(self, ref: str) -> str:
        return f"/mem/{ref}"


class FakeFrameExtractor:
    def __init__(self, fail_for: Optional[set] = None):
        self.calls: List[tuple] = []
        self.frames: Dict[str, bytes] = {}
        self.fail_for = fail_for or set()

    def extract(self, asset_ref: str, time_fraction: float) -> bytes:
        self.calls.append((asset_ref, time_fraction))
        if asset_ref in self.fail_for:
            raise RuntimeError("cannot decode clip")
        frame = b"PNG-last-frame-of-" + asset_ref.encode("ascii")
        self.frames[asset_ref] = frame
        return frame


class FixedCostEstimator:
    def __init__(self, cost: int = 10):
        self.cost = cost

    def estimate(self, take) -> int:
        return self.cost

    def provider_params(self, take) -> Dict[str, Any]:
        return {"duration": 5, "quality": "basic"}


def fetch_asset(url: str) -> bytes:
    return f"mp4-bytes:{url}".encode("utf-8")


def make_segments(texts: List[str]) -> List[Segment]:
    segments = []
    offset = 0
    for i, text in enumerate(texts):
        segments.append(
            Segment(
                index=i,
                start=offset,
                end=offset + len(text),
                source_text=text,
                text=text,
                estimated_tokens=max(1, len(text) // 4),
                estimated_duration=5.0,
            )
        )
        offset += len(text)
    return segments


def make_takes(texts: List[str], mode: ContinuityMode = ContinuityMode.NONE, batch_key: str = "test"):
    return ContinuityPlanner().plan(make_segments(texts), mode, batch_key=batch_key)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def asset_store():
    return InMemoryAssetStore()


@pytest.fixture
def frame_extractor():
    return FakeFrameExtractor()


@pytest.fixture
def make_context(clock, asset_store, frame_extractor):
    def _make(
        primary: Optional[ScriptedProvider] = None,
        fallback: Optional[ScriptedProvider] = None,
        granted: int = 1000,
        cost: int = 10,
        cache: Optional[ResultCache] = None,
        ledger: Optional[CreditLedger] = None,
        **backoff_kwargs,
    ) -> OrchestratorContext:
        backoff_args = {"base_delay": 1.0, "multiplier": 2.0, "max_delay": 4.0, "max_attempts": 3, "fallback_after": 2}
        backoff_args.update(backoff_kwargs)
        backoff = BackoffPolicy(**backoff_args)
        return OrchestratorContext(
            ledger=ledger or CreditLedger(granted=granted),
            cache=cache or ResultCache.open(),
            asset_store=asset_store,
            frame_extractor=frame_extractor,
            providers=ProviderPolicy(primary or ScriptedProvider(), fallback, fallback_after=backoff.fallback_after),
            backoff=backoff,
            cost_estimator=FixedCostEstimator(cost),
            fetch_asset=fetch_asset,
            clock=clock,
            sleep=clock.sleep,
        )

    return _make
