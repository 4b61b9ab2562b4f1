from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

WAITING = "waiting"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"

POLL_STATES = (WAITING, PROCESSING, SUCCEEDED, FAILED)


@dataclass(frozen=True)
class PollStatus:
    state: str
    asset_url: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.state not in POLL_STATES:
            raise ValueError(f"Unknown poll state: {self.state}")

    @property
    def is_terminal(self) -> bool:
        return self.state in (SUCCEEDED, FAILED)


class VideoProvider(Protocol):
    """Abstract request/poll contract of a clip generation backend."""

    name: str

    @property
    def identity(self) -> str:
        ...

    async def submit(self, prompt: str, params: Dict[str, Any], seed_image: Optional[bytes] = None) -> str:
        ...

    async def poll(self, task_id: str) -> PollStatus:
        ...
