from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class TakeStatus(str, Enum):
    PENDING = "pending"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    RESERVING = "reserving"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FALLBACK_PROVIDER = "fallback_provider"
    EXTRACTING_ANCHOR = "extracting_anchor"
    ROLLED_BACK = "rolled_back"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TakeStatus.COMMITTED, TakeStatus.FAILED)


class ContinuityMode(str, Enum):
    NONE = "none"
    ADJACENT = "adjacent"
    FULL_CHAIN = "full_chain"


class ReservationState(str, Enum):
    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"


@dataclass(frozen=True)
class DurationRange:
    min_sec: float
    max_sec: float

    def clamp(self, value: float) -> float:
        return max(self.min_sec, min(self.max_sec, value))


@dataclass
class Segment:
    index: int
    start: int                      # offsets into the normalized script, [start, end)
    end: int
    source_text: str                # normalized[start:end]
    text: str                       # prompt text, possibly truncated
    estimated_tokens: int
    estimated_duration: float
    confidence: float = 1.0
    split_reason: str = ""
    taxonomy_hints: Dict[str, Any] = field(default_factory=dict)
    truncated: bool = False
    original_tokens: Optional[int] = None


@dataclass
class Take:
    id: str
    index: int
    text: str
    target_duration_range: DurationRange
    depends_on_take_id: Optional[str] = None
    status: TakeStatus = TakeStatus.PENDING
    estimated_duration: float = 0.0
    emit_anchor: bool = False
    taxonomy_hints: Dict[str, Any] = field(default_factory=dict)
    history: List[TakeStatus] = field(default_factory=lambda: [TakeStatus.PENDING])
    failure_reason: Optional[str] = None

    @property
    def requested_duration(self) -> float:
        return self.target_duration_range.clamp(self.estimated_duration)


@dataclass(frozen=True)
class ContinuityAnchor:
    take_id: str
    image_ref: str
    image_hash: str


_WS_RE = re.compile(r"\s+")


def normalize_prompt(text: str) -> str:
    return _WS_RE.sub(" ", unicodedata.normalize("NFC", text or "")).strip()


def _hash_payload(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


@dataclass(frozen=True)
class GenerationRequest:
    fingerprint: str
    prompt: str
    provider_params: Tuple[Tuple[str, Any], ...]
    seed_anchor_ref: Optional[str] = None

    @classmethod
    def build(
        cls,
        prompt: str,
        provider_identity: str,
        params: Optional[Dict[str, Any]] = None,
        seed_anchor: Optional[ContinuityAnchor] = None,
    ) -> "GenerationRequest":
        normalized = normalize_prompt(prompt)
        params = dict(params or {})
        fingerprint = _hash_payload(
            {
                "prompt": normalized,
                "provider": provider_identity,
                "params": params,
                "seed": seed_anchor.image_hash if seed_anchor else None,
            }
        )
        return cls(
            fingerprint=fingerprint,
            prompt=normalized,
            provider_params=tuple(sorted(params.items())),
            seed_anchor_ref=seed_anchor.image_ref if seed_anchor else None,
        )

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.provider_params)


@dataclass(frozen=True)
class GenerationResult:
    provider_task_id: str
    terminal_status: str            # "succeeded" | "failed"
    asset_ref: Optional[str] = None
    error_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.terminal_status == "succeeded"


@dataclass
class CreditReservation:
    id: str
    amount: int
    state: ReservationState = ReservationState.RESERVED
    created_at: float = 0.0


@dataclass(frozen=True)
class TimelineEntry:
    take: Take
    final_status: TakeStatus
    reason: Optional[str] = None
    asset_ref: Optional[str] = None
    cached: bool = False
    attempts: int = 0
    provider: Optional[str] = None
    credits_committed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "take_id": self.take.id,
            "index": self.take.index,
            "text": self.take.text,
            "depends_on_take_id": self.take.depends_on_take_id,
            "final_status": self.final_status.value,
            "reason": self.reason,
            "asset_ref": self.asset_ref,
            "cached": self.cached,
            "attempts": self.attempts,
            "provider": self.provider,
            "credits_committed": self.credits_committed,
        }


@dataclass(frozen=True)
class Timeline:
    entries: Tuple[TimelineEntry, ...]
    tail_anchor: Optional[ContinuityAnchor] = None

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, i: int) -> TimelineEntry:
        return self.entries[i]

    @property
    def committed(self) -> List[TimelineEntry]:
        return [e for e in self.entries if e.final_status == TakeStatus.COMMITTED]

    @property
    def failed(self) -> List[TimelineEntry]:
        return [e for e in self.entries if e.final_status == TakeStatus.FAILED]

    @property
    def is_complete_success(self) -> bool:
        return bool(self.entries) and not self.failed

    def summary(self) -> Dict[str, Any]:
        return {
            "takes": len(self.entries),
            "committed": len(self.committed),
            "failed": len(self.failed),
            "cached": sum(1 for e in self.entries if e.cached),
            "credits_committed": sum(e.credits_committed for e in self.entries),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"summary": self.summary(), "entries": [e.to_dict() for e in self.entries]}
