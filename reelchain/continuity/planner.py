from hashlib import sha1
from typing import Dict, List, Optional, Sequence

from reelchain.core.errors import PlanValidationError
from reelchain.core.models import ContinuityMode, DurationRange, Segment, Take
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


def stable_take_id(batch_key: str, index: int, text: str) -> str:
    key = f"{batch_key}|{index}|{text}"
    return sha1(key.encode("utf-8")).hexdigest()


class ContinuityPlanner:
    """Turns ordered segments into takes and wires the continuity edges."""

    def __init__(self, duration_range: Optional[DurationRange] = None):
        self.duration_range = duration_range or DurationRange(3.0, 10.0)

    def plan(
        self,
        segments: Sequence[Segment],
        continuity_mode: ContinuityMode = ContinuityMode.ADJACENT,
        batch_key: str = "",
    ) -> List[Take]:
        mode = ContinuityMode(continuity_mode)
        takes: List[Take] = []
        for seg in sorted(segments, key=lambda s: s.index):
            takes.append(
                Take(
                    id=stable_take_id(batch_key, seg.index, seg.text),
                    index=seg.index,
                    text=seg.text,
                    target_duration_range=self.duration_range,
                    estimated_duration=seg.estimated_duration,
                    taxonomy_hints=dict(seg.taxonomy_hints),
                )
            )

        if mode != ContinuityMode.NONE:
            for prev, take in zip(takes, takes[1:]):
                take.depends_on_take_id = prev.id
                prev.emit_anchor = True
            if mode == ContinuityMode.FULL_CHAIN and takes:
                takes[-1].emit_anchor = True

        validate_plan(takes)
        logger.info(f"Planned {len(takes)} takes with continuity={mode.value}")
        return takes


def validate_plan(takes: Sequence[Take]) -> None:
    """Raise PlanValidationError unless the dependency graph is a simple backward path."""
    by_id: Dict[str, Take] = {}
    for take in takes:
        if take.id in by_id:
            raise PlanValidationError(f"Duplicate take id {take.id}")
        by_id[take.id] = take

    indices = sorted(t.index for t in takes)
    if indices != list(range(len(takes))):
        raise PlanValidationError(f"Take indices must be 0..{len(takes) - 1}, got {indices}")

    consumers: Dict[str, str] = {}
    for take in takes:
        dep_id = take.depends_on_take_id
        if dep_id is None:
            continue
        dep = by_id.get(dep_id)
        if dep is None:
            raise PlanValidationError(f"Take {take.index} depends on unknown take {dep_id}")
        if dep.index >= take.index:
            raise PlanValidationError(f"Take {take.index} depends on take {dep.index} which does not precede it")
        if dep_id in consumers:
            raise PlanValidationError(f"Take {dep.index} has more than one dependent")
        consumers[dep_id] = take.id
