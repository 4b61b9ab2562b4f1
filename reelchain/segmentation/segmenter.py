"""
Script segmentation into bounded takes.

Segments are spans over the normalized script: they are contiguous, ordered,
and concatenate back to the normalized text. Prompt text may be truncated to
respect token limits, but spans always cover the full script.
"""

from __future__ import annotations

import math
import re
import statistics
import time
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from reelchain.core.errors import (
    ConstraintViolationUnresolvable,
    EmptyScriptError,
    InvalidConstraintsError,
)
from reelchain.core.models import Segment, normalize_prompt
from reelchain.segmentation.proposer import BoundaryProposal, BoundaryProposer
from reelchain.segmentation.tokens import Span, TokenEstimator, sentence_spans, word_spans
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.6


class SegmentationMode(str, Enum):
    DURATION = "duration"
    EVEN_SPLIT = "even_split"
    ASSISTED = "assisted"

    @property
    def display_name(self) -> str:
        return {
            SegmentationMode.DURATION: "Duration-Based",
            SegmentationMode.EVEN_SPLIT: "Even Split",
            SegmentationMode.ASSISTED: "AI-Assisted",
        }[self]


class SegmentationConstraints(BaseModel):
    max_segments: int = 15
    max_tokens_per_segment: int = 180
    min_duration: float = 3.0
    target_duration: float = 5.0
    max_duration: float = 10.0
    allow_auto_adjustment: bool = True
    enforce_strict_limits: bool = False

    @property
    def strict(self) -> bool:
        return self.enforce_strict_limits and not self.allow_auto_adjustment


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class SegmentationWarning:
    kind: str
    message: str
    severity: Severity
    segment_index: Optional[int] = None

    @classmethod
    def token_limit_exceeded(cls, index: int, tokens: int, limit: int) -> "SegmentationWarning":
        return cls(
            "token_limit_exceeded",
            f"Segment #{index + 1} exceeds token limit ({tokens} > {limit} tokens)",
            Severity.ERROR,
            index,
        )

    @classmethod
    def auto_adjusted(cls, description: str, index: Optional[int] = None) -> "SegmentationWarning":
        return cls("auto_adjusted", f"Auto-adjusted: {description}", Severity.INFO, index)

    @classmethod
    def fallback_used(cls, source: str, target: str, detail: str = "") -> "SegmentationWarning":
        suffix = f" ({detail})" if detail else ""
        return cls("fallback_used", f"Fallback: {source} -> {target}{suffix}", Severity.WARNING)

    @classmethod
    def low_confidence(cls, confidence: float, index: Optional[int] = None) -> "SegmentationWarning":
        where = f"Segment #{index + 1}" if index is not None else "Segmentation"
        return cls("low_confidence", f"{where} has low confidence: {confidence * 100:.1f}%", Severity.WARNING, index)


@dataclass
class SegmentationMetadata:
    mode: SegmentationMode
    strategy: str
    fallback_used: bool
    execution_time: float
    segment_count: int
    total_tokens: int
    total_duration: float
    confidence: float
    average_confidence: float
    llm_call_count: int
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        return (
            f"Strategy: {self.strategy}\n"
            f"Segments: {self.segment_count}\n"
            f"Confidence: {self.confidence * 100:.1f}%\n"
            f"Tokens: {self.total_tokens}\n"
            f"Execution: {self.execution_time:.3f}s"
        )


@dataclass
class SegmentationResult:
    segments: List[Segment]
    metadata: SegmentationMetadata
    warnings: List[SegmentationWarning]
    normalized_text: str

    @property
    def is_valid(self) -> bool:
        return bool(self.segments) and all(s.text for s in self.segments)

    @property
    def total_tokens(self) -> int:
        return sum(s.estimated_tokens for s in self.segments)

    @property
    def total_duration(self) -> float:
        return sum(s.estimated_duration for s in self.segments)

    def has_warning(self, kind: str) -> bool:
        return any(w.kind == kind for w in self.warnings)


def normalize_script(script: str) -> str:
    text = unicodedata.normalize("NFC", script or "")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def validate_constraints(constraints: SegmentationConstraints) -> None:
    c = constraints
    if c.max_segments < 1:
        raise InvalidConstraintsError(f"max_segments must be >= 1, got {c.max_segments}")
    if c.max_tokens_per_segment < 1:
        raise InvalidConstraintsError(f"max_tokens_per_segment must be >= 1, got {c.max_tokens_per_segment}")
    if c.min_duration < 0 or c.max_duration <= 0 or c.target_duration <= 0:
        raise InvalidConstraintsError("Durations must be positive")
    if c.min_duration > c.max_duration:
        raise InvalidConstraintsError(f"min_duration ({c.min_duration}) exceeds max_duration ({c.max_duration})")
    if not c.min_duration <= c.target_duration <= c.max_duration:
        raise InvalidConstraintsError(
            f"target_duration ({c.target_duration}) outside [{c.min_duration}, {c.max_duration}]"
        )


@dataclass
class _Draft:
    start: int
    end: int
    confidence: float = 1.0
    split_reason: str = ""
    taxonomy_hints: Dict[str, Any] = field(default_factory=dict)


class ScriptSegmenter:
    def __init__(self, estimator: Optional[TokenEstimator] = None):
        self.estimator = estimator or TokenEstimator()

    def segment(
        self,
        script: str,
        mode: SegmentationMode = SegmentationMode.DURATION,
        constraints: Optional[SegmentationConstraints] = None,
        boundary_proposer: Optional[BoundaryProposer] = None,
    ) -> SegmentationResult:
        started = time.perf_counter()
        constraints = constraints or SegmentationConstraints()
        mode = SegmentationMode(mode)

        if not script or not script.strip():
            raise EmptyScriptError()
        validate_constraints(constraints)

        text = normalize_script(script)
        warnings: List[SegmentationWarning] = []
        fallback_used = False
        llm_calls = 0
        effective = mode

        logger.info(f"Segmenting script ({len(text)} chars) mode={mode.value} max_segments={constraints.max_segments}")

        drafts: Optional[List[_Draft]] = None
        if mode == SegmentationMode.ASSISTED:
            drafts, llm_calls, detail = self._assisted(text, constraints, boundary_proposer)
            if drafts is None:
                fallback_used = True
                effective = SegmentationMode.DURATION
                warnings.append(
                    SegmentationWarning.fallback_used(mode.display_name, effective.display_name, detail)
                )
                logger.warning(f"Assisted segmentation unavailable, falling back to duration mode: {detail}")

        if drafts is None:
            if effective == SegmentationMode.EVEN_SPLIT:
                drafts = self._even_split(text, constraints)
            else:
                drafts = self._by_duration(text, constraints)

        drafts = self._enforce_max_segments(drafts, text, constraints, warnings)
        segments = self._build_segments(drafts, text, constraints, warnings)

        for seg in segments:
            if seg.confidence < LOW_CONFIDENCE_THRESHOLD:
                warnings.append(SegmentationWarning.low_confidence(seg.confidence, seg.index))

        confidence = self._overall_confidence(segments, fallback_used, warnings)
        if confidence < LOW_CONFIDENCE_THRESHOLD:
            warnings.append(SegmentationWarning.low_confidence(confidence))

        metadata = SegmentationMetadata(
            mode=mode,
            strategy=effective.display_name,
            fallback_used=fallback_used,
            execution_time=max(time.perf_counter() - started, 1e-9),
            segment_count=len(segments),
            total_tokens=sum(s.estimated_tokens for s in segments),
            total_duration=sum(s.estimated_duration for s in segments),
            confidence=confidence,
            average_confidence=statistics.fmean(s.confidence for s in segments),
            llm_call_count=llm_calls,
            metrics=self._metrics(segments, constraints.target_duration),
        )
        logger.info(f"Segmentation complete: {len(segments)} segments, {len(warnings)} warnings")
        return SegmentationResult(segments=segments, metadata=metadata, warnings=warnings, normalized_text=text)

    # --- strategies ---
    def _by_duration(self, text: str, c: SegmentationConstraints) -> List[_Draft]:
        units: List[Span] = []
        for start, end in sentence_spans(text):
            if self.estimator.estimate_duration(text[start:end]) > c.max_duration:
                units.extend(self._split_words_by_duration(text, start, end, c.target_duration))
            else:
                units.append((start, end))

        drafts: List[_Draft] = []
        cur: Optional[Tuple[int, int]] = None
        for start, end in units:
            if cur is None:
                cur = (start, end)
            elif self.estimator.estimate_duration(text[cur[0]:end]) <= c.target_duration:
                cur = (cur[0], end)
            else:
                drafts.append(_Draft(cur[0], cur[1], split_reason="duration"))
                cur = (start, end)
        if cur is not None:
            drafts.append(_Draft(cur[0], cur[1], split_reason="duration"))
        return drafts

    def _split_words_by_duration(self, text: str, start: int, end: int, target: float) -> List[Span]:
        per_chunk = max(1, int(target * self.estimator.words_per_second))
        words = word_spans(text, start, end)
        chunks: List[Span] = []
        for i in range(0, len(words), per_chunk):
            group = words[i:i + per_chunk]
            chunks.append((group[0][0], group[-1][1]))
        return chunks

    def _even_split(self, text: str, c: SegmentationConstraints) -> List[_Draft]:
        sentences = sentence_spans(text)
        needed = math.ceil(self.estimator.estimate(text) / c.max_tokens_per_segment)
        count = min(c.max_segments, max(len(sentences), needed))
        units = sentences if len(sentences) >= count else word_spans(text)
        count = max(1, min(count, len(units)))

        drafts: List[_Draft] = []
        prev = -1
        for k in range(1, count):
            target = k * len(text) / count
            lo = prev + 1
            hi = len(units) - (count - k) - 1
            best = min(range(lo, hi + 1), key=lambda i: abs(units[i][1] - target))
            drafts.append(_Draft(units[prev + 1][0], units[best][1], split_reason="even_split"))
            prev = best
        drafts.append(_Draft(units[prev + 1][0], units[-1][1], split_reason="even_split"))
        return drafts

    def _assisted(
        self,
        text: str,
        c: SegmentationConstraints,
        proposer: Optional[BoundaryProposer],
    ) -> Tuple[Optional[List[_Draft]], int, str]:
        if proposer is None:
            return None, 0, "no boundary proposer configured"
        try:
            proposals = list(proposer.classify(text, c) or [])
        except Exception as exc:
            logger.warning(f"Boundary proposer failed: {exc}")
            return None, 1, f"proposer error: {exc}"
        if not proposals:
            return None, 1, "proposer returned no boundaries"
        drafts = self._map_proposals(text, proposals)
        if drafts is None:
            return None, 1, "proposed boundaries do not match the script"
        return drafts, 1, ""

    def _map_proposals(self, text: str, proposals: Sequence[BoundaryProposal]) -> Optional[List[_Draft]]:
        drafts: List[_Draft] = []
        cursor = 0
        for proposal in proposals:
            needle = normalize_prompt(proposal.text)
            if not needle:
                continue
            pattern = r"\s+".join(re.escape(tok) for tok in needle.split(" "))
            m = re.compile(pattern).search(text, cursor)
            if m is None:
                return None
            cut = m.end()
            while cut < len(text) and text[cut].isspace():
                cut += 1
            if cut <= cursor:
                continue
            drafts.append(
                _Draft(
                    cursor,
                    cut,
                    confidence=float(proposal.confidence),
                    split_reason=proposal.reason or "proposed",
                    taxonomy_hints=proposal.taxonomy_hints.compact(),
                )
            )
            cursor = cut
        if not drafts:
            return None
        if cursor < len(text):
            drafts[-1].end = len(text)
        return drafts

    # --- constraint enforcement ---
    def _enforce_max_segments(
        self,
        drafts: List[_Draft],
        text: str,
        c: SegmentationConstraints,
        warnings: List[SegmentationWarning],
    ) -> List[_Draft]:
        if len(drafts) <= c.max_segments:
            return drafts
        if c.strict:
            raise ConstraintViolationUnresolvable(
                f"{len(drafts)} segments exceed max_segments={c.max_segments}"
            )
        original = len(drafts)
        merged = list(drafts)
        while len(merged) > c.max_segments:
            i = min(range(len(merged) - 1), key=lambda j: merged[j + 1].end - merged[j].start)
            left, right = merged[i], merged[i + 1]
            merged[i:i + 2] = [
                _Draft(
                    left.start,
                    right.end,
                    confidence=min(left.confidence, right.confidence),
                    split_reason="merged",
                    taxonomy_hints=left.taxonomy_hints or right.taxonomy_hints,
                )
            ]
        warnings.append(SegmentationWarning.auto_adjusted(f"merged {original} segments into {len(merged)}"))
        return merged

    def _build_segments(
        self,
        drafts: List[_Draft],
        text: str,
        c: SegmentationConstraints,
        warnings: List[SegmentationWarning],
    ) -> List[Segment]:
        segments: List[Segment] = []
        for index, d in enumerate(drafts):
            source = text[d.start:d.end]
            prompt = source.strip()
            tokens = self.estimator.estimate(prompt)
            truncated = False
            original_tokens = None
            if tokens > c.max_tokens_per_segment:
                if c.strict:
                    raise ConstraintViolationUnresolvable(
                        f"segment #{index + 1} has {tokens} tokens (limit {c.max_tokens_per_segment})",
                        segment_index=index,
                    )
                warnings.append(SegmentationWarning.token_limit_exceeded(index, tokens, c.max_tokens_per_segment))
                original_tokens = tokens
                prompt = self.estimator.truncate(prompt, c.max_tokens_per_segment)
                tokens = self.estimator.estimate(prompt)
                truncated = True
                warnings.append(SegmentationWarning.auto_adjusted(f"truncated segment #{index + 1}", index))
            segments.append(
                Segment(
                    index=index,
                    start=d.start,
                    end=d.end,
                    source_text=source,
                    text=prompt,
                    estimated_tokens=tokens,
                    estimated_duration=self.estimator.estimate_duration(source),
                    confidence=d.confidence,
                    split_reason=d.split_reason,
                    taxonomy_hints=dict(d.taxonomy_hints),
                    truncated=truncated,
                    original_tokens=original_tokens,
                )
            )
        return segments

    # --- scoring ---
    def _overall_confidence(
        self,
        segments: List[Segment],
        fallback_used: bool,
        warnings: List[SegmentationWarning],
    ) -> float:
        confidence = statistics.fmean(s.confidence for s in segments)
        if fallback_used:
            confidence -= 0.15
        confidence -= 0.05 * sum(1 for w in warnings if w.severity != Severity.INFO)
        return max(0.0, min(1.0, confidence))

    def _metrics(self, segments: List[Segment], target: float) -> Dict[str, float]:
        durations = [s.estimated_duration for s in segments]
        avg = statistics.fmean(durations)
        std = statistics.pstdev(durations)
        return {
            "average_duration": avg,
            "min_duration": min(durations),
            "max_duration": max(durations),
            "standard_deviation": std,
            "boundary_quality": 1.0 - min(abs(avg - target) / target, 1.0),
            "pacing_consistency": 1.0 - min(std / avg, 1.0) if avg > 0 else 0.0,
        }


def segment(
    script: str,
    mode: SegmentationMode = SegmentationMode.DURATION,
    constraints: Optional[SegmentationConstraints] = None,
    boundary_proposer: Optional[BoundaryProposer] = None,
) -> SegmentationResult:
    return ScriptSegmenter().segment(script, mode=mode, constraints=constraints, boundary_proposer=boundary_proposer)
