from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from reelchain.assets.asset_store import FileAssetStore
from reelchain.assets.frames import OpenCVFrameExtractor
from reelchain.cache.result_cache import ResultCache
from reelchain.config.config import (
    backoff_from_config,
    constraints_from_config,
    cost_estimator_from_config,
    duration_range_from_config,
    require,
)
from reelchain.continuity.planner import ContinuityPlanner
from reelchain.core.models import ContinuityMode, Timeline
from reelchain.ledger.credit_ledger import CreditLedger, LedgerSnapshot
from reelchain.orchestrator.orchestrator import GenerationOrchestrator, OrchestratorContext
from reelchain.providers.selection import ProviderPolicy
from reelchain.providers.wavespeed import WaveSpeedProvider
from reelchain.segmentation.proposer import BoundaryProposer, LLMBoundaryProposer
from reelchain.segmentation.segmenter import (
    ScriptSegmenter,
    SegmentationConstraints,
    SegmentationMode,
    SegmentationResult,
)
from reelchain.utils.logging_setup import log_context, setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class PipelineReport:
    segmentation: SegmentationResult
    timeline: Timeline
    ledger: LedgerSnapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segments": len(self.segmentation.segments),
            "warnings": [w.message for w in self.segmentation.warnings],
            "timeline": self.timeline.to_dict(),
            "ledger": self.ledger.to_dict(),
        }


def _provider_from_config(section: Dict[str, Any], default_name: str) -> WaveSpeedProvider:
    return WaveSpeedProvider(
        api_key=section.get("api_key", ""),
        model_id=section.get("model_id", "bytedance/seedance-v1-pro-t2v-480p"),
        i2v_model_id=section.get("i2v_model_id"),
        base_url=section.get("base_url", "https://api.wavespeed.ai/api/v3"),
        name=section.get("name", default_name),
        request_timeout=float(section.get("request_timeout", 30.0)),
    )


def proposer_from_config(config: Dict[str, Any]) -> Optional[LLMBoundaryProposer]:
    """The LLM boundary proposer for assisted mode, or None when no LLM key is configured."""
    llm = config.get("llm") or {}
    if not llm.get("api_key"):
        return None
    return LLMBoundaryProposer(
        model_id=llm.get("model_id", "gpt-4o-mini"),
        api_key=llm.get("api_key"),
        base_url=llm.get("base_url") or None,
        temperature=float(llm.get("temperature", 0.2)),
    )


class ReelPipeline:
    """Script in, timeline out: segment, plan continuity, then generate."""

    def __init__(
        self,
        context: OrchestratorContext,
        segmenter: Optional[ScriptSegmenter] = None,
        planner: Optional[ContinuityPlanner] = None,
        constraints: Optional[SegmentationConstraints] = None,
        proposer: Optional[BoundaryProposer] = None,
        concurrency_budget: int = 2,
    ):
        self.context = context
        self.segmenter = segmenter or ScriptSegmenter()
        self.planner = planner or ContinuityPlanner()
        self.constraints = constraints or SegmentationConstraints()
        self.proposer = proposer
        self.concurrency_budget = concurrency_budget
        self.orchestrator: Optional[GenerationOrchestrator] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ReelPipeline":
        primary_section = config["providers"]["primary"]
        require(config, "providers.primary.api_key")
        primary = _provider_from_config(primary_section, "wavespeed")
        fallback_section = config["providers"].get("fallback") or {}
        fallback = _provider_from_config(fallback_section, "fallback") if fallback_section.get("api_key") else None

        backoff = backoff_from_config(config)
        asset_store = FileAssetStore(require(config, "assets.root"))
        ledger = CreditLedger.open(
            require(config, "ledger.db_path"), granted=int(config["ledger"].get("granted_balance", 0))
        )
        cache = ResultCache.open(require(config, "cache.db_path"), asset_exists=asset_store.exists)

        context = OrchestratorContext(
            ledger=ledger,
            cache=cache,
            asset_store=asset_store,
            frame_extractor=OpenCVFrameExtractor(asset_store.path),
            providers=ProviderPolicy(primary, fallback, fallback_after=backoff.fallback_after),
            backoff=backoff,
            cost_estimator=cost_estimator_from_config(config),
            anchor_time_fraction=float(config["pipeline"].get("anchor_time_fraction", 0.98)),
        )

        return cls(
            context,
            planner=ContinuityPlanner(duration_range_from_config(config)),
            constraints=constraints_from_config(config),
            proposer=proposer_from_config(config),
            concurrency_budget=int(config["pipeline"].get("concurrency", 2)),
        )

    def segment(
        self,
        script: str,
        mode: SegmentationMode = SegmentationMode.DURATION,
        constraints: Optional[SegmentationConstraints] = None,
    ) -> SegmentationResult:
        return self.segmenter.segment(
            script,
            mode=mode,
            constraints=constraints or self.constraints,
            boundary_proposer=self.proposer,
        )

    async def generate(
        self,
        script: str,
        mode: SegmentationMode = SegmentationMode.DURATION,
        constraints: Optional[SegmentationConstraints] = None,
        continuity_mode: ContinuityMode = ContinuityMode.ADJACENT,
        concurrency_budget: Optional[int] = None,
        proposer: Optional[BoundaryProposer] = None,
    ) -> PipelineReport:
        batch_id = uuid.uuid4().hex[:8]
        with log_context(batch_id=batch_id):
            segmentation = self.segmenter.segment(
                script,
                mode=mode,
                constraints=constraints or self.constraints,
                boundary_proposer=proposer or self.proposer,
            )
            for warning in segmentation.warnings:
                logger.info(f"Segmentation warning [{warning.severity.value}] {warning.message}")
            takes = self.planner.plan(segmentation.segments, continuity_mode, batch_key=batch_id)
            self.orchestrator = GenerationOrchestrator(self.context)
            timeline = await self.orchestrator.run(
                takes, concurrency_budget or self.concurrency_budget, batch_id=batch_id
            )
        return PipelineReport(segmentation, timeline, self.context.ledger.snapshot())

    def cancel(self) -> None:
        if self.orchestrator is not None:
            self.orchestrator.cancel()

    def close(self) -> None:
        self.context.cache.close()
        self.context.ledger.close()
