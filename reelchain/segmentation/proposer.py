from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from reelchain.core.errors import BoundaryProposerError
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


class TaxonomyHints(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    camera_angle: Optional[str] = Field(default=None, alias="cameraAngle")
    scene_type: Optional[str] = Field(default=None, alias="sceneType")
    emotion: Optional[str] = None
    pacing: Optional[str] = None
    visual_complexity: Optional[str] = Field(default=None, alias="visualComplexity")
    transition_type: Optional[str] = Field(default=None, alias="transitionType")

    def compact(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}


class BoundaryProposal(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    reason: Optional[str] = None
    ambiguous: bool = False
    taxonomy_hints: TaxonomyHints = Field(default_factory=TaxonomyHints, alias="taxonomyHints")


class BoundaryResponse(BaseModel):
    boundaries: List[BoundaryProposal] = Field(default_factory=list)


class BoundaryProposer(Protocol):
    def classify(self, text: str, constraints: Any) -> List[BoundaryProposal]:
        ...


SYSTEM_PROMPT = (
    "You split narrative scripts into short cinematic takes for a video generator.\n"
    "Return JSON only, shaped as {\"boundaries\": [{\"text\": ..., \"confidence\": 0..1, "
    "\"reason\": ..., \"taxonomyHints\": {\"cameraAngle\": ..., \"sceneType\": ..., "
    "\"emotion\": ..., \"pacing\": ..., \"visualComplexity\": ..., \"transitionType\": ...}}]}.\n"
    "Each boundary text must be copied verbatim from the script, in order, without gaps or rewording."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_boundary_response(raw: str) -> List[BoundaryProposal]:
    cleaned = _FENCE_RE.sub("", (raw or "").strip())
    if not cleaned:
        raise BoundaryProposerError("Empty response from boundary proposer")
    try:
        return BoundaryResponse.model_validate_json(cleaned).boundaries
    except ValueError as exc:
        raise BoundaryProposerError(f"Malformed boundary response: {exc}") from exc


def _create_chat_model(model_id: str, api_key: Optional[str], base_url: Optional[str], temperature: float):
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model_id,
        api_key=api_key or None,
        base_url=base_url or None,
        temperature=temperature,
    )


class LLMBoundaryProposer:
    """Asks an OpenAI-compatible chat model for take boundaries."""

    def __init__(
        self,
        model_id: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        chat_model: Any = None,
    ):
        self.model_id = model_id
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self._chat_model = chat_model

    @property
    def chat_model(self):
        if self._chat_model is None:
            if not self.api_key:
                raise BoundaryProposerError("Missing LLM_OPENAI_API_KEY for boundary proposer.")
            self._chat_model = _create_chat_model(self.model_id, self.api_key, self.base_url, self.temperature)
        return self._chat_model

    def classify(self, text: str, constraints: Any) -> List[BoundaryProposal]:
        from langchain_core.messages import HumanMessage, SystemMessage

        limits = {
            "max_segments": getattr(constraints, "max_segments", None),
            "max_tokens_per_segment": getattr(constraints, "max_tokens_per_segment", None),
            "target_duration_sec": getattr(constraints, "target_duration", None),
        }
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=f"Constraints: {json.dumps(limits)}\n\nScript:\n{text}"),
        ]
        response = self.chat_model.invoke(messages)
        content = getattr(response, "content", response)
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        proposals = parse_boundary_response(str(content))
        logger.info(f"Boundary proposer returned {len(proposals)} boundaries")
        return proposals
