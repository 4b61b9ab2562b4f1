import json
from unittest.mock import MagicMock

import pytest

from reelchain.core.errors import BoundaryProposerError
from reelchain.segmentation.proposer import LLMBoundaryProposer, parse_boundary_response
from reelchain.segmentation.segmenter import SegmentationConstraints


def _payload():
    return {
        "boundaries": [
            {"text": "Night falls.", "confidence": 0.95, "taxonomyHints": {"sceneType": "exterior", "pacing": "slow"}},
            {"text": "A car drives by.", "confidence": 0.7, "reason": "action beat"},
        ]
    }


def test_parse_strips_code_fences():
    raw = "```json\n" + json.dumps(_payload()) + "\n```"
    proposals = parse_boundary_response(raw)
    assert [p.text for p in proposals] == ["Night falls.", "A car drives by."]
    assert proposals[0].taxonomy_hints.compact() == {"scene_type": "exterior", "pacing": "slow"}
    assert proposals[1].reason == "action beat"


@pytest.mark.parametrize("raw", ["", "not json", '{"boundaries": [{"text": "x", "confidence": 3}]}'])
def test_parse_rejects_unusable_answers(raw):
    with pytest.raises(BoundaryProposerError):
        parse_boundary_response(raw)


def test_classify_sends_constraints_and_parses_reply():
    chat = MagicMock()
    chat.invoke.return_value = MagicMock(content=json.dumps(_payload()))
    proposer = LLMBoundaryProposer(chat_model=chat)

    proposals = proposer.classify("Night falls. A car drives by.", SegmentationConstraints(max_segments=4))

    assert len(proposals) == 2
    messages = chat.invoke.call_args[0][0]
    assert "Night falls. A car drives by." in messages[1].content
    assert '"max_segments": 4' in messages[1].content


def test_missing_api_key_is_reported():
    proposer = LLMBoundaryProposer(api_key=None)
    with pytest.raises(BoundaryProposerError):
        proposer.classify("Anything.", SegmentationConstraints())
