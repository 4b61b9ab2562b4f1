from reelchain.segmentation.segmenter import (
    ScriptSegmenter,
    SegmentationConstraints,
    SegmentationMetadata,
    SegmentationMode,
    SegmentationResult,
    SegmentationWarning,
    Severity,
)
from reelchain.segmentation.tokens import TokenEstimator

__all__ = [
    "ScriptSegmenter",
    "SegmentationConstraints",
    "SegmentationMetadata",
    "SegmentationMode",
    "SegmentationResult",
    "SegmentationWarning",
    "Severity",
    "TokenEstimator",
]
