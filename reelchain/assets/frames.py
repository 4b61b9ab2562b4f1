from typing import Callable, Protocol, Union
from pathlib import Path

from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


class FrameExtractor(Protocol):
    def extract(self, asset_ref: str, time_fraction: float) -> bytes:
        ...


class FrameExtractionError(RuntimeError):
    pass


class OpenCVFrameExtractor:
    """Grabs a still from a stored clip at a fraction of its length and encodes it as PNG."""

    def __init__(self, resolve_path: Callable[[str], Union[str, Path]]):
        self.resolve_path = resolve_path

    def extract(self, asset_ref: str, time_fraction: float) -> bytes:
        import cv2

        video_path = str(self.resolve_path(asset_ref))
        cap = cv2.VideoCapture(video_path)
        try:
            if not cap.isOpened():
                raise FrameExtractionError(f"Cannot open video {video_path}")
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            fraction = max(0.0, min(1.0, float(time_fraction)))
            target = min(max(frame_count - 1, 0), int(frame_count * fraction))
            if target > 0:
                cap.set(cv2.CAP_PROP_POS_FRAMES, target)
            ok, frame = cap.read()
            if not ok and target > 0:
                # Some containers report more frames than are decodable; fall back to the last readable one.
                cap.set(cv2.CAP_PROP_POS_FRAMES, max(target - 1, 0))
                ok, frame = cap.read()
            if not ok or frame is None:
                raise FrameExtractionError(f"No decodable frame at {fraction:.2f} in {video_path}")
            ok, buf = cv2.imencode(".png", frame)
            if not ok:
                raise FrameExtractionError(f"PNG encoding failed for {video_path}")
            logger.info(f"Extracted frame {target}/{frame_count} from {asset_ref[:12]}")
            return buf.tobytes()
        finally:
            cap.release()
