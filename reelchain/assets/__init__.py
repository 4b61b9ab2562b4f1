from .asset_store import AssetStore, FileAssetStore
from .frames import FrameExtractionError, FrameExtractor, OpenCVFrameExtractor

__all__ = ["AssetStore", "FileAssetStore", "FrameExtractionError", "FrameExtractor", "OpenCVFrameExtractor"]
