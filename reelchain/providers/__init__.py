from .base import PollStatus, VideoProvider
from .selection import ProviderPolicy
from .wavespeed import WaveSpeedClient, WaveSpeedProvider, download_bytes

__all__ = [
    "PollStatus",
    "ProviderPolicy",
    "VideoProvider",
    "WaveSpeedClient",
    "WaveSpeedProvider",
    "download_bytes",
]
