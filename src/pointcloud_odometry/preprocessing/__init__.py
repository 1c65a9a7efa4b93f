"""
Preprocessing Module

Loading and discovery of point-cloud frames from disk.
"""

from .loader import FrameLoader, discover_frames

__all__ = [
    "FrameLoader",
    "discover_frames",
]
