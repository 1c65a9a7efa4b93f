"""
Pipeline Module

Drives an incremental registration engine over a frame sequence.
"""

from .sequence import TrackingLostError, TrackingResult, track_sequence

__all__ = [
    "TrackingLostError",
    "TrackingResult",
    "track_sequence",
]
