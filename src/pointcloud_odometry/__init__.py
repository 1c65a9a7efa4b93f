"""
Point Cloud Odometry Package

A Python package for tracking the pose of a moving sensor over a sequence of
3D point-cloud frames. Each new frame is aligned against the previously
accepted one, and the accepted frame-to-frame motions are chained into a
running absolute transform.
The pairwise alignment step is pluggable; a point-to-point ICP aligner is
included and can be replaced by any object that implements the
PairwiseAligner capability.
"""

__version__ = "0.1.0"

from .registration import *
from .preprocessing import *
from .pipeline import *
from .utils import *

__all__ = [
    "registration",
    "preprocessing",
    "pipeline",
    "utils",
]
