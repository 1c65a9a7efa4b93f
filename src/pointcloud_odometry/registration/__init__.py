"""
Registration Module

This module provides the incremental registration engine that chains
pairwise alignments into an absolute pose, the PairwiseAligner capability
it consumes, an ICP implementation of that capability, and homogeneous
transform helpers.
"""

from .aligner import PairwiseAligner
from .icp import ICPAligner
from .incremental import AlignerNotSetError, IncrementalRegistration, RegistrationState
from .transform import (
    identity,
    compose,
    as_transform,
    rigid_transform,
    rotation_about_axis,
    invert_rigid,
    apply_transform,
    rotation_angle,
    translation_norm,
)

__all__ = [
    "PairwiseAligner",
    "ICPAligner",
    "AlignerNotSetError",
    "IncrementalRegistration",
    "RegistrationState",
    "identity",
    "compose",
    "as_transform",
    "rigid_transform",
    "rotation_about_axis",
    "invert_rigid",
    "apply_transform",
    "rotation_angle",
    "translation_norm",
]
