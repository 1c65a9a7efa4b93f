"""
Pairwise aligner capability.

Any object exposing these five methods can be attached to an
``IncrementalRegistration`` engine. No base class is required; the protocol
is runtime-checkable so callers can verify conformance with ``isinstance``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class PairwiseAligner(Protocol):
    """
    Estimates the rigid motion that maps a source cloud onto a target cloud.

    Call order expected by the engine:
        set_input_source(new_frame)
        set_input_target(retained_frame)
        align(initial_guess)
        has_converged()
        get_final_transformation()   # only read when converged
    """

    def set_input_source(self, cloud: np.ndarray) -> None:
        ...

    def set_input_target(self, cloud: np.ndarray) -> None:
        ...

    def align(self, initial_guess: np.ndarray) -> np.ndarray:
        """Run the alignment and return a transformed copy of the source."""
        ...

    def has_converged(self) -> bool:
        ...

    def get_final_transformation(self) -> np.ndarray:
        ...
