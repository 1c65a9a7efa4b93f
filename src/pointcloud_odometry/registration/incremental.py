"""
Incremental Registration

Chains pairwise alignments of consecutive frames into a running absolute
pose. Only the most recently accepted frame is retained.

Composition order: with relative transforms T1..Tn accepted in temporal
order after a seed G, the absolute transform is G @ T1 @ ... @ Tn.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import numpy as np

from .aligner import PairwiseAligner
from .transform import as_transform, compose, identity


class AlignerNotSetError(RuntimeError):
    """Raised when a cloud is registered before an aligner is attached."""


class RegistrationState(str, Enum):
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"


class IncrementalRegistration:
    """
    Stateful frame-to-frame registration engine.

    Each call to ``register_cloud`` aligns the new frame (source) against the
    retained frame (target). The result is only committed when the aligner
    reports convergence; a failed attempt leaves every field untouched, so the
    same frame can be retried against the same reference.

    The engine is not thread-safe. Callers must serialize ``register_cloud``,
    ``reset`` and ``set_aligner`` on a given instance.

    Example:
        >>> engine = IncrementalRegistration(ICPAligner())
        >>> for frame in frames:
        ...     if not engine.register_cloud(frame):
        ...         continue
        >>> pose = engine.get_absolute_transform()
    """

    def __init__(self, aligner: Optional[PairwiseAligner] = None, dtype=np.float64):
        """
        Args:
            aligner: Pairwise aligner used for every non-initial frame.
                May be attached later with ``set_aligner``.
            dtype: Floating-point scalar type of the stored transforms.
        """
        self._dtype = np.dtype(dtype)
        if not np.issubdtype(self._dtype, np.floating):
            raise ValueError(f"Transform dtype must be floating point, got {self._dtype}")
        self._aligner = aligner
        self._last_cloud: Optional[np.ndarray] = None
        self._delta_transform = identity(self._dtype)
        self._abs_transform = identity(self._dtype)

    # ------------------------ Registration ------------------------
    def register_cloud(self, cloud: np.ndarray, initial_guess: Optional[np.ndarray] = None) -> bool:
        """
        Register a new frame against the retained one.

        On the first call (or the first after ``reset``) there is nothing to
        align against: the frame becomes the reference and ``initial_guess``
        is adopted as both the delta and the absolute transform.

        Args:
            cloud: New frame (N x 3). The engine keeps a reference and never
                modifies it.
            initial_guess: Starting estimate of the frame-to-frame motion
                (4 x 4). Defaults to identity.

        Returns:
            True if the frame was accepted, False if the aligner did not
            converge (state unchanged).

        Raises:
            AlignerNotSetError: If no aligner is attached.
            ValueError: If ``initial_guess`` is not a finite 4x4 matrix.
        """
        if self._aligner is None:
            raise AlignerNotSetError(
                "No pairwise aligner attached; call set_aligner() before register_cloud()."
            )

        guess = identity(self._dtype) if initial_guess is None else as_transform(initial_guess, self._dtype)

        if self._last_cloud is None:
            self._last_cloud = cloud
            self._delta_transform = guess
            self._abs_transform = guess.copy()
            return True

        self._aligner.set_input_source(cloud)
        self._aligner.set_input_target(self._last_cloud)
        # The transformed source is not needed here
        self._aligner.align(guess)

        converged = bool(self._aligner.has_converged())
        if converged:
            delta = as_transform(self._aligner.get_final_transformation(), self._dtype)
            absolute = compose(self._abs_transform, delta)
            # Commit only after every value has been computed
            self._delta_transform = delta
            self._abs_transform = absolute
            self._last_cloud = cloud

        return converged

    # ------------------------ Accessors ------------------------
    def get_delta_transform(self) -> np.ndarray:
        """Last accepted frame-to-frame transform (identity before first use)."""
        return self._delta_transform.copy()

    def get_absolute_transform(self) -> np.ndarray:
        """Accumulated transform since construction or the last reset."""
        return self._abs_transform.copy()

    def get_last_cloud(self) -> Optional[np.ndarray]:
        return self._last_cloud

    @property
    def retained_frame(self) -> Optional[np.ndarray]:
        return self._last_cloud

    @property
    def aligner(self) -> Optional[PairwiseAligner]:
        return self._aligner

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def state(self) -> RegistrationState:
        if self._last_cloud is None:
            return RegistrationState.UNINITIALIZED
        return RegistrationState.TRACKING

    @property
    def is_initialized(self) -> bool:
        return self._last_cloud is not None

    # ------------------------ Lifecycle ------------------------
    def reset(self) -> None:
        """Forget the retained frame and reset both transforms to identity."""
        self._last_cloud = None
        self._delta_transform = identity(self._dtype)
        self._abs_transform = identity(self._dtype)

    def set_aligner(self, aligner: Optional[PairwiseAligner]) -> None:
        """Bind the aligner used for subsequent registrations."""
        self._aligner = aligner

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(state={self.state.value}, "
            f"aligner={type(self._aligner).__name__ if self._aligner is not None else None}, "
            f"dtype={self._dtype})"
        )
