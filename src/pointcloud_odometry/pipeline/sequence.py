"""
Sequence tracking

Feeds an ordered stream of frames into an IncrementalRegistration engine and
collects the resulting trajectory in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Literal, Optional

import numpy as np

from ..registration.incremental import IncrementalRegistration
from ..registration.transform import identity, rotation_angle, translation_norm
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

MotionGuess = Literal["identity", "constant_velocity"]
FailurePolicy = Literal["skip", "reset", "abort"]


class TrackingLostError(RuntimeError):
    """Raised by track_sequence when a frame fails to register under on_failure='abort'."""

    def __init__(self, frame_index: int, result: "TrackingResult"):
        super().__init__(f"Registration did not converge at frame {frame_index}")
        self.frame_index = frame_index
        self.result = result


@dataclass
class TrackingResult:
    """
    Trajectory produced by track_sequence.

    ``poses[i]`` is the engine's absolute transform after frame ``i`` was
    processed; for a skipped frame it repeats the previous pose.
    """

    poses: List[np.ndarray] = field(default_factory=list)
    accepted: List[bool] = field(default_factory=list)
    n_failures: int = 0
    n_resets: int = 0

    @property
    def n_frames(self) -> int:
        return len(self.poses)

    @property
    def accepted_ratio(self) -> float:
        if not self.accepted:
            return 0.0
        return float(np.mean(self.accepted))

    def positions(self) -> np.ndarray:
        """Sensor positions (translation part of each pose) as an (N x 3) array."""
        if not self.poses:
            return np.empty((0, 3))
        return np.array([pose[:3, 3] for pose in self.poses])


def track_sequence(
    engine: IncrementalRegistration,
    frames: Iterable[np.ndarray],
    *,
    initial_pose: Optional[np.ndarray] = None,
    motion_guess: MotionGuess = "identity",
    on_failure: FailurePolicy = "skip",
) -> TrackingResult:
    """
    Register every frame in order and record the trajectory.

    Args:
        engine: Engine with an aligner attached. It is reset before the first frame.
        frames: Frames in temporal order.
        initial_pose: Pose assigned to the first frame (identity if None).
        motion_guess: "identity" seeds every alignment with identity;
            "constant_velocity" seeds it with the last accepted delta.
        on_failure: "skip" drops a frame that does not converge;
            "reset" restarts the engine from the current pose with that frame
            as the new reference; "abort" raises TrackingLostError.

    Returns:
        TrackingResult with one pose per processed frame.
    """
    if motion_guess not in ("identity", "constant_velocity"):
        raise ValueError(f"Unknown motion_guess '{motion_guess}'")
    if on_failure not in ("skip", "reset", "abort"):
        raise ValueError(f"Unknown on_failure policy '{on_failure}'")

    engine.reset()
    result = TrackingResult()
    seed = identity(engine.dtype) if initial_pose is None else initial_pose
    velocity = identity(engine.dtype)

    for index, frame in enumerate(frames):
        if not engine.is_initialized:
            engine.register_cloud(frame, seed)
            result.poses.append(engine.get_absolute_transform())
            result.accepted.append(True)
            logger.info(f"Frame {index}: reference frame with {len(frame)} points")
            continue

        guess = velocity if motion_guess == "constant_velocity" else identity(engine.dtype)
        if engine.register_cloud(frame, guess):
            delta = engine.get_delta_transform()
            velocity = delta
            result.poses.append(engine.get_absolute_transform())
            result.accepted.append(True)
            logger.debug(
                f"Frame {index}: accepted, |Δt|={translation_norm(delta):.4f} m, "
                f"Δθ={np.rad2deg(rotation_angle(delta)):.3f}°"
            )
            continue

        result.n_failures += 1
        current_pose = engine.get_absolute_transform()
        logger.warning(f"Frame {index}: registration did not converge (policy={on_failure})")

        if on_failure == "abort":
            raise TrackingLostError(index, result)

        if on_failure == "reset":
            engine.reset()
            engine.register_cloud(frame, current_pose)
            velocity = identity(engine.dtype)
            result.n_resets += 1
            result.poses.append(engine.get_absolute_transform())
            result.accepted.append(False)
            continue

        result.poses.append(current_pose)
        result.accepted.append(False)

    logger.info(
        f"Tracked {result.n_frames} frames: {result.n_failures} failures, "
        f"{result.n_resets} resets, accepted ratio {result.accepted_ratio:.2%}"
    )
    return result
