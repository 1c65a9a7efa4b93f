"""
ICP Aligner

Point-to-point Iterative Closest Point implementing the PairwiseAligner
capability, so it can be attached to an IncrementalRegistration engine.
"""

from __future__ import annotations

from typing import Optional, Tuple, TYPE_CHECKING
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger
from .transform import apply_transform, as_transform, rotation_angle, translation_norm

if TYPE_CHECKING:
    from ..utils.config import AlignmentConfig

logger = setup_logger(__name__)


class ICPAligner:
    """
    Implementation of ICP for frame-to-frame registration.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences
    2. Estimates optimal transformation (rotation + translation)
    3. Applies the cumulative transformation to the source points
    4. Repeats until convergence

    The result is reported through ``has_converged`` and
    ``get_final_transformation``; the transform maps source points into the
    target frame.
    """

    def __init__(
        self,
        max_iterations: int = 50,
        tolerance: float = 1e-6,
        max_correspondence_distance: float = 1.0,
        convergence_translation_epsilon: float = 1e-4,
        convergence_rotation_epsilon_deg: float = 0.1,
        max_points: Optional[int] = None,
        random_state: Optional[int] = None,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences.
            convergence_translation_epsilon: Minimum translation step (meters) below
                which the algorithm is considered converged.
            convergence_rotation_epsilon_deg: Minimum rotation step (degrees) below
                which the algorithm is considered converged.
            max_points: If set, randomly subsample each cloud to at most this
                many points before aligning.
            random_state: Seed for the subsampling RNG.
        """
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.convergence_translation_epsilon = convergence_translation_epsilon
        # Store rotation epsilon in radians for internal use
        self.convergence_rotation_epsilon_rad = np.deg2rad(convergence_rotation_epsilon_deg)
        self.max_points = max_points
        self._rng = np.random.default_rng(random_state)

        self._source: Optional[np.ndarray] = None
        self._target: Optional[np.ndarray] = None
        self._target_input: Optional[np.ndarray] = None
        self._target_nbrs: Optional[NearestNeighbors] = None
        self._converged = False
        self._final_transform = np.eye(4)
        self.fitness_score = float("inf")
        self.n_iterations = 0

    @classmethod
    def from_config(cls, cfg: "AlignmentConfig") -> "ICPAligner":
        return cls(
            max_iterations=cfg.max_iterations,
            tolerance=cfg.tolerance,
            max_correspondence_distance=cfg.max_correspondence_distance,
            convergence_translation_epsilon=cfg.convergence_translation_epsilon,
            convergence_rotation_epsilon_deg=cfg.convergence_rotation_epsilon_deg,
            max_points=cfg.max_points,
            random_state=cfg.random_state,
        )

    # ------------------------ PairwiseAligner ------------------------
    def set_input_source(self, cloud: np.ndarray) -> None:
        self._source = self._prepare(cloud)

    def set_input_target(self, cloud: np.ndarray) -> None:
        if cloud is self._target_input and self._target is not None:
            # Same reference frame as the last call; keep the KD-tree
            return
        self._target_input = cloud
        self._target = self._prepare(cloud)
        self._target_nbrs = None

    def align(self, initial_guess: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Align the source cloud to the target cloud.

        Args:
            initial_guess: Initial transformation matrix (4 x 4) or None.

        Returns:
            The source cloud transformed by the final transformation.

        Raises:
            ValueError: If source or target has not been set.
        """
        if self._source is None or self._target is None:
            raise ValueError("Both source and target must be set before calling align().")

        aligned, transform, error, converged = self.align_point_clouds(
            self._source, self._target, initial_guess
        )
        self._final_transform = transform
        self.fitness_score = error
        self._converged = converged
        return aligned

    def has_converged(self) -> bool:
        return self._converged

    def get_final_transformation(self) -> np.ndarray:
        return self._final_transform.copy()

    # ------------------------ Algorithm ------------------------
    def align_point_clouds(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_transform: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray, float, bool]:
        """
        Align source point cloud to target using ICP.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            initial_transform: Initial transformation matrix (4 x 4) or None.

        Returns:
            Tuple of (aligned_source_points, transformation_matrix, final_error, converged).
        """
        n_src = len(source)
        n_tgt = len(target)
        logger.debug(
            "Starting ICP alignment with %d source points and %d target points.",
            n_src,
            n_tgt,
        )

        transform = np.eye(4) if initial_transform is None else as_transform(initial_transform, np.float64)
        self.n_iterations = 0

        if n_src == 0 or n_tgt == 0:
            logger.warning(
                "ICP called with empty source or target (source=%d, target=%d); "
                "reporting non-convergence.",
                n_src,
                n_tgt,
            )
            return source.copy(), transform, float("inf"), False

        build_start = time.time()
        nbrs = self._neighbors_for(target)
        logger.debug("KD-Tree for target ready in %.4f s.", time.time() - build_start)

        current_source = apply_transform(source, transform)
        previous_error = float("inf")
        converged = False
        icp_start = time.time()

        for iteration in range(self.max_iterations):
            correspondences, distances = self.find_correspondences(current_source, nbrs=nbrs)

            # Filter out correspondences that exceed the max distance
            valid_mask = distances < self.max_correspondence_distance
            if np.sum(valid_mask) < 3:
                logger.warning(
                    "Not enough valid correspondences (%d) at iteration %d. Stopping ICP.",
                    int(np.sum(valid_mask)),
                    iteration + 1,
                )
                break

            valid_source = current_source[valid_mask]
            valid_target = target[correspondences[valid_mask]]

            delta_transform = self.estimate_transformation(valid_source, valid_target)

            # Update transformation: new_transform = delta_transform * current_transform
            transform = delta_transform @ transform

            # Apply the cumulative transformation to the ORIGINAL source cloud
            current_source = apply_transform(source, transform)

            current_error = float(np.mean(distances[valid_mask] ** 2))
            trans_step = translation_norm(delta_transform)
            rot_step = rotation_angle(delta_transform)
            self.n_iterations = iteration + 1

            logger.debug(
                "Iteration %d: MSE=%.6f, |Δt|=%.6e m, Δθ=%.6e rad",
                self.n_iterations,
                current_error,
                trans_step,
                rot_step,
            )

            if abs(previous_error - current_error) < self.tolerance:
                logger.debug(
                    "ICP converged after %d iterations (MSE change < %.3e).",
                    self.n_iterations,
                    self.tolerance,
                )
                converged = True
                break

            if (
                trans_step < self.convergence_translation_epsilon
                and rot_step < self.convergence_rotation_epsilon_rad
            ):
                logger.debug(
                    "ICP converged after %d iterations (motion below thresholds: "
                    "|Δt|=%.3e m, Δθ=%.3e rad).",
                    self.n_iterations,
                    trans_step,
                    rot_step,
                )
                converged = True
                break

            previous_error = current_error
        else:
            logger.info("ICP did not converge after %d iterations.", self.max_iterations)

        final_error = self.compute_registration_error(current_source, target, nbrs)
        logger.debug(
            "ICP finished in %.4f s (%d iterations, converged=%s). Final RMSE: %.6f",
            time.time() - icp_start,
            self.n_iterations,
            converged,
            final_error,
        )

        return current_source, transform, final_error, converged

    def find_correspondences(
        self,
        source: np.ndarray,
        target: Optional[np.ndarray] = None,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find closest point correspondences between source and target.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3). Only used if `nbrs` is None,
                in which case a KD-tree is built on this array.
            nbrs: Optional pre-built NearestNeighbors instance for the target.

        Returns:
            Tuple of (correspondence_indices, distances).
        """
        if nbrs is None:
            if target is None:
                raise ValueError("Either 'target' or a pre-built 'nbrs' must be provided.")
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        distances, indices = nbrs.kneighbors(source)
        return indices.ravel(), distances.ravel()

    @staticmethod
    def estimate_transformation(source_points: np.ndarray, target_points: np.ndarray) -> np.ndarray:
        """
        Estimate the optimal rigid transformation between corresponding point sets
        (Kabsch / SVD).

        Args:
            source_points: Source point cloud points (N x 3).
            target_points: Corresponding target point cloud points (N x 3).

        Returns:
            Transformation matrix (4 x 4).
        """
        source_centroid = np.mean(source_points, axis=0)
        target_centroid = np.mean(target_points, axis=0)

        H = (source_points - source_centroid).T @ (target_points - target_centroid)
        U, _, Vt = np.linalg.svd(H)
        R = Vt.T @ U.T

        # Ensure proper rotation (det(R) should be 1)
        if np.linalg.det(R) < 0:
            Vt[-1, :] *= -1
            R = Vt.T @ U.T

        t = target_centroid - R @ source_centroid

        transform = np.eye(4)
        transform[:3, :3] = R
        transform[:3, 3] = t
        return transform

    def compute_registration_error(
        self,
        source: np.ndarray,
        target: np.ndarray,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> float:
        """
        Compute the registration error (RMSE) between aligned source and target point clouds.

        Only correspondences within ``max_correspondence_distance`` contribute.
        """
        if source.size == 0 or target.size == 0:
            return float("inf")
        _, distances = self.find_correspondences(source, target, nbrs)

        valid_mask = distances < self.max_correspondence_distance
        if np.sum(valid_mask) == 0:
            logger.warning("No valid correspondences found for error computation.")
            return float("inf")

        return float(np.sqrt(np.mean(distances[valid_mask] ** 2)))

    # ------------------------ Helpers ------------------------
    def _prepare(self, cloud: np.ndarray) -> np.ndarray:
        points = np.asarray(cloud, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] < 3:
            raise ValueError(f"Expected Nx3 point array, got shape {points.shape}")
        points = points[:, :3]
        if self.max_points is not None and len(points) > self.max_points:
            idx = self._rng.choice(len(points), size=self.max_points, replace=False)
            points = points[np.sort(idx)]
        return points

    def _neighbors_for(self, target: np.ndarray) -> NearestNeighbors:
        if self._target_nbrs is None or target is not self._target:
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)
            if target is self._target:
                self._target_nbrs = nbrs
            return nbrs
        return self._target_nbrs
