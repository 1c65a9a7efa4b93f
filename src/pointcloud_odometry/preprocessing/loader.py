"""
Frame Loader

Loads individual point-cloud frames from disk into (N x 3) arrays and
discovers frame sequences in a directory.

Supported formats:
- .npy: numpy array with at least three columns
- .xyz / .txt / .csv: text, comma or whitespace separated, first three columns used
- .las / .laz: via laspy, with optional classification filtering
"""

from pathlib import Path
from typing import Iterable, Iterator, List, Optional

import laspy
import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

TEXT_SUFFIXES = ('.xyz', '.txt', '.csv')
LAS_SUFFIXES = ('.las', '.laz')
SUPPORTED_SUFFIXES = ('.npy',) + TEXT_SUFFIXES + LAS_SUFFIXES


class FrameLoader:
    """
    Load point-cloud frames for odometry.

    Every loaded frame is returned as a C-contiguous (N x 3) array of the
    configured dtype.
    """

    def __init__(self, *, classification_filter: Optional[List[int]] = None,
                 delimiter: Optional[str] = None, dtype=np.float64):
        """
        Initialize the frame loader.

        Args:
            classification_filter: LAS/LAZ classification codes to keep (None keeps all)
            delimiter: Column delimiter for text frames (None auto-detects)
            dtype: Floating-point type of the returned arrays
        """
        self.classification_filter = classification_filter
        self.delimiter = delimiter
        self.dtype = np.dtype(dtype)

    def load(self, file_path: str) -> np.ndarray:
        """
        Load a single frame.

        Args:
            file_path: Path to the frame file

        Returns:
            (N x 3) array of point coordinates

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file format is unsupported or the content is not Nx3
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        if suffix == '.npy':
            points = np.load(file_path)
        elif suffix in TEXT_SUFFIXES:
            points = self._load_text(file_path)
        else:
            points = self._load_las(file_path)

        points = np.atleast_2d(np.asarray(points))
        if points.size == 0:
            logger.warning(f"No points found in file: {file_path}")
            return np.empty((0, 3), dtype=self.dtype)
        if points.ndim != 2 or points.shape[1] < 3:
            raise ValueError(f"Expected Nx3 points in {file_path}, got shape {points.shape}")

        points = np.ascontiguousarray(points[:, :3], dtype=self.dtype)
        logger.debug(f"Loaded {len(points)} points from {file_path.name}")
        return points

    def _load_text(self, file_path: Path) -> np.ndarray:
        delimiter = self.delimiter
        if delimiter is None:
            with file_path.open('r', encoding='utf-8') as f:
                first = next((line for line in f if line.strip() and not line.startswith('#')), '')
            delimiter = ',' if ',' in first else None
        return np.loadtxt(file_path, delimiter=delimiter, comments='#', ndmin=2)

    def _load_las(self, file_path: Path) -> np.ndarray:
        las = laspy.read(file_path)
        total_points = len(las.points)
        mask = np.ones(total_points, dtype=bool)

        if self.classification_filter is not None:
            if hasattr(las, 'classification'):
                classes = np.asarray(las.classification)
                mask = np.isin(classes, self.classification_filter)
                logger.debug(
                    f"Classification filter {self.classification_filter} kept "
                    f"{int(mask.sum())} of {total_points} points"
                )
            else:
                logger.warning("Classification not available; proceeding without filtering.")

        return np.column_stack([
            np.asarray(las.x, dtype=np.float64)[mask],
            np.asarray(las.y, dtype=np.float64)[mask],
            np.asarray(las.z, dtype=np.float64)[mask],
        ])

    def iter_frames(self, paths: Iterable[str]) -> Iterator[np.ndarray]:
        """Lazily load frames in the given order."""
        for path in paths:
            yield self.load(path)


def discover_frames(directory: str, pattern: str = '*') -> List[Path]:
    """
    Find frame files in a directory, sorted by file name.

    Only files with a supported suffix are returned.

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Frame directory not found: {directory}")

    frames = sorted(
        p for p in directory.glob(pattern)
        if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
    )
    logger.info(f"Discovered {len(frames)} frames in {directory}")
    return frames
