"""
Configuration management for pointcloud-odometry.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class PathsConfig(BaseModel):
    frames_dir: str = Field(default="data/frames")
    pattern: str = Field(default="*", description="Glob pattern for frame files inside frames_dir")


class LoaderConfig(BaseModel):
    classification_filter: Optional[List[int]] = Field(
        default=None,
        description="LAS/LAZ classification codes to keep (None = keep all points)",
    )
    delimiter: Optional[str] = Field(
        default=None,
        description="Column delimiter for text frames (None = auto-detect comma or whitespace)",
    )


class AlignmentConfig(BaseModel):
    max_iterations: int = Field(default=50, gt=0)
    tolerance: float = Field(default=1e-6, ge=0.0)
    max_correspondence_distance: float = Field(default=1.0, gt=0.0)
    max_points: Optional[int] = Field(
        default=20000,
        description="Random subsample cap per cloud (None = use all points)",
    )
    convergence_translation_epsilon: float = Field(
        default=1e-4,
        description="Minimum translation step (meters) to continue ICP iterations",
    )
    convergence_rotation_epsilon_deg: float = Field(
        default=0.1,
        description="Minimum rotation step (degrees) to continue ICP iterations",
    )
    random_state: Optional[int] = Field(default=None, description="Seed for subsampling")


class OdometryConfig(BaseModel):
    dtype: Literal["float32", "float64"] = Field(default="float64")
    motion_guess: Literal["identity", "constant_velocity"] = Field(
        default="constant_velocity",
        description="Initial guess for each alignment: identity or the last accepted delta",
    )
    on_failure: Literal["skip", "reset", "abort"] = Field(
        default="skip",
        description="What the sequence driver does when an alignment does not converge",
    )
    initial_pose: Optional[List[List[float]]] = Field(
        default=None,
        description="4x4 starting pose for the first frame (None = identity)",
    )

    @field_validator("initial_pose")
    @classmethod
    def _check_pose_shape(cls, v):
        if v is not None and (len(v) != 4 or any(len(row) != 4 for row in v)):
            raise ValueError("initial_pose must be a 4x4 nested list")
        return v


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    loader: LoaderConfig = Field(default_factory=LoaderConfig)
    alignment: AlignmentConfig = Field(default_factory=AlignmentConfig)
    odometry: OdometryConfig = Field(default_factory=OdometryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/pointcloud_odometry/utils/config.py
    parents sequence:
      0 -> .../src/pointcloud_odometry/utils
      1 -> .../src/pointcloud_odometry
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}") from e
