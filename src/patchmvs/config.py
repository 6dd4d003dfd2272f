"""Configuration management for the patch-match stereo kernel."""

import json
import logging
import math
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# Entries in a flattened 3x4 projection matrix
PROJECTION_ENTRIES = 12


class CameraArgs(BaseModel):
    """Calibration for one camera.

    Attributes:
        name: Optional camera identifier (used to look up input directories).
        p: Row-major flattened 3x4 projection matrix (12 floats).
    """

    model_config = ConfigDict(extra="allow")

    name: str = ""
    p: list[float]

    @field_validator("p")
    @classmethod
    def validate_projection(cls, v: list[float]) -> list[float]:
        """Validate that the projection matrix has 12 finite entries."""
        if len(v) != PROJECTION_ENTRIES:
            raise ValueError(
                f"projection matrix must have {PROJECTION_ENTRIES} entries, got {len(v)}"
            )
        if not all(math.isfinite(x) for x in v):
            raise ValueError("projection matrix entries must be finite")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "CameraArgs":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in CameraArgs (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class KernelArgs(BaseModel):
    """Arguments of the patch-match stereo kernel.

    Attributes:
        cameras: Per-camera calibration; camera 0 is the reference view.
        min_disparity: Advisory lower disparity bound (replaced during planning).
        max_disparity: Advisory upper disparity bound (replaced during planning).
        min_depth: Nearest scene depth considered.
        max_depth: Farthest scene depth considered.
        iterations: Number of patch-match iterations.
        kernel_width: Patch width in pixels (odd).
        kernel_height: Patch height in pixels (odd).
        n_best: Number of lowest per-view costs averaged per pixel.
        refinement_steps: Random refinement candidates per pixel and iteration.
        seed: Optional RNG seed for reproducible runs.
    """

    model_config = ConfigDict(extra="allow")

    cameras: list[CameraArgs] = Field(default_factory=list)
    min_disparity: float = 0.0
    max_disparity: float = 256.0
    min_depth: float = 0.5
    max_depth: float = 10.0
    iterations: int = 8
    kernel_width: int = 15
    kernel_height: int = 15
    n_best: int = 2
    refinement_steps: int = 3
    seed: int | None = None

    @field_validator("kernel_width", "kernel_height")
    @classmethod
    def validate_kernel_size(cls, v: int) -> int:
        """Validate that patch dimensions are positive and odd."""
        if v <= 0 or v % 2 == 0:
            raise ValueError(f"patch dimensions must be positive and odd, got {v}")
        return v

    @field_validator("iterations", "n_best")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that counts are at least one."""
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("refinement_steps")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate that refinement_steps is non-negative."""
        if v < 0:
            raise ValueError(f"must be >= 0, got {v}")
        return v

    @model_validator(mode="after")
    def check_depth_range(self) -> "KernelArgs":
        """Validate the depth bounds and warn about extra fields."""
        if self.min_depth <= 0.0:
            raise ValueError(f"min_depth must be positive, got {self.min_depth}")
        if self.max_depth <= self.min_depth:
            raise ValueError(
                f"max_depth ({self.max_depth}) must exceed min_depth ({self.min_depth})"
            )

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in KernelArgs (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @property
    def projection_matrices(self) -> list[list[float]]:
        """Flattened projection matrices in camera order."""
        return [cam.p for cam in self.cameras]


def parse_kernel_args(blob: "KernelArgs | dict[str, Any] | bytes | str") -> KernelArgs:
    """Deserialize kernel arguments from a blob.

    Args:
        blob: A KernelArgs instance, a mapping, or a JSON document as bytes/str.

    Returns:
        Validated kernel arguments.

    Raises:
        ValueError: If the blob cannot be decoded or fails validation (with all
            errors collected).
    """
    if isinstance(blob, KernelArgs):
        return blob

    try:
        if isinstance(blob, (bytes, bytearray, str)):
            data = json.loads(blob)
        else:
            data = dict(blob)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError, ValueError) as e:
        raise ValueError(f"could not decode kernel args: {e}") from None

    try:
        return KernelArgs.model_validate(data)
    except ValidationError as e:
        raise ValueError(
            f"kernel args validation failed:\n{format_validation_errors(e)}"
        ) from None


class RunConfig(BaseModel):
    """Configuration for running the kernel over image directories.

    Attributes:
        args: Kernel arguments (cameras, depth bounds, solver parameters).
        camera_input_map: Mapping from camera name to image directory. Names
            must match ``args.cameras[i].name``.
        output_dir: Directory receiving one ``.npz`` file per frame.
        device: Device type for the kernel.
        device_id: Device index when ``device`` is "cuda".
        batch_size: Number of frames per kernel execution.
        frame_start: First frame index to process.
        frame_stop: Last frame index (exclusive, None = end of sequence).
        frame_step: Frame step interval.
        quiet: Suppress progress output.
    """

    model_config = ConfigDict(extra="allow")

    args: KernelArgs = Field(default_factory=KernelArgs)
    camera_input_map: dict[str, str] = Field(default_factory=dict)
    output_dir: str = ""

    device: Literal["cpu", "cuda"] = "cuda"
    device_id: int = 0
    batch_size: int = 1

    frame_start: int = 0
    frame_stop: int | None = None
    frame_step: int = 1

    quiet: bool = False

    @field_validator("batch_size", "frame_step")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that batch_size and frame_step are positive."""
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @model_validator(mode="after")
    def check_camera_inputs(self) -> "RunConfig":
        """Check that every camera has an input directory."""
        missing = [
            cam.name
            for cam in self.args.cameras
            if cam.name not in self.camera_input_map
        ]
        if self.camera_input_map and missing:
            raise ValueError(f"cameras without an input directory: {missing}")

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RunConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @property
    def camera_names(self) -> list[str]:
        """Camera names in kernel order."""
        return [cam.name for cam in self.args.cameras]

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RunConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        if "args" not in data:
            logger.info("Using default: args (all defaults)")

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                # Array index
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
