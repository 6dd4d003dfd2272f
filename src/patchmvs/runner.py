"""Host driver running the kernel over image directories in batches."""

import logging
import sys
from collections.abc import Iterable, Iterator
from itertools import islice
from pathlib import Path

import numpy as np
from tqdm import tqdm

from .config import RunConfig
from .device import DeviceHandle
from .errors import KernelConfigError
from .io import ImageDirectorySet, save_points
from .kernel import FrameInfo, KernelConfig
from .registry import KernelRegistry, register_builtin_kernels

logger = logging.getLogger(__name__)

OPERATOR_NAME = "PatchMatch"


def _batched(
    frames: Iterable[tuple[int, dict[str, np.ndarray]]], size: int
) -> Iterator[list[tuple[int, dict[str, np.ndarray]]]]:
    it = iter(frames)
    while batch := list(islice(it, size)):
        yield batch


def build_input_columns(
    batch: list[tuple[int, dict[str, np.ndarray]]],
    camera_names: list[str],
) -> list[list]:
    """Arrange a batch of frame-sets as alternating image/metadata columns.

    Args:
        batch: (frame_idx, images) pairs; images map camera name to BGR arrays.
        camera_names: Camera names in kernel order.

    Returns:
        2 * len(camera_names) columns of len(batch) rows each.
    """
    columns = []
    for name in camera_names:
        images = [images[name] for _, images in batch]
        columns.append(images)
        columns.append(
            [FrameInfo(width=img.shape[1], height=img.shape[0]) for img in images]
        )
    return columns


def input_column_names(camera_names: list[str]) -> list[str]:
    """Input column names for the given cameras."""
    names = []
    for name in camera_names:
        names.extend([f"{name}_frame", f"{name}_frame_info"])
    return names


def run_reconstruction(
    config: RunConfig, registry: KernelRegistry | None = None
) -> int:
    """Run the kernel over every configured frame and save the results.

    Args:
        config: Run configuration.
        registry: Operator registry; defaults to one holding the built-in kernels.

    Returns:
        Number of frames written.

    Raises:
        KernelConfigError: If the kernel reports itself invalid.
    """
    if registry is None:
        registry = register_builtin_kernels(KernelRegistry())

    camera_names = config.camera_names
    kernel = registry.create(
        OPERATOR_NAME,
        KernelConfig(
            devices=[DeviceHandle(type=config.device, id=config.device_id)],
            args=config.args,
            input_columns=input_column_names(camera_names),
        ),
    )

    status = kernel.validate()
    if not status.success:
        raise KernelConfigError(status.msg)

    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    source = ImageDirectorySet(
        {name: config.camera_input_map[name] for name in camera_names}
    )
    written = 0
    with source as frames:
        logger.info(
            "Processing frames %d to %s (step %d, batch %d)",
            config.frame_start,
            config.frame_stop or "end",
            config.frame_step,
            config.batch_size,
        )

        for batch in tqdm(
            _batched(
                frames.iterate_frames(
                    start=config.frame_start,
                    stop=config.frame_stop,
                    step=config.frame_step,
                ),
                config.batch_size,
            ),
            desc="Processing batches",
            disable=config.quiet or not sys.stderr.isatty(),
            unit="batch",
        ):
            (rows,) = kernel.execute(build_input_columns(batch, camera_names))
            if not rows:
                raise KernelConfigError(kernel.validate().msg)

            for (frame_idx, _), points in zip(batch, rows, strict=True):
                save_points(points, output_dir / f"frame_{frame_idx:06d}.npz")
                written += 1
            logger.info("Saved %d frame(s) up to frame %d", len(rows), batch[-1][0])

    logger.info("Reconstruction complete: %d frame(s)", written)
    return written
