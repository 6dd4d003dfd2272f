"""Texture-array slots with scoped acquisition and guaranteed release."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import numpy as np
import torch

from .errors import PreconditionViolation

logger = logging.getLogger(__name__)


@dataclass
class TextureArray:
    """Grayscale images of one frame-set uploaded to the kernel device.

    Attributes:
        data: Stacked images, shape (N, H, W), float32.
    """

    data: torch.Tensor

    @property
    def num_layers(self) -> int:
        """Number of camera images."""
        return self.data.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        """Image size as (width, height)."""
        return self.data.shape[2], self.data.shape[1]


class TextureSlots:
    """Fixed slot set holding at most one bound texture array at a time.

    The same slots are reused for every frame, so a texture array must be
    released before the next one is bound. Binding and release counts are
    kept for resource accounting.
    """

    def __init__(self) -> None:
        self.active: TextureArray | None = None
        self.bind_count = 0
        self.release_count = 0

    def bind(
        self,
        images: list[np.ndarray],
        device: torch.device | str,
        size: tuple[int, int] | None = None,
    ) -> TextureArray:
        """Upload grayscale images into the slot set.

        Args:
            images: Per-camera float32 grayscale images, each shape (H, W).
            device: Device receiving the texture array.
            size: Expected (width, height); checked when given.

        Returns:
            The bound texture array.

        Raises:
            PreconditionViolation: If a texture array is still bound, or the
                images do not match ``size``.
        """
        if self.active is not None:
            raise PreconditionViolation(
                "texture slots are still bound; release before binding again"
            )

        stacked = np.stack(images, axis=0).astype(np.float32, copy=False)
        if size is not None and (stacked.shape[2], stacked.shape[1]) != size:
            raise PreconditionViolation(
                f"texture size {stacked.shape[2]}x{stacked.shape[1]} does not "
                f"match planned size {size[0]}x{size[1]}"
            )

        data = torch.from_numpy(stacked).to(device)
        self.active = TextureArray(data=data)
        self.bind_count += 1
        logger.debug("Bound %d texture layer(s) on %s", len(images), device)
        return self.active

    def release(self) -> None:
        """Free the bound texture array (no-op if nothing is bound)."""
        if self.active is None:
            return

        device = self.active.data.device
        self.active = None
        self.release_count += 1
        if device.type == "cuda":
            torch.cuda.empty_cache()
        logger.debug("Released texture slots on %s", device)

    @contextmanager
    def bound(
        self,
        images: list[np.ndarray],
        device: torch.device | str,
        size: tuple[int, int] | None = None,
    ) -> Iterator[TextureArray]:
        """Bind images for the duration of a ``with`` block.

        The texture array is released on every exit path, including errors
        raised by the solver.
        """
        textures = self.bind(images, device, size)
        try:
            yield textures
        finally:
            self.release()
