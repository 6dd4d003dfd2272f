"""Device handles and per-call device binding."""

import logging
from dataclasses import dataclass
from typing import Literal

import torch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceHandle:
    """Device assigned to a kernel instance by the host runtime.

    Attributes:
        type: Device type, "cpu" or "cuda".
        id: Device index (ignored for CPU).
    """

    type: Literal["cpu", "cuda"] = "cuda"
    id: int = 0


def select_device(handle: DeviceHandle) -> torch.device:
    """Bind the calling thread to the device described by ``handle``.

    CUDA context is thread/call local, so callers re-bind at the start of
    every externally invoked operation.

    Args:
        handle: Device to bind.

    Returns:
        The corresponding torch.device.

    Raises:
        RuntimeError: If CUDA is requested but unavailable, or the index is
            out of range.
    """
    if handle.type == "cpu":
        return torch.device("cpu")

    if handle.type != "cuda":
        raise RuntimeError(f"Unsupported device type: {handle.type!r}")

    if not torch.cuda.is_available():
        raise RuntimeError(f"CUDA device {handle.id} requested but CUDA is unavailable")

    count = torch.cuda.device_count()
    if not 0 <= handle.id < count:
        raise RuntimeError(
            f"CUDA device {handle.id} requested but only {count} device(s) present"
        )

    torch.cuda.set_device(handle.id)
    logger.debug("Bound CUDA device %d", handle.id)
    return torch.device("cuda", handle.id)
