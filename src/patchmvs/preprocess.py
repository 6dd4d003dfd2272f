"""Frame decoding: packed BGR buffers to float grayscale images."""

import logging

import cv2
import numpy as np

from .errors import PreconditionViolation

logger = logging.getLogger(__name__)


def frame_buffer_size(width: int, height: int) -> int:
    """Byte size of a packed 8-bit BGR frame."""
    return width * height * 3


def decode_gray_frame(
    buffer: bytes | bytearray | memoryview | np.ndarray,
    width: int,
    height: int,
) -> np.ndarray:
    """Decode a packed BGR frame into a float32 grayscale image.

    Args:
        buffer: Raw frame bytes, or a uint8 array holding width*height*3 values.
        width: Planned frame width.
        height: Planned frame height.

    Returns:
        Grayscale image, shape (height, width), float32 in [0, 255].

    Raises:
        PreconditionViolation: If the buffer size disagrees with the planned
            resolution.
    """
    if isinstance(buffer, np.ndarray):
        if buffer.dtype != np.uint8:
            raise PreconditionViolation(
                f"frame buffer must be uint8, got {buffer.dtype}"
            )
        data = np.ascontiguousarray(buffer).reshape(-1)
    else:
        data = np.frombuffer(buffer, dtype=np.uint8)

    expected = frame_buffer_size(width, height)
    if data.size != expected:
        raise PreconditionViolation(
            f"frame buffer holds {data.size} bytes, expected {expected} "
            f"for {width}x{height} BGR"
        )

    bgr = data.reshape(height, width, 3)
    gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    return gray.astype(np.float32)
