"""Tests for texture slot binding and release."""

import numpy as np
import pytest
import torch

from patchmvs.errors import PreconditionViolation
from patchmvs.textures import TextureArray, TextureSlots


def _images(n=2, width=6, height=4):
    return [np.full((height, width), float(i), dtype=np.float32) for i in range(n)]


class TestTextureSlots:
    """Tests for TextureSlots."""

    def test_bind_uploads_layers(self, device):
        """Test that binding stacks the images on the device."""
        slots = TextureSlots()
        tex = slots.bind(_images(3), device, size=(6, 4))

        assert isinstance(tex, TextureArray)
        assert tex.num_layers == 3
        assert tex.size == (6, 4)
        assert tex.data.device.type == device.type
        assert tex.data.dtype == torch.float32
        assert tex.data[2].cpu().eq(2.0).all()
        assert slots.active is tex
        assert slots.bind_count == 1

        slots.release()
        assert slots.active is None
        assert slots.release_count == 1

    def test_double_bind_rejected(self):
        """Test that binding twice without release is a precondition violation."""
        slots = TextureSlots()
        slots.bind(_images(), "cpu")
        with pytest.raises(PreconditionViolation, match="still bound"):
            slots.bind(_images(), "cpu")
        assert slots.bind_count == 1

    def test_size_mismatch_rejected(self):
        """Test that images of another size are rejected before binding."""
        slots = TextureSlots()
        with pytest.raises(PreconditionViolation, match="planned size"):
            slots.bind(_images(width=5), "cpu", size=(6, 4))
        assert slots.active is None
        assert slots.bind_count == 0

    def test_release_without_bind_is_noop(self):
        """Test that releasing empty slots does nothing."""
        slots = TextureSlots()
        slots.release()
        assert slots.release_count == 0

    def test_scoped_binding_released(self):
        """Test that the context manager releases on normal exit."""
        slots = TextureSlots()
        for _ in range(3):
            with slots.bound(_images(), "cpu") as tex:
                assert slots.active is tex
        assert slots.active is None
        assert slots.bind_count == slots.release_count == 3

    def test_scoped_binding_released_on_error(self):
        """Test that the context manager releases when the body raises."""
        slots = TextureSlots()
        with pytest.raises(RuntimeError, match="solver failed"):
            with slots.bound(_images(), "cpu"):
                raise RuntimeError("solver failed")

        assert slots.active is None
        assert slots.bind_count == slots.release_count == 1

        # Slots are reusable after the failure
        with slots.bound(_images(), "cpu"):
            pass
        assert slots.bind_count == slots.release_count == 2
