"""Tests for configuration system."""

import json
import logging

import pytest
import yaml
from pydantic import ValidationError

from patchmvs.config import (
    CameraArgs,
    KernelArgs,
    RunConfig,
    format_validation_errors,
    parse_kernel_args,
)

IDENTITY_P = [1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0]


class TestCameraArgs:
    """Tests for CameraArgs."""

    def test_valid_projection(self):
        """Test that 12 finite entries are accepted."""
        cam = CameraArgs(name="left", p=IDENTITY_P)
        assert cam.name == "left"
        assert len(cam.p) == 12

    def test_wrong_length_rejected(self):
        """Test that a projection with 11 entries is rejected."""
        with pytest.raises(ValueError, match="12 entries"):
            CameraArgs(p=IDENTITY_P[:-1])

    def test_non_finite_rejected(self):
        """Test that NaN entries are rejected."""
        with pytest.raises(ValueError, match="finite"):
            CameraArgs(p=[float("nan")] + IDENTITY_P[1:])


class TestKernelArgs:
    """Tests for KernelArgs."""

    def test_defaults(self):
        """Test default values."""
        args = KernelArgs()
        assert args.cameras == []
        assert args.iterations == 8
        assert args.kernel_width == 15
        assert args.kernel_height == 15
        assert args.n_best == 2
        assert args.seed is None

    def test_even_kernel_rejected(self):
        """Test that even patch sizes are rejected."""
        with pytest.raises(ValueError, match="positive and odd"):
            KernelArgs(kernel_width=4)

    def test_zero_iterations_rejected(self):
        """Test that zero iterations is rejected."""
        with pytest.raises(ValueError, match=">= 1"):
            KernelArgs(iterations=0)

    def test_inverted_depth_range_rejected(self):
        """Test that max_depth must exceed min_depth."""
        with pytest.raises(ValueError, match="must exceed"):
            KernelArgs(min_depth=5.0, max_depth=2.0)

    def test_non_positive_min_depth_rejected(self):
        """Test that min_depth must be positive."""
        with pytest.raises(ValueError, match="positive"):
            KernelArgs(min_depth=0.0, max_depth=2.0)

    def test_projection_matrices_in_order(self):
        """Test that projection_matrices follows camera order."""
        second = list(IDENTITY_P)
        second[3] = -1.0
        args = KernelArgs(cameras=[{"p": IDENTITY_P}, {"p": second}])
        assert args.projection_matrices == [IDENTITY_P, second]

    def test_extra_keys_warn(self, caplog):
        """Test that unknown keys produce a warning."""
        with caplog.at_level(logging.WARNING, logger="patchmvs.config"):
            KernelArgs(bogus=1)
        assert "bogus" in caplog.text


class TestParseKernelArgs:
    """Tests for parse_kernel_args()."""

    def test_json_bytes(self):
        """Test parsing a JSON blob."""
        blob = json.dumps(
            {"cameras": [{"p": IDENTITY_P}], "iterations": 3}
        ).encode()
        args = parse_kernel_args(blob)
        assert args.iterations == 3
        assert len(args.cameras) == 1

    def test_mapping(self):
        """Test parsing a plain mapping."""
        args = parse_kernel_args({"min_depth": 2.0, "max_depth": 4.0})
        assert args.min_depth == 2.0
        assert args.max_depth == 4.0

    def test_instance_passthrough(self):
        """Test that a KernelArgs instance is returned unchanged."""
        args = KernelArgs()
        assert parse_kernel_args(args) is args

    def test_invalid_json(self):
        """Test that undecodable blobs raise ValueError."""
        with pytest.raises(ValueError, match="could not decode"):
            parse_kernel_args(b"{not json")

    def test_validation_errors_collected(self):
        """Test that validation errors carry their field path."""
        with pytest.raises(ValueError) as exc_info:
            parse_kernel_args({"cameras": [{"p": [1.0, 2.0]}], "kernel_width": 2})
        msg = str(exc_info.value)
        assert "cameras[0].p" in msg
        assert "kernel_width" in msg


class TestRunConfig:
    """Tests for RunConfig."""

    def test_defaults(self):
        """Test default values."""
        config = RunConfig()
        assert config.device == "cuda"
        assert config.batch_size == 1
        assert config.frame_stop is None

    def test_missing_input_directory(self):
        """Test that every camera needs an input directory."""
        with pytest.raises(ValueError, match="without an input directory"):
            RunConfig(
                args={
                    "cameras": [
                        {"name": "a", "p": IDENTITY_P},
                        {"name": "b", "p": IDENTITY_P},
                    ]
                },
                camera_input_map={"a": "dir_a"},
            )

    def test_yaml_round_trip(self, tmp_path):
        """Test that a config survives to_yaml/from_yaml."""
        config = RunConfig(
            args={"cameras": [{"name": "a", "p": IDENTITY_P}], "iterations": 4},
            camera_input_map={"a": "dir_a"},
            output_dir=str(tmp_path / "out"),
            device="cpu",
            batch_size=3,
        )
        path = tmp_path / "config.yaml"
        config.to_yaml(path)

        loaded = RunConfig.from_yaml(path)
        assert loaded.model_dump() == config.model_dump()

    def test_from_yaml_empty_file(self, tmp_path):
        """Test that an empty YAML file yields defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert RunConfig.from_yaml(path).model_dump() == RunConfig().model_dump()

    def test_from_yaml_validation_error(self, tmp_path):
        """Test that invalid values raise ValueError with YAML paths."""
        path = tmp_path / "bad.yaml"
        with open(path, "w") as f:
            yaml.safe_dump({"batch_size": 0, "args": {"kernel_height": 6}}, f)

        with pytest.raises(ValueError) as exc_info:
            RunConfig.from_yaml(path)
        msg = str(exc_info.value)
        assert "Configuration validation failed" in msg
        assert "batch_size" in msg
        assert "args.kernel_height" in msg


def test_format_validation_errors():
    """Test formatting of nested list locations."""
    with pytest.raises(ValidationError) as exc_info:
        KernelArgs(cameras=[{"p": IDENTITY_P}, {"p": []}])

    formatted = format_validation_errors(exc_info.value)
    assert formatted.startswith("  cameras[1].p:")
