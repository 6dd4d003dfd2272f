"""Command-line interface for the patch-match stereo kernel."""

import argparse
import logging
import sys
from pathlib import Path

from patchmvs.config import RunConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def _load_config(config_path: Path) -> RunConfig:
    """Load a run config or exit with an error message."""
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        return RunConfig.from_yaml(config_path)
    except Exception as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)


def run_command(
    config_path: Path, verbose: bool = False, device: str | None = None
) -> None:
    """Run the kernel over the configured image directories.

    Args:
        config_path: Path to the run config YAML file.
        verbose: If True, set logging to DEBUG level.
        device: Optional device type override ("cpu" or "cuda").
    """
    _configure_logging(verbose)
    config = _load_config(config_path)

    if device is not None:
        config.device = device

    if not config.camera_input_map:
        print("Error: camera_input_map is empty", file=sys.stderr)
        sys.exit(1)

    from patchmvs.errors import KernelConfigError
    from patchmvs.runner import run_reconstruction

    try:
        written = run_reconstruction(config)
    except (KernelConfigError, RuntimeError, ValueError) as e:
        print(f"Error: Reconstruction failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Wrote {written} frame(s) to {config.output_dir}")


def plan_command(config_path: Path, width: int, height: int) -> None:
    """Print the rig geometry planned for a frame resolution.

    Args:
        config_path: Path to the run config YAML file.
        width: Frame width in pixels.
        height: Frame height in pixels.
    """
    _configure_logging()
    config = _load_config(config_path)

    from patchmvs.calibration import build_camera_rig
    from patchmvs.dense import AlgorithmParameters, SolverState
    from patchmvs.errors import KernelConfigError
    from patchmvs.planning import FrameGeometryPlanner

    if len(config.args.cameras) < 2:
        print("Error: at least two cameras are required", file=sys.stderr)
        sys.exit(1)

    rig = build_camera_rig(config.args.projection_matrices)
    state = SolverState(rig=rig, params=AlgorithmParameters.from_args(config.args))
    try:
        FrameGeometryPlanner(state).plan(width, height)
    except KernelConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    params = state.params
    print(f"Resolution:      {width}x{height}")
    print(f"Focal length:    {rig.f:.3f}")
    print(f"Selected views:  {rig.view_selection_subset}")
    print(f"Depth range:     [{params.depth_min}, {params.depth_max}]")
    print(f"Disparity range: [{params.min_disparity:.3f}, {params.max_disparity:.3f}]")
    for i, cam in enumerate(rig.cameras):
        name = config.args.cameras[i].name or f"camera {i}"
        print(
            f"  {name:15s} baseline={cam.baseline:.4f} "
            f"disparity=[{cam.min_disparity:.3f}, {cam.max_disparity:.3f}]"
        )


def main() -> None:
    """Main entry point for the patchmvs CLI."""
    parser = argparse.ArgumentParser(
        prog="patchmvs",
        description="Patch-match multi-view stereo depth estimation",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Estimate depth/normal maps for every frame"
    )
    run_parser.add_argument("config", type=Path, help="Path to run config YAML")
    run_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging"
    )
    run_parser.add_argument(
        "--device",
        choices=["cpu", "cuda"],
        default=None,
        help="Override the configured device type",
    )

    plan_parser = subparsers.add_parser(
        "plan", help="Print view selection and disparity bounds for a resolution"
    )
    plan_parser.add_argument("config", type=Path, help="Path to run config YAML")
    plan_parser.add_argument("--width", type=int, required=True, help="Frame width")
    plan_parser.add_argument("--height", type=int, required=True, help="Frame height")

    args = parser.parse_args()

    if args.command == "run":
        run_command(args.config, verbose=args.verbose, device=args.device)
    elif args.command == "plan":
        plan_command(args.config, args.width, args.height)


if __name__ == "__main__":
    main()
