"""Command line entry point: calibrate, triangulate, or process videos."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from app.batch import BatchRunner
from app.processor import Processor
from calib.calibrator import Calibration
from calib.storage import load_calibration
from configs.settings import DEFAULT_CONFIG_PATH, AppConfig, load_config
from contracts import CalibrationMode
from exceptions import FindFishError
from log_config.logger import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stereo fish video calibration and event extraction.")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--log-level", default="INFO", help="Console log level.")
    parser.add_argument("--log-dir", type=Path, help="Also write rotating log files here.")
    commands = parser.add_subparsers(dest="command", required=True)

    calibrate = commands.add_parser("calibrate", help="Calibrate from chessboard images.")
    calibrate.add_argument("primary", type=Path, help="Primary camera image directory.")
    calibrate.add_argument("secondary", type=Path, nargs="?", help="Secondary camera image directory.")
    calibrate.add_argument("--output", type=Path, help="Calibration file to write.")

    triangulate = commands.add_parser("triangulate", help="Triangulate measured point pairs.")
    triangulate.add_argument("--points", type=Path, help="YAML file with primary/secondary points.")
    triangulate.add_argument("--calibration", type=Path, help="Calibration file to use.")

    process = commands.add_parser("process", help="Process pending video pairs once.")
    process.add_argument("--video-dir", type=Path)
    process.add_argument("--artifact-dir", type=Path)
    process.add_argument("--calibration", type=Path, help="Calibration file (optional).")
    process.add_argument(
        "--parallel",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run jobs concurrently (default from config).",
    )
    return parser.parse_args(argv)


def run_calibrate(args: argparse.Namespace, config: AppConfig) -> int:
    calibration_input = config.calibration.to_input()
    output = args.output or Path(config.paths.calibration_file)
    calibration = Calibration(
        calibration_input, calibration_input.mode, output_path=output, settings=config.calibration
    )
    if calibration_input.mode is CalibrationMode.STEREO and args.secondary is None:
        logger.error("STEREO calibration needs a secondary image directory")
        return 1
    calibration.read_images(args.primary, args.secondary)
    result = calibration.run_calibration()
    logger.info(f"Calibration written to {output} (RMS {result.rms_px:.3f} px)")
    return 0


def run_triangulate(args: argparse.Namespace, config: AppConfig) -> int:
    points_path = args.points or Path(config.paths.measure_points_file)
    calibration_path = args.calibration or Path(config.paths.calibration_file)
    points = Processor.triangulate_points(points_path, calibration_path, config)
    print(json.dumps([point.to_dict() for point in points], indent=2))
    return 0


def run_process(args: argparse.Namespace, config: AppConfig) -> int:
    calibration = None
    calibration_path = args.calibration or Path(config.paths.calibration_file)
    if calibration_path.exists():
        calibration = load_calibration(calibration_path)
    elif args.calibration is not None:
        logger.error(f"Calibration file not found: {calibration_path}")
        return 1
    else:
        logger.info("No calibration file found; processing events only")

    runner = BatchRunner(config, calibration=calibration, parallel=args.parallel)
    result = runner.run_pending(args.video_dir, args.artifact_dir)
    return 1 if result.failed else 0


COMMANDS = {
    "calibrate": run_calibrate,
    "triangulate": run_triangulate,
    "process": run_process,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_dir)
    try:
        config = load_config(args.config)
        return COMMANDS[args.command](args, config)
    except FindFishError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
