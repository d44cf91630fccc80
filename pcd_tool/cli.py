"""
cli.py

Command-line interface.

Usage:
    pcd-tool convert -i <input> -o <output> [options]
    pcd-tool info <file.pcd>

Exit status is 0 on success, 1 when a conversion or inspection fails and 2
on usage errors.  Directory conversions always exit 0 and print a
"N succeeded, M failed" summary.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from pcd_tool.codecs.velodyne_pcap import ReturnMode, VelodyneModel
from pcd_tool.config import load_config
from pcd_tool.convert import ConversionOptions, ConversionReport, convert
from pcd_tool.errors import PcdToolError
from pcd_tool.formats import FileFormat
from pcd_tool.frame_window import parse_end_frame, parse_start_frame
from pcd_tool.info import schema_lines
from pcd_tool.transform import load_transform

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def setup_logger(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure logging for the CLI.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path to save logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def _frame_arg(parse):
    def parse_arg(text: str):
        try:
            return parse(text)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e)) from None

    parse_arg.__name__ = parse.__name__
    return parse_arg


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{text}' is not an integer") from None
    if value < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pcd-tool",
        description="Convert point clouds between PCD, raw binary and Velodyne pcap formats",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Transform a PCD file
  pcd-tool convert -i scan.pcd -o moved.pcd --transform-file lidar_to_base.yaml

  # Project a PCD file into the newslab format
  pcd-tool convert -i scan.pcd -o scan.newslab.pcd

  # Extract frames 10..19 of a capture as PCD files
  pcd-tool convert -i drive.pcap -o frames -t pcd.libpcl \\
      --velodyne-model vlp-32c --velodyne-return-mode strongest --start 10 --end +10

  # Convert a directory of PCD files to raw binary
  pcd-tool convert -i scans -o bins -f pcd.libpcl -t raw.bin

  # List the fields of a PCD file
  pcd-tool info scan.pcd
        """,
    )

    parser.add_argument("--log-level", choices=LOG_LEVELS, default=None, help="Set logging level")
    parser.add_argument("--log-file", type=str, help="Save logs to file")
    parser.add_argument("--config", type=str, help="Path to configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    tokens = [f.value for f in FileFormat]
    convert_parser = subparsers.add_parser("convert", help="Convert a file or directory")
    convert_parser.add_argument("-i", "--input", required=True, help="Input file or directory")
    convert_parser.add_argument("-o", "--output", required=True, help="Output file or directory")
    convert_parser.add_argument("-f", "--from", dest="from_format", choices=tokens,
                                help="Input format (guessed from the suffix if omitted)")
    convert_parser.add_argument("-t", "--to", dest="to_format", choices=tokens,
                                help="Output format (guessed from the suffix if omitted)")
    convert_parser.add_argument("--velodyne-model", choices=[m.value for m in VelodyneModel],
                                help="Sensor model of a pcap capture")
    convert_parser.add_argument("--velodyne-return-mode", choices=[r.value for r in ReturnMode],
                                help="Return mode of a pcap capture")
    convert_parser.add_argument("--start", type=_frame_arg(parse_start_frame),
                                help="First frame: N (1-based) or -N (from the end)")
    convert_parser.add_argument("--end", type=_frame_arg(parse_end_frame),
                                help="End frame: N, -N, or +N (count from --start)")
    transform_group = convert_parser.add_mutually_exclusive_group()
    transform_group.add_argument("--transform-file", help="YAML transform file")
    transform_group.add_argument("--transform", dest="transform_text", help="Inline YAML transform")
    convert_parser.add_argument("--workers", type=_positive_int, default=None,
                                help="Worker threads for directory inputs")

    info_parser = subparsers.add_parser("info", help="List the fields of a PCD file")
    info_parser.add_argument("file", help="PCD file")

    return parser


def describe_report(report: ConversionReport) -> str:
    if report.batch is not None:
        return report.batch.summary()
    if report.frames:
        return f"Wrote {report.frames} frames ({len(report.files)} files) to {report.output_path}"
    if report.points is None:
        return f"Copied {report.input_path} to {report.output_path}"
    return f"Wrote {report.points} points to {report.output_path}"


def cmd_convert(args: argparse.Namespace, config: dict) -> int:
    options = ConversionOptions(
        from_format=args.from_format,
        to_format=args.to_format,
        transform=load_transform(path=args.transform_file, text=args.transform_text),
        start_frame=args.start,
        end_frame=args.end,
        velodyne_model=args.velodyne_model,
        velodyne_return_mode=args.velodyne_return_mode,
        workers=args.workers or config["workers"],
        progress=config["progress"],
    )
    report = convert(args.input, args.output, options)
    print(describe_report(report))
    return 0


def cmd_info(args: argparse.Namespace, config: dict) -> int:
    for line in schema_lines(args.file):
        print(line)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logger(args.log_level or config["log_level"], args.log_file)

    if not args.command:
        parser.print_help(sys.stderr)
        return 2

    try:
        if args.command == "convert":
            return cmd_convert(args, config)
        return cmd_info(args, config)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return 130
    except PcdToolError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
