#!/usr/bin/env python3
"""
LAKENET Command Line Interface
==============================

Command-line interface for building lake networks region by region and
reconciling them into the final table.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .config import load_config
from .exceptions import LakeNetError
from .pipeline import NetworkPipeline
from .provider import FileGeometryProvider


def setup_logging(verbose: bool = False, log_dir: Optional[str] = None, level: str = "INFO") -> None:
    """Setup logging configuration."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / f"lakenet_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def _overrides(args) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.store:
        overrides.setdefault("store", {})["directory"] = args.store
    if getattr(args, "workers", None):
        overrides.setdefault("processing", {})["workers"] = args.workers
    if getattr(args, "no_progress", False):
        overrides.setdefault("processing", {})["show_progress"] = False
    return overrides


def build_pipeline(args) -> NetworkPipeline:
    """Create the pipeline described by the command line."""
    config = load_config(args.config, _overrides(args))
    setup_logging(
        args.verbose,
        config["logging"].get("log_dir"),
        config["logging"].get("level", "INFO"),
    )
    provider = FileGeometryProvider(
        args.regions,
        args.lakes,
        args.rivers,
        columns=config["columns"],
        layers=config["layers"],
        crs=config["crs"],
    )
    return NetworkPipeline(provider, config)


def build_command(args) -> None:
    """Process regions from the start index (default: the resume point)."""
    pipeline = build_pipeline(args)
    metrics = pipeline.run(start_index=args.start_index)
    status = pipeline.status()
    print(
        f"Processed {len(metrics)} regions; "
        f"{status['regions_completed']}/{status['regions']} committed"
    )
    if args.checkpoint:
        print(f"Checkpoint table: {pipeline.export_checkpoint(args.checkpoint)}")


def reconcile_command(args) -> None:
    """Merge committed regions into the final table."""
    pipeline = build_pipeline(args)
    final = pipeline.reconcile(args.output)
    print(
        f"{len(final)} lake rows in {final['global_network_id'].nunique()} networks"
    )


def status_command(args) -> None:
    """Print store progress."""
    pipeline = build_pipeline(args)
    print(json.dumps(pipeline.status(), indent=2))


def _add_common_arguments(parser: argparse.ArgumentParser, features_required: bool = False) -> None:
    parser.add_argument("--regions", required=True, help="Region polygons (vector file)")
    # only build reads lakes and rivers
    parser.add_argument("--lakes", required=features_required, help="Lake polygons (vector file)")
    parser.add_argument("--rivers", required=features_required, help="River features (vector file)")
    parser.add_argument("--config", help="Configuration file (YAML)")
    parser.add_argument("--store", help="Checkpoint store directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="LAKENET - Lake and river connectivity networks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process all regions, resuming where the store left off
  lakenet build --regions regions.gpkg --lakes lakes.gpkg --rivers rivers.gpkg

  # Restart from an explicit region index
  lakenet build --regions regions.gpkg --lakes lakes.gpkg --rivers rivers.gpkg --start-index 120

  # Produce the final table once every region is committed
  lakenet reconcile --regions regions.gpkg --output networks.csv

  # Show how far the store has got
  lakenet status --regions regions.gpkg --store lakenet_store
        """,
    )
    parser.add_argument("--version", action="version", version=f"LAKENET {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    build_parser = subparsers.add_parser("build", help="Process regions into the store")
    _add_common_arguments(build_parser, features_required=True)
    build_parser.add_argument(
        "--start-index", type=int, help="Index of the first region to process"
    )
    build_parser.add_argument("--workers", type=int, help="Regions computed in parallel")
    build_parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    build_parser.add_argument("--checkpoint", help="Also export the per-lake checkpoint CSV")

    reconcile_parser = subparsers.add_parser("reconcile", help="Build the final network table")
    _add_common_arguments(reconcile_parser)
    reconcile_parser.add_argument("--output", help="Final table path (.csv)")

    status_parser = subparsers.add_parser("status", help="Show store progress")
    _add_common_arguments(status_parser)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "build": build_command,
        "reconcile": reconcile_command,
        "status": status_command,
    }
    try:
        commands[args.command](args)
    except LakeNetError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
