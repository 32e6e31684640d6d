#!/usr/bin/env python3
"""Command-line client for Aranet environmental sensors.

Sub-commands:
1. watch: poll a sensor continuously over a persistent connection,
   reconnecting with exponential backoff when the link drops.
2. status: read the current values once.
3. info: read the Device Information Service once.
4. doctor: check the local Bluetooth setup.

Data goes to stdout or --output; progress and diagnostics go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

if __package__ is None:  # Allow running as `python sensorwatch/ble/aranet_cli.py`
    sys.path.append(str(Path(__file__).resolve().parents[2]))
    from sensorwatch.ble.clients import health_check  # type: ignore
    from sensorwatch.ble.clients.backoff import MAX_BACKOFF_S, MIN_BACKOFF_S  # type: ignore
    from sensorwatch.ble.clients.common import DeviceError, OutputError  # type: ignore
    from sensorwatch.ble.clients.format import OUTPUT_FORMATS  # type: ignore
    from sensorwatch.ble.clients.status import run_info, run_status  # type: ignore
    from sensorwatch.ble.clients.watch import run_watch  # type: ignore
else:
    from .clients import health_check
    from .clients.backoff import MAX_BACKOFF_S, MIN_BACKOFF_S
    from .clients.common import DeviceError, OutputError
    from .clients.format import OUTPUT_FORMATS
    from .clients.status import run_info, run_status
    from .clients.watch import run_watch

logger = logging.getLogger("sensorwatch")


def setup_logging(log_path: Optional[str], quiet: bool, verbose: bool = False) -> None:
    """Configure stderr/file logging."""
    handlers: List[logging.Handler] = []
    console = logging.StreamHandler(sys.stderr)
    if verbose:
        console.setLevel(logging.DEBUG)
    else:
        console.setLevel(logging.WARNING if quiet else logging.INFO)
    console.setFormatter(logging.Formatter("%(message)s"))
    handlers.append(console)
    if log_path:
        path = Path(log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers, force=True)


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0 (got {value})")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0 (got {value})")
    return number


def _add_device_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--device", "-d", default=None, help="BLE address of the sensor (default: $ARANET_DEVICE).")
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=30.0,
        help="Seconds to wait for a BLE connection before failing an attempt.",
    )
    parser.add_argument("--format", "-f", choices=OUTPUT_FORMATS, default="text", help="Output format.")
    parser.add_argument("--output", "-o", default=None, help="Write data to this file instead of stdout.")
    parser.add_argument("--no-header", dest="no_header", action="store_true", help="Omit the CSV header line.")
    parser.add_argument("--compact", action="store_true", help="Emit single-line JSON.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aranet", description="Command-line client for Aranet BLE sensors.")
    parser.add_argument("--log", default=None, help="Optional log file path")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print warnings and errors to stderr.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print debug diagnostics (overrides --quiet).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Poll a sensor continuously.")
    _add_device_options(watch)
    watch.add_argument("--interval", "-i", type=_positive_float, default=60.0, help="Seconds between readings.")
    watch.add_argument(
        "--count",
        "-n",
        type=_non_negative_int,
        default=0,
        help="Stop after this many successful readings (0 = run until interrupted).",
    )
    watch.add_argument(
        "--min_backoff_s",
        type=_positive_float,
        default=MIN_BACKOFF_S,
        help="First reconnect delay in seconds; doubles on each failure.",
    )
    watch.add_argument(
        "--max_backoff_s",
        type=_positive_float,
        default=MAX_BACKOFF_S,
        help="Ceiling for the reconnect delay in seconds.",
    )

    status = subparsers.add_parser("status", help="Read current values once.")
    _add_device_options(status)

    info = subparsers.add_parser("info", help="Read device information once.")
    _add_device_options(info)

    doctor = subparsers.add_parser("doctor", help="Check the local Bluetooth setup.")
    doctor.add_argument("--json", action="store_true", help="Print results as JSON.")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        args.quiet = False
    setup_logging(args.log, args.quiet, args.verbose)

    if args.command == "doctor":
        passed = health_check.report(health_check.run_checks(), verbose=args.verbose, as_json=args.json)
        if not passed:
            raise SystemExit(1)
        return

    if args.command == "watch" and args.max_backoff_s < args.min_backoff_s:
        parser.error("--max_backoff_s must be >= --min_backoff_s")

    commands = {"watch": run_watch, "status": run_status, "info": run_info}
    try:
        asyncio.run(commands[args.command](args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
    except (ValueError, DeviceError, OutputError) as exc:
        logger.error("Error: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
