"""One-shot commands: connect, read once, render, disconnect."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

from .common import ConnectFailure, OutputSink, connect_failure_message, require_device, safe_disconnect
from .device import AranetDevice
from .format import (
    FormatOptions,
    format_info_csv,
    format_info_json,
    format_info_text,
    format_status_csv,
    format_status_json,
    format_status_text,
)

logger = logging.getLogger(__name__)

ConnectFn = Callable[[str, float], Awaitable[AranetDevice]]


async def connect_device(identifier: str, timeout: float, connect: ConnectFn = AranetDevice.connect) -> AranetDevice:
    try:
        return await connect(identifier, timeout)
    except ConnectFailure as exc:
        raise ConnectFailure(connect_failure_message(identifier, exc)) from exc


def _options(args) -> FormatOptions:
    return FormatOptions(no_header=args.no_header, compact=getattr(args, "compact", False))


def _sink(args) -> OutputSink:
    return OutputSink(Path(args.output) if args.output else None)


async def run_status(args, connect: ConnectFn = AranetDevice.connect) -> str:
    identifier = require_device(args.device)
    if not args.quiet and args.format == "text":
        logger.info("Connecting to %s...", identifier)
    device = await connect_device(identifier, float(args.timeout), connect)
    try:
        name = await device.read_name()
        reading = await device.read_current()
    finally:
        await safe_disconnect(device)

    device_name = name or identifier
    opts = _options(args)
    if args.format == "json":
        content = format_status_json(device_name, reading, opts)
    elif args.format == "csv":
        content = format_status_csv(device_name, reading, opts)
    else:
        content = format_status_text(device_name, reading)
    _sink(args).write(content)
    return content


async def run_info(args, connect: ConnectFn = AranetDevice.connect) -> str:
    identifier = require_device(args.device)
    if not args.quiet and args.format == "text":
        logger.info("Connecting to %s...", identifier)
    device = await connect_device(identifier, float(args.timeout), connect)
    try:
        info = await device.read_device_info()
    finally:
        await safe_disconnect(device)

    opts = _options(args)
    if args.format == "json":
        content = format_info_json(info, opts)
    elif args.format == "csv":
        content = format_info_csv(info, opts)
    else:
        content = format_info_text(info)
    _sink(args).write(content)
    return content
