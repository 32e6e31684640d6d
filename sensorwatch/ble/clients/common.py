"""Shared helpers for Aranet clients (errors, device lookup, output sink)."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

DEVICE_ENV_VAR = "ARANET_DEVICE"

logger = logging.getLogger(__name__)


class DeviceError(RuntimeError):
    """Base class for failures reported by the sensor side."""


class ConnectFailure(DeviceError):
    pass


class ReadFailure(DeviceError):
    pass


class OutputError(RuntimeError):
    """Consumer-side failure; the client cannot make progress."""


class FormatError(OutputError):
    pass


class SinkError(OutputError):
    pass


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def safe_disconnect(device) -> None:
    if device is None:
        return
    try:
        await device.disconnect()
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Ignoring disconnect error: %s", exc)


def require_device(device: Optional[str]) -> str:
    identifier = device or os.environ.get(DEVICE_ENV_VAR)
    if not identifier:
        raise ValueError(
            f"No device specified. Use --device <ADDRESS> or set the {DEVICE_ENV_VAR} environment variable."
        )
    return identifier


def connect_failure_message(identifier: str, exc: BaseException) -> str:
    return (
        f"Failed to connect to device: {identifier}\n\n"
        f"Cause: {exc}\n\n"
        "Possible causes:\n"
        "  - Bluetooth may be disabled; check system settings\n"
        "  - Device may be out of range; try moving closer\n"
        "  - Device may be connected to another host\n"
        "  - Device address may be incorrect"
    )


class OutputSink:
    """Writes rendered records to a file or to standard output.

    A file target is truncated on the first write and appended to afterwards,
    so a long-running watch accumulates every record of the run.
    """

    def __init__(self, path: Optional[Path] = None, stream=None):
        self.path = Path(path).expanduser() if path else None
        self.stream = stream
        self._opened = False

    def write(self, content: str) -> None:
        try:
            if self.path is None:
                stream = self.stream or sys.stdout
                stream.write(content)
                stream.flush()
                return
            mode = "a" if self._opened else "w"
            with self.path.open(mode) as handle:
                handle.write(content)
            self._opened = True
        except OSError as exc:
            target = str(self.path) if self.path else "stdout"
            raise SinkError(f"Failed to write to {target}: {exc}") from exc
