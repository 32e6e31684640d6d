"""Rendering of readings and device info as text, JSON or CSV."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List

from .common import FormatError, OutputSink
from .device import CurrentReading, DeviceInfo

OUTPUT_FORMATS = ("text", "json", "csv")

WATCH_CSV_FIELDS = [
    "timestamp",
    "co2",
    "temperature_c",
    "humidity",
    "pressure",
    "battery",
    "status",
]
STATUS_CSV_FIELDS = ["device"] + WATCH_CSV_FIELDS[1:]
INFO_CSV_FIELDS = ["name", "model", "serial", "firmware", "hardware", "software", "manufacturer"]


@dataclass(frozen=True)
class FormatOptions:
    no_header: bool = False
    compact: bool = False

    def as_json(self, payload: Dict[str, Any]) -> str:
        try:
            if self.compact:
                return json.dumps(payload, separators=(",", ":")) + "\n"
            return json.dumps(payload, indent=2) + "\n"
        except (TypeError, ValueError) as exc:
            raise FormatError(f"Failed to serialize output: {exc}") from exc


def _csv_row(values: List[Any]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(values)
    return buffer.getvalue()


def _clock(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp).astimezone().strftime("%H:%M:%S")
    except ValueError:
        return timestamp


def reading_to_dict(reading: CurrentReading) -> Dict[str, Any]:
    return {
        "timestamp": reading.captured_at,
        "co2": reading.co2,
        "temperature_c": round(reading.temperature, 2),
        "humidity": reading.humidity,
        "pressure": round(reading.pressure, 1),
        "battery": reading.battery,
        "status": reading.status.name,
        "interval_s": reading.interval,
        "age_s": reading.ago,
    }


def _reading_values(reading: CurrentReading) -> List[Any]:
    return [
        reading.co2,
        f"{reading.temperature:.1f}",
        reading.humidity,
        f"{reading.pressure:.1f}",
        reading.battery,
        reading.status.name,
    ]


def format_watch_line(reading: CurrentReading) -> str:
    return (
        f"[{_clock(reading.captured_at)}] {reading.co2} ppm {reading.status.name} "
        f"{reading.temperature:.1f}C {reading.humidity}% {reading.pressure:.1f}hPa "
        f"battery {reading.battery}%\n"
    )


def format_reading_json(reading: CurrentReading, opts: FormatOptions) -> str:
    return opts.as_json(reading_to_dict(reading))


def format_watch_csv_header() -> str:
    return _csv_row(WATCH_CSV_FIELDS)


def format_watch_csv_line(reading: CurrentReading) -> str:
    return _csv_row([reading.captured_at] + _reading_values(reading))


def format_status_text(device_name: str, reading: CurrentReading) -> str:
    return (
        f"{device_name}: {reading.co2} ppm {reading.status.name} {reading.temperature:.1f}C "
        f"{reading.humidity}% {reading.pressure:.1f}hPa\n"
    )


def format_status_json(device_name: str, reading: CurrentReading, opts: FormatOptions) -> str:
    payload = {"device": device_name}
    payload.update(reading_to_dict(reading))
    return opts.as_json(payload)


def format_status_csv(device_name: str, reading: CurrentReading, opts: FormatOptions) -> str:
    row = _csv_row([device_name] + _reading_values(reading))
    if opts.no_header:
        return row
    return _csv_row(STATUS_CSV_FIELDS) + row


def format_info_text(info: DeviceInfo) -> str:
    lines = []
    for key in INFO_CSV_FIELDS:
        value = getattr(info, key) or "-"
        lines.append(f"{key.capitalize():<13} {value}")
    return "\n".join(lines) + "\n"


def format_info_json(info: DeviceInfo, opts: FormatOptions) -> str:
    return opts.as_json(asdict(info))


def format_info_csv(info: DeviceInfo, opts: FormatOptions) -> str:
    row = _csv_row([getattr(info, key) for key in INFO_CSV_FIELDS])
    if opts.no_header:
        return row
    return _csv_row(INFO_CSV_FIELDS) + row


class Emitter:
    """Renders watch readings and writes them to a sink.

    Tracks whether the CSV header has been written; the flag lives as long as
    the emitter, so reconnects within one run never repeat the header.
    """

    def __init__(self, output_format: str, opts: FormatOptions, sink: OutputSink):
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Unsupported output format: {output_format}")
        self.output_format = output_format
        self.opts = opts
        self.sink = sink
        self.header_written = opts.no_header

    def render(self, reading: CurrentReading) -> str:
        if self.output_format == "json":
            return format_reading_json(reading, self.opts)
        if self.output_format == "csv":
            content = ""
            if not self.header_written:
                content += format_watch_csv_header()
            return content + format_watch_csv_line(reading)
        return format_watch_line(reading)

    def emit(self, reading: CurrentReading) -> None:
        content = self.render(reading)
        self.sink.write(content)
        if self.output_format == "csv":
            self.header_written = True
