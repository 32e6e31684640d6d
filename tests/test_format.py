"""Tests for reading/info rendering and the output sink."""

from __future__ import annotations

import io
import json
import tempfile
import unittest
from pathlib import Path

from sensorwatch.ble.clients.common import FormatError, OutputSink, SinkError
from sensorwatch.ble.clients.device import CurrentReading, DeviceInfo, Status
from sensorwatch.ble.clients import format as fmt


def sample_reading() -> CurrentReading:
    return CurrentReading(
        co2=1234,
        temperature=22.5,
        pressure=1008.7,
        humidity=51,
        battery=77,
        status=Status.AMBER,
        interval=300,
        ago=42,
        captured_at="2024-05-01T08:30:00+00:00",
    )


class FormatTests(unittest.TestCase):
    def test_watch_line(self):
        line = fmt.format_watch_line(sample_reading())
        self.assertTrue(line.endswith("\n"))
        self.assertIn("1234 ppm AMBER", line)
        self.assertIn("51%", line)
        self.assertIn("1008.7hPa", line)
        self.assertIn("battery 77%", line)

    def test_reading_json(self):
        pretty = fmt.format_reading_json(sample_reading(), fmt.FormatOptions())
        compact = fmt.format_reading_json(sample_reading(), fmt.FormatOptions(compact=True))
        self.assertEqual(json.loads(pretty), json.loads(compact))
        self.assertEqual(len(compact.strip().splitlines()), 1)
        payload = json.loads(compact)
        self.assertEqual(payload["co2"], 1234)
        self.assertEqual(payload["status"], "AMBER")
        self.assertEqual(payload["age_s"], 42)

    def test_unserializable_payload_raises_format_error(self):
        with self.assertRaises(FormatError):
            fmt.FormatOptions().as_json({"bad": object()})

    def test_watch_csv(self):
        self.assertEqual(
            fmt.format_watch_csv_header(),
            "timestamp,co2,temperature_c,humidity,pressure,battery,status\n",
        )
        self.assertEqual(
            fmt.format_watch_csv_line(sample_reading()),
            "2024-05-01T08:30:00+00:00,1234,22.5,51,1008.7,77,AMBER\n",
        )

    def test_status_csv_quotes_device_name(self):
        content = fmt.format_status_csv("Office, 2F", sample_reading(), fmt.FormatOptions())
        header, row = content.splitlines()
        self.assertTrue(header.startswith("device,co2,"))
        self.assertTrue(row.startswith('"Office, 2F",1234,'))
        no_header = fmt.format_status_csv("x", sample_reading(), fmt.FormatOptions(no_header=True))
        self.assertEqual(len(no_header.splitlines()), 1)

    def test_status_text_and_json(self):
        text = fmt.format_status_text("Aranet4 1A2B3", sample_reading())
        self.assertTrue(text.startswith("Aranet4 1A2B3: 1234 ppm AMBER"))
        payload = json.loads(fmt.format_status_json("Aranet4 1A2B3", sample_reading(), fmt.FormatOptions()))
        self.assertEqual(payload["device"], "Aranet4 1A2B3")
        self.assertEqual(payload["battery"], 77)

    def test_info_outputs(self):
        info = DeviceInfo(name="Aranet4 1A2B3", model="Aranet4", firmware="v1.4.19")
        text = fmt.format_info_text(info)
        self.assertIn("Firmware", text)
        self.assertIn("v1.4.19", text)
        self.assertIn("Serial        -", text)
        csv_content = fmt.format_info_csv(info, fmt.FormatOptions())
        self.assertEqual(csv_content.splitlines()[0], ",".join(fmt.INFO_CSV_FIELDS))
        self.assertEqual(json.loads(fmt.format_info_json(info, fmt.FormatOptions()))["model"], "Aranet4")


class EmitterTests(unittest.TestCase):
    def test_header_flag_flips_once(self):
        stream = io.StringIO()
        emitter = fmt.Emitter("csv", fmt.FormatOptions(), OutputSink(stream=stream))
        self.assertFalse(emitter.header_written)
        emitter.emit(sample_reading())
        self.assertTrue(emitter.header_written)
        emitter.emit(sample_reading())
        lines = stream.getvalue().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith("timestamp,"))

    def test_header_not_marked_written_when_sink_fails(self):
        class BrokenSink:
            def write(self, _content):
                raise SinkError("closed")

        emitter = fmt.Emitter("csv", fmt.FormatOptions(), BrokenSink())
        with self.assertRaises(SinkError):
            emitter.emit(sample_reading())
        self.assertFalse(emitter.header_written)

    def test_rejects_unknown_format(self):
        with self.assertRaises(ValueError):
            fmt.Emitter("xml", fmt.FormatOptions(), OutputSink(stream=io.StringIO()))


class OutputSinkTests(unittest.TestCase):
    def test_file_truncated_then_appended(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "watch.csv"
            path.write_text("stale contents\n")
            sink = OutputSink(path)
            sink.write("a\n")
            sink.write("b\n")
            self.assertEqual(path.read_text(), "a\nb\n")

    def test_unwritable_target_raises_sink_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            sink = OutputSink(Path(tmpdir) / "missing" / "out.txt")
            with self.assertRaises(SinkError):
                sink.write("x")


if __name__ == "__main__":
    unittest.main()
