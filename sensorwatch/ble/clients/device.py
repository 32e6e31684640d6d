"""Aranet sensor access over BLE (connect, read current values, device info)."""

from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from bleak import BleakClient

from .common import ConnectFailure, ReadFailure, safe_disconnect, utc_now

logger = logging.getLogger(__name__)

CURRENT_READINGS_UUID = "f0cd3001-95da-4f4b-9ac8-aa55d312af0c"

DEVICE_NAME_UUID = "00002a00-0000-1000-8000-00805f9b34fb"
MODEL_NUMBER_UUID = "00002a24-0000-1000-8000-00805f9b34fb"
SERIAL_NUMBER_UUID = "00002a25-0000-1000-8000-00805f9b34fb"
FIRMWARE_REVISION_UUID = "00002a26-0000-1000-8000-00805f9b34fb"
HARDWARE_REVISION_UUID = "00002a27-0000-1000-8000-00805f9b34fb"
SOFTWARE_REVISION_UUID = "00002a28-0000-1000-8000-00805f9b34fb"
MANUFACTURER_NAME_UUID = "00002a29-0000-1000-8000-00805f9b34fb"

# co2, temperature, pressure, humidity, battery, status, interval, ago
_CURRENT_FORMAT = "<HHHBBBHH"
_CURRENT_SIZE = struct.calcsize(_CURRENT_FORMAT)


class Status(Enum):
    ERROR = 0
    GREEN = 1
    AMBER = 2
    RED = 3

    @classmethod
    def from_raw(cls, value: int) -> "Status":
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR


@dataclass
class CurrentReading:
    co2: int
    temperature: float
    pressure: float
    humidity: int
    battery: int
    status: Status
    interval: int
    ago: int
    captured_at: str = field(default_factory=utc_now)

    @classmethod
    def from_bytes(cls, data: bytes) -> "CurrentReading":
        if len(data) < _CURRENT_SIZE:
            raise ReadFailure(f"Invalid reading length: expected >= {_CURRENT_SIZE}, got {len(data)}")
        co2, temp_raw, pressure_raw, humidity, battery, status, interval, ago = struct.unpack_from(
            _CURRENT_FORMAT, bytes(data)
        )
        return cls(
            co2=co2,
            temperature=temp_raw / 20.0,
            pressure=pressure_raw / 10.0,
            humidity=humidity,
            battery=battery,
            status=Status.from_raw(status),
            interval=interval,
            ago=ago,
        )


@dataclass
class DeviceInfo:
    name: str = ""
    model: str = ""
    serial: str = ""
    firmware: str = ""
    hardware: str = ""
    software: str = ""
    manufacturer: str = ""


class AranetDevice:
    """Live connection to one sensor. Owned by exactly one caller at a time."""

    def __init__(self, client: BleakClient, identifier: str):
        self.client = client
        self.identifier = identifier

    @classmethod
    async def connect(cls, identifier: str, timeout: float) -> "AranetDevice":
        client = BleakClient(identifier, timeout=timeout)
        try:
            await asyncio.wait_for(client.connect(), timeout=timeout)
        except asyncio.CancelledError:
            await safe_disconnect(client)
            raise
        except asyncio.TimeoutError as exc:
            await safe_disconnect(client)
            raise ConnectFailure(f"timed out after {timeout:g}s") from exc
        except Exception as exc:  # pylint: disable=broad-except
            await safe_disconnect(client)
            raise ConnectFailure(str(exc) or exc.__class__.__name__) from exc
        logger.debug("Connected to %s", identifier)
        return cls(client, identifier)

    def is_connected(self) -> bool:
        try:
            return bool(self.client.is_connected)
        except Exception:  # pylint: disable=broad-except
            return False

    async def read_current(self) -> CurrentReading:
        try:
            data = await self.client.read_gatt_char(CURRENT_READINGS_UUID)
        except Exception as exc:  # pylint: disable=broad-except
            raise ReadFailure(str(exc) or exc.__class__.__name__) from exc
        return CurrentReading.from_bytes(data)

    async def _read_string(self, uuid: str) -> Optional[str]:
        try:
            data = await self.client.read_gatt_char(uuid)
        except Exception:  # pylint: disable=broad-except
            return None
        return bytes(data).decode("utf-8", errors="replace").rstrip("\x00").strip()

    async def read_name(self) -> Optional[str]:
        return await self._read_string(DEVICE_NAME_UUID) or None

    async def read_device_info(self) -> DeviceInfo:
        """Reads the Device Information Service; missing fields stay empty."""
        fields = {
            "name": DEVICE_NAME_UUID,
            "model": MODEL_NUMBER_UUID,
            "serial": SERIAL_NUMBER_UUID,
            "firmware": FIRMWARE_REVISION_UUID,
            "hardware": HARDWARE_REVISION_UUID,
            "software": SOFTWARE_REVISION_UUID,
            "manufacturer": MANUFACTURER_NAME_UUID,
        }
        values = {}
        for key, uuid in fields.items():
            values[key] = await self._read_string(uuid) or ""
        if not any(values.values()):
            raise ReadFailure("Device information not available")
        return DeviceInfo(**values)

    async def disconnect(self) -> None:
        await self.client.disconnect()
