"""Ownership of the single live sensor connection used by the watch loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .backoff import BackoffPolicy
from .common import safe_disconnect
from .device import AranetDevice

logger = logging.getLogger(__name__)

ConnectFn = Callable[[str, float], Awaitable[AranetDevice]]


@dataclass(frozen=True)
class RetryAfter:
    delay: float


class ConnectionSupervisor:
    """Hands out a connection that is usable for the next read, or a retry delay."""

    def __init__(self, connect: ConnectFn = AranetDevice.connect):
        self._connect = connect
        self.device: Optional[AranetDevice] = None
        self.connect_attempts = 0

    async def ensure_connection(self, session, backoff: BackoffPolicy) -> Union[AranetDevice, RetryAfter]:
        if self.device is not None:
            if self.device.is_connected():
                backoff.reset()
                return self.device
            logger.warning("Connection lost. Reconnecting...")
            stale, self.device = self.device, None
            await safe_disconnect(stale)

        self.connect_attempts += 1
        logger.info("Connecting to %s...", session.identifier)
        try:
            device = await self._connect(session.identifier, session.connect_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            delay = backoff.advance()
            logger.warning(
                "Connection failed (attempt %d): %s. Retrying in %gs...", self.connect_attempts, exc, delay
            )
            return RetryAfter(delay)

        self.device = device
        backoff.reset()
        logger.info("Connected to %s", session.identifier)
        return device

    async def report_read_failure(self) -> None:
        device, self.device = self.device, None
        await safe_disconnect(device)

    async def shutdown(self) -> None:
        device, self.device = self.device, None
        await safe_disconnect(device)
