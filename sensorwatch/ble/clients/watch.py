"""Continuous polling of one sensor over a persistent BLE connection.

The connection is kept open between reads and only re-established when a
read fails or the link reports itself down. Reconnects back off
exponentially (2s doubling to 300s) and never give up on their own; the loop
ends when the requested number of readings has been taken or when the
cancel event is set. Both waits (backoff and poll interval) race the cancel
event, so shutdown never has to sit out a full wait.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .backoff import MAX_BACKOFF_S, MIN_BACKOFF_S, BackoffPolicy
from .common import OutputSink, require_device
from .format import Emitter, FormatOptions
from .supervisor import ConnectionSupervisor, RetryAfter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchSession:
    identifier: str
    poll_interval: float
    count_limit: int = 0
    connect_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll interval must be positive")
        if self.count_limit < 0:
            raise ValueError("count limit must be >= 0")
        if self.connect_timeout <= 0:
            raise ValueError("connect timeout must be positive")


class WatchState(Enum):
    AWAITING_CONNECTION = "awaiting_connection"
    BACKOFF_WAIT = "backoff_wait"
    READING = "reading"
    INTERVAL_WAIT = "interval_wait"
    TERMINATED = "terminated"


class PollLoop:
    """State machine driving connect, read, emit and wait for one session."""

    def __init__(
        self,
        session: WatchSession,
        emitter: Emitter,
        supervisor: Optional[ConnectionSupervisor] = None,
        backoff: Optional[BackoffPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.session = session
        self.emitter = emitter
        self.supervisor = supervisor or ConnectionSupervisor()
        self.backoff = backoff or BackoffPolicy()
        self.cancel_event = cancel_event
        self.state = WatchState.AWAITING_CONNECTION
        self.readings_taken = 0
        self._device = None
        self._backoff_delay = 0.0
        self._handlers = {
            WatchState.AWAITING_CONNECTION: self._await_connection,
            WatchState.BACKOFF_WAIT: self._backoff_wait,
            WatchState.READING: self._read,
            WatchState.INTERVAL_WAIT: self._interval_wait,
        }

    def cancel(self) -> None:
        self._cancel().set()

    def _cancel(self) -> asyncio.Event:
        if self.cancel_event is None:
            self.cancel_event = asyncio.Event()
        return self.cancel_event

    @property
    def limit_reached(self) -> bool:
        return self.session.count_limit > 0 and self.readings_taken >= self.session.count_limit

    async def run(self) -> int:
        """Run until the count limit is met or cancellation; returns readings taken."""
        self._cancel()
        try:
            while self.state is not WatchState.TERMINATED:
                self.state = await self._handlers[self.state]()
        finally:
            self._device = None
            try:
                await self.supervisor.shutdown()
            except Exception as exc:  # pylint: disable=broad-except
                logger.debug("Ignoring shutdown error: %s", exc)
        return self.readings_taken

    async def _await_connection(self) -> WatchState:
        if self.limit_reached:
            logger.info("Completed %d readings.", self.readings_taken)
            return WatchState.TERMINATED
        if self._cancel().is_set():
            logger.info("Shutting down...")
            return WatchState.TERMINATED
        # An in-flight connect is not interrupted; a cancel that lands during it is seen at the next wait.
        result = await self.supervisor.ensure_connection(self.session, self.backoff)
        if isinstance(result, RetryAfter):
            self._backoff_delay = result.delay
            return WatchState.BACKOFF_WAIT
        self._device = result
        return WatchState.READING

    async def _backoff_wait(self) -> WatchState:
        if await self._wait_or_cancel(self._backoff_delay):
            logger.info("Shutting down...")
            return WatchState.TERMINATED
        return WatchState.AWAITING_CONNECTION

    async def _read(self) -> WatchState:
        try:
            reading = await self._device.read_current()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Read failed: %s. Will reconnect on next poll.", exc)
            self._device = None
            await self.supervisor.report_read_failure()
            return WatchState.AWAITING_CONNECTION

        self.readings_taken += 1
        # Output failures are fatal and propagate.
        self.emitter.emit(reading)
        if self.limit_reached:
            return WatchState.AWAITING_CONNECTION
        return WatchState.INTERVAL_WAIT

    async def _interval_wait(self) -> WatchState:
        if await self._wait_or_cancel(self.session.poll_interval):
            logger.info("Shutting down...")
            return WatchState.TERMINATED
        return WatchState.AWAITING_CONNECTION

    async def _wait_or_cancel(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; True if cancellation arrived first."""
        event = self._cancel()
        try:
            await asyncio.wait_for(event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, poll_loop: PollLoop) -> bool:
    installed = False
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, poll_loop.cancel)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            pass
    return installed


def _remove_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            pass


async def run_watch(args, supervisor: Optional[ConnectionSupervisor] = None) -> int:
    session = WatchSession(
        identifier=require_device(args.device),
        poll_interval=float(args.interval),
        count_limit=int(args.count),
        connect_timeout=float(args.timeout),
    )
    opts = FormatOptions(no_header=args.no_header, compact=getattr(args, "compact", False))
    output = Path(args.output) if args.output else None
    emitter = Emitter(args.format, opts, OutputSink(output))
    backoff = BackoffPolicy(
        min_delay=float(getattr(args, "min_backoff_s", MIN_BACKOFF_S)),
        max_delay=float(getattr(args, "max_backoff_s", MAX_BACKOFF_S)),
    )
    poll_loop = PollLoop(session, emitter, supervisor=supervisor, backoff=backoff, cancel_event=asyncio.Event())

    if session.count_limit > 0:
        logger.info(
            "Watching %s (interval: %gs, count: %d) - Press Ctrl+C to stop",
            session.identifier,
            session.poll_interval,
            session.count_limit,
        )
    else:
        logger.info(
            "Watching %s (interval: %gs) - Press Ctrl+C to stop",
            session.identifier,
            session.poll_interval,
        )

    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, poll_loop)
    try:
        return await poll_loop.run()
    finally:
        if installed:
            _remove_signal_handlers(loop)
