"""Unit tests for the reconnect backoff policy and connection supervisor."""

from __future__ import annotations

import asyncio
import unittest

from sensorwatch.ble.clients.backoff import MAX_BACKOFF_S, MIN_BACKOFF_S, BackoffPolicy
from sensorwatch.ble.clients.common import ConnectFailure
from sensorwatch.ble.clients.supervisor import ConnectionSupervisor, RetryAfter
from sensorwatch.ble.clients.watch import WatchSession


class DummyDevice:
    def __init__(self, connected=True, fail_disconnect=False):
        self.connected = connected
        self.fail_disconnect = fail_disconnect
        self.disconnect_calls = 0

    def is_connected(self):
        return self.connected

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False
        if self.fail_disconnect:
            raise RuntimeError("disconnect failed")


class BackoffPolicyTests(unittest.TestCase):
    def test_defaults(self):
        policy = BackoffPolicy()
        self.assertEqual(MIN_BACKOFF_S, 2.0)
        self.assertEqual(MAX_BACKOFF_S, 300.0)
        self.assertEqual(policy.current_delay, 2.0)

    def test_next_doubles_and_saturates(self):
        policy = BackoffPolicy()
        self.assertEqual(policy.next(2.0), 4.0)
        self.assertEqual(policy.next(200.0), 300.0)
        self.assertEqual(policy.next(300.0), 300.0)

    def test_next_is_pure_doubling_below_the_floor(self):
        self.assertEqual(BackoffPolicy().next(0.5), 1.0)

    def test_advance_and_reset(self):
        policy = BackoffPolicy(min_delay=1.0, max_delay=5.0)
        self.assertEqual([policy.advance() for _ in range(5)], [1.0, 2.0, 4.0, 5.0, 5.0])
        self.assertEqual(policy.reset(), 1.0)
        self.assertEqual(policy.advance(), 1.0)

    def test_invalid_bounds(self):
        with self.assertRaises(ValueError):
            BackoffPolicy(min_delay=0)
        with self.assertRaises(ValueError):
            BackoffPolicy(min_delay=10, max_delay=5)


class ConnectionSupervisorTests(unittest.TestCase):
    def setUp(self):
        self.session = WatchSession(identifier="AA:BB", poll_interval=5.0, connect_timeout=7.0)

    def test_reuses_live_connection_and_resets_backoff(self):
        device = DummyDevice()
        calls = []

        async def connect(identifier, timeout):
            calls.append((identifier, timeout))
            return device

        supervisor = ConnectionSupervisor(connect=connect)
        backoff = BackoffPolicy()

        async def scenario():
            first = await supervisor.ensure_connection(self.session, backoff)
            backoff.advance()
            backoff.advance()
            second = await supervisor.ensure_connection(self.session, backoff)
            return first, second

        first, second = asyncio.run(scenario())
        self.assertIs(first, device)
        self.assertIs(second, device)
        self.assertEqual(calls, [("AA:BB", 7.0)])
        self.assertEqual(backoff.current_delay, 2.0)

    def test_failure_returns_retry_after(self):
        async def connect(_identifier, _timeout):
            raise ConnectFailure("out of range")

        supervisor = ConnectionSupervisor(connect=connect)
        backoff = BackoffPolicy()

        async def scenario():
            return [await supervisor.ensure_connection(self.session, backoff) for _ in range(3)]

        with self.assertLogs("sensorwatch", level="WARNING") as logs:
            results = asyncio.run(scenario())
        self.assertEqual(results, [RetryAfter(2.0), RetryAfter(4.0), RetryAfter(8.0)])
        self.assertEqual(
            logs.output[1],
            "WARNING:sensorwatch.ble.clients.supervisor:"
            "Connection failed (attempt 2): out of range. Retrying in 4s...",
        )
        self.assertIsNone(supervisor.device)
        self.assertEqual(supervisor.connect_attempts, 3)

    def test_unexpected_connect_error_is_retried(self):
        async def connect(_identifier, _timeout):
            raise OSError("adapter busy")

        supervisor = ConnectionSupervisor(connect=connect)
        result = asyncio.run(supervisor.ensure_connection(self.session, BackoffPolicy()))
        self.assertEqual(result, RetryAfter(2.0))

    def test_stale_handle_is_discarded(self):
        stale = DummyDevice(connected=False)
        fresh = DummyDevice()

        async def connect(_identifier, _timeout):
            return fresh

        supervisor = ConnectionSupervisor(connect=connect)
        supervisor.device = stale
        result = asyncio.run(supervisor.ensure_connection(self.session, BackoffPolicy()))
        self.assertIs(result, fresh)
        self.assertEqual(stale.disconnect_calls, 1)

    def test_report_read_failure_and_shutdown_are_best_effort(self):
        device = DummyDevice(fail_disconnect=True)
        supervisor = ConnectionSupervisor()
        supervisor.device = device
        asyncio.run(supervisor.report_read_failure())
        self.assertIsNone(supervisor.device)
        self.assertEqual(device.disconnect_calls, 1)
        asyncio.run(supervisor.shutdown())
        asyncio.run(supervisor.shutdown())
        self.assertEqual(device.disconnect_calls, 1)


if __name__ == "__main__":
    unittest.main()
