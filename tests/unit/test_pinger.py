#!/usr/bin/env python3
# Copyright 2025 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review for correctness and security.

"""
Unit tests for pingviz.pinger module.

This module tests the probe engine against a scripted in-memory transport.
"""

import os
import sys
import threading
import time
import unittest
from unittest.mock import MagicMock

# Add parent directory to path to import pingviz
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import (  # noqa: E402  # pylint: disable=wrong-import-position
    FakeTransport,
    echo_datagram,
    make_host,
    malformed_reply,
    matching_reply,
    wrong_sequence_reply,
)
from scapy.layers.inet import ICMP  # noqa: E402  # pylint: disable=wrong-import-position

from pingviz.models import FailureReason, ProbeFailure, ProbeSuccess  # noqa: E402  # pylint: disable=wrong-import-position
from pingviz.pinger import ProbeEngine  # noqa: E402  # pylint: disable=wrong-import-position
from pingviz.reporter import MetricsReporter  # noqa: E402  # pylint: disable=wrong-import-position
from pingviz.sequence_tracker import CorrelationTable  # noqa: E402  # pylint: disable=wrong-import-position
from pingviz.transport import TransportIOError, UnreachableError  # noqa: E402  # pylint: disable=wrong-import-position


class TestProbeEngineSuccess(unittest.TestCase):
    """Probes that receive their matching reply"""

    def test_reply_after_120ms_records_one_timing_sample(self):
        """10.0.0.1, ttl 1s: reply after 120ms resolves as Success(~120ms)"""
        host = make_host("10.0.0.1", ttl=1.0, interval=2.0)
        transport = FakeTransport(replies=[(0.12, matching_reply("10.0.0.1"))])
        engine = ProbeEngine(transport)
        client = MagicMock()

        outcome = engine.probe(host)
        MetricsReporter(client).report(host, outcome)

        self.assertIsInstance(outcome, ProbeSuccess)
        self.assertGreaterEqual(outcome.duration_ms, 110.0)
        self.assertLess(outcome.duration_ms, 1000.0)
        client.record_timing.assert_called_once_with("response.core.10.0.0.1", outcome.duration_ms)
        client.increment_counter.assert_not_called()

    def test_echo_request_fields(self):
        """Sent packet is an echo request carrying our identifier and the sequence"""
        host = make_host("10.0.0.1")
        transport = FakeTransport(replies=[(0.0, matching_reply("10.0.0.1"))])
        engine = ProbeEngine(transport, identifier=0x12345)

        outcome = engine.probe(host)

        payload, address = transport.sent[0]
        message = ICMP(payload)
        self.assertEqual(address, "10.0.0.1")
        self.assertEqual(message.type, 8)
        self.assertEqual(message.code, 0)
        self.assertEqual(message.id, 0x2345)
        self.assertEqual(message.seq, outcome.sequence)
        self.assertEqual(bytes(message.payload), b"pingviz")

    def test_duration_is_non_negative(self):
        host = make_host("10.0.0.1")
        transport = FakeTransport(replies=[(0.0, matching_reply("10.0.0.1"))])

        outcome = ProbeEngine(transport).probe(host)

        self.assertIsInstance(outcome, ProbeSuccess)
        self.assertGreaterEqual(outcome.duration_ms, 0.0)


class TestProbeEngineTimeout(unittest.TestCase):
    """Probes that never see their reply"""

    def test_no_reply_times_out_after_ttl(self):
        """10.0.0.2, ttl 1s, no reply: Failure(Timeout) at >= 1000ms, one counter increment"""
        host = make_host("10.0.0.2", ttl=1.0, interval=2.0)
        transport = FakeTransport()
        engine = ProbeEngine(transport)
        client = MagicMock()

        start = time.monotonic()
        outcome = engine.probe(host)
        elapsed = time.monotonic() - start
        MetricsReporter(client).report(host, outcome)

        self.assertIsInstance(outcome, ProbeFailure)
        self.assertEqual(outcome.reason, FailureReason.TIMEOUT)
        self.assertGreaterEqual(elapsed, 1.0)
        self.assertLess(elapsed, 1.5)
        client.increment_counter.assert_called_once_with("failed.core.10.0.0.2")
        client.record_timing.assert_not_called()

    def test_ttl_override(self):
        host = make_host("10.0.0.2", ttl=5.0)
        start = time.monotonic()
        outcome = ProbeEngine(FakeTransport()).probe(host, ttl=0.1)
        self.assertEqual(outcome.reason, FailureReason.TIMEOUT)
        self.assertLess(time.monotonic() - start, 1.0)


class TestReplyFiltering(unittest.TestCase):
    """Replies that must not resolve the awaiting probe"""

    def test_wrong_sequence_does_not_resolve(self):
        """Correct peer, wrong sequence: probe keeps waiting for its own reply"""
        host = make_host("10.0.0.1", ttl=1.0)
        transport = FakeTransport(
            replies=[
                (0.05, wrong_sequence_reply("10.0.0.1")),
                (0.05, matching_reply("10.0.0.1")),
            ]
        )

        outcome = ProbeEngine(transport).probe(host)

        self.assertIsInstance(outcome, ProbeSuccess)
        self.assertEqual(transport.receive_calls, 2)
        self.assertGreaterEqual(outcome.duration_ms, 90.0)

    def test_wrong_sequence_does_not_extend_deadline(self):
        """Every read is bounded by the deadline set once when the probe was sent"""
        host = make_host("10.0.0.1", ttl=0.3)
        transport = FakeTransport(
            replies=[
                (0.1, wrong_sequence_reply("10.0.0.1")),
                (0.1, wrong_sequence_reply("10.0.0.1")),
            ]
        )

        start = time.monotonic()
        outcome = ProbeEngine(transport).probe(host)
        elapsed = time.monotonic() - start

        self.assertEqual(outcome.reason, FailureReason.TIMEOUT)
        self.assertEqual(len(set(transport.deadlines)), 1)
        self.assertGreaterEqual(elapsed, 0.3)
        self.assertLess(elapsed, 0.6)

    def test_foreign_peer_discarded_even_with_matching_sequence(self):
        host = make_host("10.0.0.1", ttl=0.3)
        transport = FakeTransport(replies=[(0.05, matching_reply("10.9.9.9"))])

        outcome = ProbeEngine(transport).probe(host)

        self.assertIsInstance(outcome, ProbeFailure)
        self.assertEqual(outcome.reason, FailureReason.TIMEOUT)

    def test_malformed_packet_is_skipped(self):
        host = make_host("10.0.0.1", ttl=1.0)
        transport = FakeTransport(
            replies=[
                (0.01, malformed_reply("10.0.0.1")),
                (0.01, matching_reply("10.0.0.1")),
            ]
        )

        with self.assertLogs("pingviz.pinger", level="WARNING") as logs:
            outcome = ProbeEngine(transport).probe(host)

        self.assertIsInstance(outcome, ProbeSuccess)
        self.assertTrue(any("Unable to parse ICMP message" in line for line in logs.output))

    def test_non_echo_reply_is_skipped(self):
        """Destination unreachable from the target does not resolve the probe"""
        host = make_host("10.0.0.1", ttl=1.0)

        def unreachable(seq):
            return echo_datagram("10.0.0.1", seq, icmp_type=3, code=1), "10.0.0.1"

        transport = FakeTransport(replies=[(0.01, unreachable), (0.01, matching_reply("10.0.0.1"))])

        outcome = ProbeEngine(transport).probe(host)

        self.assertIsInstance(outcome, ProbeSuccess)
        self.assertEqual(transport.receive_calls, 2)


class TestSendAndReceiveErrors(unittest.TestCase):
    """Transport failures become Failure outcomes"""

    def test_send_io_error_fails_without_waiting(self):
        host = make_host("10.0.0.1", ttl=5.0)
        transport = FakeTransport(send_error=TransportIOError("network is unreachable"))

        start = time.monotonic()
        outcome = ProbeEngine(transport).probe(host)

        self.assertEqual(outcome.reason, FailureReason.SEND_ERROR)
        self.assertIn("network is unreachable", outcome.detail)
        self.assertEqual(transport.receive_calls, 0)
        self.assertLess(time.monotonic() - start, 1.0)

    def test_short_write_fails_as_send_error(self):
        host = make_host("10.0.0.1")
        transport = FakeTransport(send_error=UnreachableError("short write", written=3, expected=15))

        outcome = ProbeEngine(transport).probe(host)

        self.assertEqual(outcome.reason, FailureReason.SEND_ERROR)
        self.assertEqual(transport.receive_calls, 0)

    def test_receive_io_error(self):
        host = make_host("10.0.0.1")
        transport = MagicMock()
        transport.send.return_value = 15
        transport.receive_with_deadline.side_effect = TransportIOError("bad file descriptor")

        outcome = ProbeEngine(transport).probe(host)

        self.assertEqual(outcome.reason, FailureReason.RECEIVE_ERROR)


class TestSequenceRelease(unittest.TestCase):
    """The correlation table is empty again after every probe"""

    def _assert_released(self, transport, host):
        table = CorrelationTable()
        engine = ProbeEngine(transport, correlation_table=table)
        outcome = engine.probe(host)
        self.assertEqual(len(table), 0)
        self.assertNotIn(outcome.sequence, table)
        return outcome

    def test_released_after_success(self):
        self._assert_released(FakeTransport(replies=[(0.0, matching_reply("10.0.0.1"))]), make_host("10.0.0.1"))

    def test_released_after_timeout(self):
        self._assert_released(FakeTransport(), make_host("10.0.0.1", ttl=0.05))

    def test_released_after_send_error(self):
        self._assert_released(FakeTransport(send_error=TransportIOError("boom")), make_host("10.0.0.1"))

    def test_released_after_unexpected_exception(self):
        table = CorrelationTable()
        transport = MagicMock()
        transport.send.side_effect = KeyError("unexpected")
        engine = ProbeEngine(transport, correlation_table=table)

        with self.assertRaises(KeyError):
            engine.probe(make_host("10.0.0.1"))
        self.assertEqual(len(table), 0)

    def test_sequence_registered_while_in_flight(self):
        table = CorrelationTable()
        seen = []

        class InspectingTransport(FakeTransport):
            def send(self, payload, address):
                written = super().send(payload, address)
                seen.append((len(table), self.last_sequence() in table))
                return written

        transport = InspectingTransport(replies=[(0.0, matching_reply("10.0.0.1"))])
        outcome = ProbeEngine(transport, correlation_table=table).probe(make_host("10.0.0.1"))

        self.assertEqual(seen, [(1, True)])
        self.assertNotIn(outcome.sequence, table)


class TestSerialization(unittest.TestCase):
    """Probes from different threads never overlap on the shared socket"""

    def test_one_probe_in_flight_at_a_time(self):
        in_flight = []
        max_in_flight = []
        lock = threading.Lock()

        class CountingTransport(FakeTransport):
            def send(self, payload, address):
                with lock:
                    in_flight.append(address)
                    max_in_flight.append(len(in_flight))
                return super().send(payload, address)

            def receive_with_deadline(self, deadline, bufsize=1500):
                try:
                    time.sleep(0.02)
                    return matching_reply(self.sent[-1][1])(self.last_sequence())
                finally:
                    with lock:
                        in_flight.pop()

        engine = ProbeEngine(CountingTransport())
        hosts = [make_host(f"10.0.0.{i}") for i in range(1, 5)]
        outcomes = []
        threads = [threading.Thread(target=lambda h=h: outcomes.append(engine.probe(h))) for h in hosts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5.0)

        self.assertEqual(len(outcomes), 4)
        self.assertTrue(all(isinstance(o, ProbeSuccess) for o in outcomes))
        self.assertEqual(max(max_in_flight), 1)


class TestCancellation(unittest.TestCase):
    """A set cancel event keeps a probe off the wire"""

    def test_cancelled_probe_sends_nothing(self):
        transport = FakeTransport()
        table = CorrelationTable()
        cancel = threading.Event()
        cancel.set()

        outcome = ProbeEngine(transport, correlation_table=table).probe(make_host("10.0.0.1"), cancel=cancel)

        self.assertIsNone(outcome)
        self.assertEqual(transport.sent, [])
        self.assertEqual(len(table), 0)

    def test_cancel_while_queued_behind_another_probe(self):
        """Cancel raised while waiting on the engine lock skips the queued probe"""
        transport = FakeTransport()
        engine = ProbeEngine(transport)
        cancel = threading.Event()
        results = {}

        first = threading.Thread(target=lambda: results.update(first=engine.probe(make_host("10.0.0.1", ttl=0.3))))
        queued = threading.Thread(
            target=lambda: results.update(queued=engine.probe(make_host("10.0.0.2", ttl=0.3), cancel=cancel))
        )
        first.start()
        time.sleep(0.05)
        queued.start()
        time.sleep(0.05)
        cancel.set()
        first.join(timeout=2.0)
        queued.join(timeout=2.0)

        self.assertEqual(results["first"].reason, FailureReason.TIMEOUT)
        self.assertIsNone(results["queued"])
        self.assertEqual([address for _, address in transport.sent], ["10.0.0.1"])


if __name__ == "__main__":
    unittest.main()
