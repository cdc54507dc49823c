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
Probe engine for PingViz.

ProbeEngine runs one complete echo exchange against a host through the shared
IcmpTransport and turns it into a ProbeOutcome. A single lock is held for the
whole exchange (send through reply-or-timeout), so only one probe is on the
wire at a time process-wide and no dispatcher can consume another's reply.
"""

import logging
import threading
import time
from typing import Callable, Optional

from pingviz.icmp import (
    DEFAULT_PAYLOAD,
    EchoReply,
    MalformedPacketError,
    OtherMessage,
    build_echo_request,
    parse_icmp_datagram,
    process_identifier,
)
from pingviz.models import FailureReason, MonitoredHost, ProbeFailure, ProbeOutcome, ProbeSuccess
from pingviz.sequence_tracker import CorrelationTable
from pingviz.transport import IcmpTransport, TransportError, TransportIOError, TransportTimeout, UnreachableError

logger = logging.getLogger(__name__)


class ProbeEngine:
    """Sends echo requests and waits for the matching reply or the deadline."""

    def __init__(
        self,
        transport: IcmpTransport,
        correlation_table: Optional[CorrelationTable] = None,
        identifier: Optional[int] = None,
        payload: bytes = DEFAULT_PAYLOAD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            transport: The process-wide ICMP transport
            correlation_table: Table of outstanding sequences (creates new if None)
            identifier: ICMP identifier (defaults to the pid masked to 16 bits)
            payload: Opaque echo payload
            clock: Monotonic clock used for deadlines and elapsed time
        """
        self.transport = transport
        self.correlation_table = correlation_table if correlation_table is not None else CorrelationTable()
        self.identifier = (identifier if identifier is not None else process_identifier()) & 0xFFFF
        self.payload = payload
        self._clock = clock
        self._lock = threading.Lock()

    def probe(
        self,
        host: MonitoredHost,
        ttl: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[ProbeOutcome]:
        """
        Probe ``host`` once.

        Callers queue on the engine lock behind other hosts' probes. ``cancel``
        is checked once the lock is held, so a probe whose caller was asked to
        stop while queued never reaches the wire.

        Args:
            host: Target host
            ttl: Maximum seconds to wait for the reply (defaults to host.ttl)
            cancel: Event that, when set, skips the probe

        Returns:
            ProbeSuccess with the round trip in milliseconds, ProbeFailure, or
            None if the probe was cancelled before anything was sent
        """
        time_to_live = host.ttl if ttl is None else ttl
        with self._lock:
            if cancel is not None and cancel.is_set():
                logger.debug("Skipping probe host=%s; shutdown requested", host.name)
                return None
            request = self.correlation_table.register(host)
            seq = request.sequence
            try:
                return self._exchange(host, seq, time_to_live)
            finally:
                self.correlation_table.release(seq)

    def _exchange(self, host: MonitoredHost, seq: int, time_to_live: float) -> ProbeOutcome:
        try:
            packet = build_echo_request(self.identifier, seq, self.payload)
        except ValueError as exc:
            logger.warning("Unable to create ICMP packet host=%s sequence=%d: %s", host.name, seq, exc)
            return ProbeFailure(seq, FailureReason.SEND_ERROR, str(exc))

        start = self._clock()
        try:
            self.transport.send(packet, host.address)
        except UnreachableError as exc:
            logger.error("Packet size mismatch host=%s sequence=%d: %s", host.name, seq, exc)
            return ProbeFailure(seq, FailureReason.SEND_ERROR, str(exc))
        except TransportError as exc:
            logger.error("Unable to send ICMP packet host=%s sequence=%d: %s", host.name, seq, exc)
            return ProbeFailure(seq, FailureReason.SEND_ERROR, str(exc))

        deadline = start + time_to_live
        while True:
            try:
                datagram, peer = self.transport.receive_with_deadline(deadline)
            except TransportTimeout:
                return ProbeFailure(seq, FailureReason.TIMEOUT, f"no reply within {time_to_live:g}s")
            except TransportIOError as exc:
                logger.error("Receive failed host=%s sequence=%d: %s", host.name, seq, exc)
                return ProbeFailure(seq, FailureReason.RECEIVE_ERROR, str(exc))

            try:
                message = parse_icmp_datagram(datagram)
            except MalformedPacketError as exc:
                logger.warning("Unable to parse ICMP message from %s: %s", peer, exc)
                continue

            if peer != host.address:
                logger.debug("Discarding packet from %s while waiting on %s (sequence=%d)", peer, host.address, seq)
                continue

            if isinstance(message, EchoReply):
                if message.sequence == seq:
                    return ProbeSuccess(seq, (self._clock() - start) * 1e3)
                logger.debug(
                    "Discarding echo reply from %s with sequence=%d (waiting on %d)", peer, message.sequence, seq
                )
            elif isinstance(message, OtherMessage):
                logger.debug(
                    "Discarding ICMP type=%d code=%d from %s (sequence=%d)", message.type, message.code, peer, seq
                )
