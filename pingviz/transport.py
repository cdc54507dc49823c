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
# Review required for correctness, security, and licensing.

"""
Raw ICMP socket transport for PingViz.

The process owns exactly one IcmpTransport. It wraps an IPv4 raw socket
(``SOCK_RAW``/``IPPROTO_ICMP``), which requires root or CAP_NET_RAW.

Error contract:
  - TransportOpenError: the socket could not be opened (fatal at startup)
  - UnreachableError: the kernel accepted fewer bytes than the packet length
  - TransportIOError: any other socket fault on send or receive
  - TransportTimeout: no datagram arrived before the caller's deadline

The transport does not serialize access itself; the probe engine holds a
lock around each complete send/receive exchange.
"""

import logging
import socket
import time
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

LISTEN_ADDRESS = "0.0.0.0"
RECEIVE_BUFFER_SIZE = 1500


class TransportError(RuntimeError):
    """Base class for ICMP transport failures."""


class TransportOpenError(TransportError):
    """Raised when the raw ICMP socket cannot be opened."""


class UnreachableError(TransportError):
    """Raised when a send wrote a different number of bytes than requested."""

    def __init__(self, message: str, written: Optional[int] = None, expected: Optional[int] = None) -> None:
        super().__init__(message)
        self.written = written
        self.expected = expected


class TransportIOError(TransportError):
    """Raised on lower-level socket faults."""


class TransportTimeout(TransportError):
    """Raised when the receive deadline elapses."""


class IcmpTransport:
    """Single shared raw ICMP endpoint used for every send and receive."""

    def __init__(self, sock: Any) -> None:
        self._sock = sock
        self._closed = False

    @classmethod
    def open(cls, listen_address: str = LISTEN_ADDRESS) -> "IcmpTransport":
        """
        Open and bind the raw ICMP socket.

        Args:
            listen_address: Local IPv4 address to bind (default: 0.0.0.0)

        Returns:
            A ready IcmpTransport

        Raises:
            TransportOpenError: If the socket cannot be created or bound
        """
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
        except PermissionError as exc:
            raise TransportOpenError("Unable to listen for ICMP packets. Are you running as root?") from exc
        except OSError as exc:
            raise TransportOpenError(f"Unable to open raw ICMP socket: {exc}") from exc
        try:
            sock.bind((listen_address, 0))
        except OSError as exc:
            sock.close()
            raise TransportOpenError(f"Unable to bind raw ICMP socket to {listen_address}: {exc}") from exc
        logger.debug("Listening for ICMP packets on %s", listen_address)
        return cls(sock)

    def send(self, payload: bytes, address: str) -> int:
        """
        Send an ICMP message to ``address``.

        Returns:
            Number of bytes written

        Raises:
            UnreachableError: If the byte count does not match the payload length
            TransportIOError: On any other socket error
        """
        try:
            written = self._sock.sendto(payload, (address, 0))
        except OSError as exc:
            raise TransportIOError(f"Unable to send ICMP packet to {address}: {exc}") from exc
        if written != len(payload):
            raise UnreachableError(
                f"Packet size mismatch sending to {address}: wrote {written} of {len(payload)} bytes",
                written=written,
                expected=len(payload),
            )
        return written

    def receive_with_deadline(self, deadline: float, bufsize: int = RECEIVE_BUFFER_SIZE) -> Tuple[bytes, str]:
        """
        Block until a datagram arrives or ``deadline`` passes.

        Args:
            deadline: Absolute time.monotonic() value after which to give up
            bufsize: Maximum datagram size to read

        Returns:
            (datagram, peer_address)

        Raises:
            TransportTimeout: If the deadline has elapsed
            TransportIOError: On any other socket error
        """
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TransportTimeout("read deadline elapsed")
        try:
            self._sock.settimeout(remaining)
            data, peer = self._sock.recvfrom(bufsize)
        except socket.timeout as exc:
            raise TransportTimeout("read deadline elapsed") from exc
        except OSError as exc:
            raise TransportIOError(f"Unable to read ICMP packet: {exc}") from exc
        return data, peer[0]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "IcmpTransport":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
