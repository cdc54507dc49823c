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
ICMP echo packet construction and classification for PingViz.

Packets are built and dissected with scapy. Datagrams read from a raw IPv4
socket include the IP header, so classification dissects an ``IP`` layer and
then inspects the ICMP message it carries:

  - EchoReply(identifier, sequence) for an echo reply (type 0)
  - OtherMessage(type, code) for any other ICMP message

Anything that is not a complete, checksum-valid IPv4/ICMP datagram raises
MalformedPacketError.
"""

import logging
import os
import struct
from dataclasses import dataclass
from typing import Union

logging.getLogger("scapy.runtime").setLevel(logging.ERROR)

from scapy.error import Scapy_Exception  # noqa: E402  # pylint: disable=wrong-import-position
from scapy.layers.inet import ICMP, IP  # noqa: E402  # pylint: disable=wrong-import-position
from scapy.packet import Raw  # noqa: E402  # pylint: disable=wrong-import-position
from scapy.utils import checksum  # noqa: E402  # pylint: disable=wrong-import-position

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
IPPROTO_ICMP = 1

DEFAULT_PAYLOAD = b"pingviz"

_IPV4_HEADER_MIN = 20
_ICMP_HEADER_SIZE = 8


class MalformedPacketError(ValueError):
    """Raised when a received datagram cannot be parsed as IPv4/ICMP."""


@dataclass(frozen=True)
class EchoReply:
    identifier: int
    sequence: int


@dataclass(frozen=True)
class OtherMessage:
    type: int
    code: int


IcmpMessage = Union[EchoReply, OtherMessage]


def process_identifier() -> int:
    """Return the ICMP identifier for this process (pid masked to 16 bits)."""
    return os.getpid() & 0xFFFF


def build_echo_request(identifier: int, sequence: int, payload: bytes = DEFAULT_PAYLOAD) -> bytes:
    """
    Build an ICMP echo request message (without IP header).

    Args:
        identifier: ICMP identifier, masked to 16 bits
        sequence: ICMP sequence number (0-65535)
        payload: Opaque data carried in the request

    Returns:
        The serialized ICMP message with a valid checksum

    Raises:
        ValueError: If sequence is out of range
    """
    if sequence < 0 or sequence > 0xFFFF:
        raise ValueError("sequence must be between 0 and 65535.")
    message = ICMP(type=ICMP_ECHO_REQUEST, code=0, id=identifier & 0xFFFF, seq=sequence) / Raw(load=payload)
    return bytes(message)


def parse_icmp_datagram(datagram: bytes) -> IcmpMessage:
    """
    Classify a raw IPv4 datagram carrying an ICMP message.

    Args:
        datagram: Bytes as returned by recvfrom() on a raw ICMP socket

    Returns:
        EchoReply or OtherMessage

    Raises:
        MalformedPacketError: If the datagram is truncated, not IPv4/ICMP,
            or fails the ICMP checksum
    """
    if len(datagram) < _IPV4_HEADER_MIN + _ICMP_HEADER_SIZE:
        raise MalformedPacketError(f"datagram too short ({len(datagram)} bytes)")

    version = datagram[0] >> 4
    header_len = (datagram[0] & 0x0F) * 4
    if version != 4 or header_len < _IPV4_HEADER_MIN:
        raise MalformedPacketError(f"not an IPv4 datagram (version={version}, header={header_len} bytes)")

    try:
        packet = IP(datagram)
    except (struct.error, IndexError, ValueError, Scapy_Exception) as exc:
        raise MalformedPacketError(f"unable to dissect datagram: {exc}") from exc

    if packet.proto != IPPROTO_ICMP:
        raise MalformedPacketError(f"not an ICMP datagram (proto={packet.proto})")

    total_len = min(packet.len, len(datagram)) if packet.len else len(datagram)
    icmp_bytes = datagram[header_len:total_len]
    if len(icmp_bytes) < _ICMP_HEADER_SIZE:
        raise MalformedPacketError("truncated ICMP message")
    if checksum(icmp_bytes) != 0:
        raise MalformedPacketError("bad ICMP checksum")
    if not packet.haslayer(ICMP):
        raise MalformedPacketError("no ICMP layer in datagram")

    message = packet[ICMP]
    if message.type == ICMP_ECHO_REPLY:
        return EchoReply(identifier=message.id, sequence=message.seq)
    return OtherMessage(type=message.type, code=message.code)
