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
Metrics reporting for PingViz.

Probe outcomes become statsd samples: a successful probe records a timing
sample (milliseconds) under the host's success metric, every failure kind
increments the host's failure counter.
"""

import logging
from typing import Optional, Protocol, Tuple

from statsd import StatsClient

from pingviz.models import MonitoredHost, ProbeOutcome, ProbeSuccess

logger = logging.getLogger(__name__)

DEFAULT_STATSD_PORT = 8125


class MetricsConnectError(RuntimeError):
    """Raised when the metrics transport cannot be set up."""


class MetricsClient(Protocol):
    """Minimal metrics transport interface consumed by the reporter."""

    def increment_counter(self, name: str) -> None: ...

    def record_timing(self, name: str, milliseconds: float) -> None: ...


class StatsdMetricsClient:
    """MetricsClient backed by a statsd UDP client."""

    def __init__(self, client: StatsClient, address: str = "") -> None:
        self._client = client
        self.address = address

    def increment_counter(self, name: str) -> None:
        self._client.incr(name)

    def record_timing(self, name: str, milliseconds: float) -> None:
        self._client.timing(name, milliseconds)

    def close(self) -> None:
        self._client.close()


def parse_statsd_address(address: str) -> Tuple[str, int]:
    """
    Split a ``host[:port]`` statsd address.

    Raises:
        ValueError: If the address is empty or the port is not a valid integer
    """
    address = (address or "").strip()
    if not address:
        raise ValueError("statsd address is empty")
    host, sep, port_text = address.rpartition(":")
    if not sep:
        return address, DEFAULT_STATSD_PORT
    if not host:
        raise ValueError(f"statsd address '{address}' has no host")
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"statsd address '{address}' has an invalid port") from exc
    if not 0 < port < 65536:
        raise ValueError(f"statsd port {port} out of range")
    return host, port


def connect_statsd(address: str, prefix: Optional[str] = None) -> StatsdMetricsClient:
    """
    Create a statsd client for ``address``.

    Raises:
        MetricsConnectError: If the address is invalid or cannot be resolved
    """
    try:
        host, port = parse_statsd_address(address)
        client = StatsClient(host=host, port=port, prefix=prefix)
    except (ValueError, OSError) as exc:
        raise MetricsConnectError(f"Unable to connect to statsd host {address!r}: {exc}") from exc
    logger.debug("Connected to statsd host=%s port=%d", host, port)
    return StatsdMetricsClient(client, address)


class MetricsReporter:
    """Translates probe outcomes into metric emissions."""

    def __init__(self, client: MetricsClient) -> None:
        self.client = client

    def report(self, host: MonitoredHost, outcome: ProbeOutcome) -> None:
        if isinstance(outcome, ProbeSuccess):
            self.client.record_timing(host.success_metric, outcome.duration_ms)
        else:
            self.client.increment_counter(host.failure_metric)

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            close()
