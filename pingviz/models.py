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
Data model shared by the probe engine, dispatchers and reporter.
"""

import enum
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class MonitoredHost:
    """A configured host, resolved and ready to be probed."""

    name: str
    address: str
    ttl: float
    interval: float
    success_metric: str
    failure_metric: str
    group: str = ""


@dataclass
class ProbeRequest:
    """One outstanding echo request, keyed by its sequence number."""

    sequence: int
    host: MonitoredHost
    sent_at: float

    @property
    def target(self) -> str:
        """Address the reply must originate from."""
        return self.host.address


class FailureReason(enum.Enum):
    """Why a probe did not produce a latency sample."""

    TIMEOUT = "timeout"
    SEND_ERROR = "send_error"
    RECEIVE_ERROR = "receive_error"


@dataclass(frozen=True)
class ProbeSuccess:
    sequence: int
    duration_ms: float


@dataclass(frozen=True)
class ProbeFailure:
    sequence: int
    reason: FailureReason
    detail: str = ""


ProbeOutcome = Union[ProbeSuccess, ProbeFailure]
