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
ICMP sequence correlation for PingViz.

This module provides a CorrelationTable that hands out ICMP sequence numbers
for outstanding echo requests. It ensures:
- Sequence numbers are drawn at random from the uint16 space
- No two outstanding requests share a sequence number
- A released sequence number is immediately available again
"""

import random
import threading
import time
from typing import Any, Dict, Optional

from pingviz.models import MonitoredHost, ProbeRequest

SEQUENCE_SPACE = 65536


class CorrelationTableFull(RuntimeError):
    """Raised when every sequence number is currently outstanding."""


class CorrelationTable:
    """
    Tracks in-flight probes keyed by ICMP sequence number.

    Uniqueness is only required among outstanding requests, so a sequence
    number is reused as soon as its probe has been resolved.
    """

    def __init__(self, sequence_space: int = SEQUENCE_SPACE, rng: Optional[Any] = None) -> None:
        """
        Initialize the CorrelationTable.

        Args:
            sequence_space: Number of distinct sequence numbers (default: 65536)
            rng: Object with a ``randrange`` method (default: a new random.Random)
        """
        self.sequence_space = sequence_space
        self._rng = rng if rng is not None else random.Random()
        self._lock = threading.Lock()
        self._outstanding: Dict[int, ProbeRequest] = {}

    def register(self, host: MonitoredHost) -> ProbeRequest:
        """
        Reserve a free sequence number for a probe against ``host``.

        Collisions with an outstanding sequence trigger a new random draw.

        Args:
            host: The host being probed

        Returns:
            The registered ProbeRequest

        Raises:
            CorrelationTableFull: If no sequence number is free
        """
        with self._lock:
            if len(self._outstanding) >= self.sequence_space:
                raise CorrelationTableFull(f"All {self.sequence_space} sequence numbers are outstanding")

            seq = self._rng.randrange(self.sequence_space)
            while seq in self._outstanding:
                seq = self._rng.randrange(self.sequence_space)

            request = ProbeRequest(sequence=seq, host=host, sent_at=time.time())
            self._outstanding[seq] = request
            return request

    def release(self, sequence: int) -> bool:
        """
        Release a sequence number once its probe is resolved.

        Args:
            sequence: The sequence number to release

        Returns:
            True if the sequence was outstanding, False otherwise
        """
        with self._lock:
            return self._outstanding.pop(sequence, None) is not None

    def __contains__(self, sequence: object) -> bool:
        with self._lock:
            return sequence in self._outstanding

    def __len__(self) -> int:
        with self._lock:
            return len(self._outstanding)
