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
Coordinated shutdown for PingViz.

A single stop event is shared by every dispatcher; an interrupt sets it once
and the coordinator blocks until each registered dispatcher has acknowledged
that it stopped.
"""

import logging
import signal
import threading
import time
from typing import Any, Iterable, List, Optional

from pingviz.dispatcher import HostDispatcher

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)
WAIT_POLL_SECONDS = 0.2


class ShutdownCoordinator:
    """Broadcasts the stop signal and waits for every dispatcher to stop."""

    def __init__(self, stop_event: Optional[threading.Event] = None) -> None:
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self._dispatchers: List[HostDispatcher] = []
        self._lock = threading.Lock()

    @property
    def dispatchers(self) -> List[HostDispatcher]:
        with self._lock:
            return list(self._dispatchers)

    def register(self, dispatcher: HostDispatcher) -> None:
        with self._lock:
            self._dispatchers.append(dispatcher)

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("Shutdown requested; waiting for %d dispatcher(s)", len(self.dispatchers))
        self.stop_event.set()

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        logger.debug("Received signal %d", signum)
        self.request_stop()

    def install_signal_handlers(self, signals: Iterable[int] = DEFAULT_SIGNALS) -> None:
        """Route the given process signals to request_stop(). Main thread only."""
        for signum in signals:
            signal.signal(signum, self._handle_signal)

    def all_stopped(self) -> bool:
        return all(d.stopped.is_set() for d in self.dispatchers)

    def wait(self, timeout: Optional[float] = None, poll_interval: float = WAIT_POLL_SECONDS) -> bool:
        """
        Block until every registered dispatcher has stopped.

        Polls in short steps so signal handlers keep running on the main thread.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)
            poll_interval: Seconds between checks

        Returns:
            True if all dispatchers stopped, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.all_stopped():
            step = poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                step = min(step, remaining)
            pending = next((d for d in self.dispatchers if not d.stopped.is_set()), None)
            if pending is not None:
                pending.join(step)
        return True
