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
Per-host dispatcher for PingViz.

Each MonitoredHost gets one HostDispatcher running on its own thread. The
dispatcher probes its host, reports the outcome, then waits for the
configured interval. The shared stop event is checked before every probe and
again by the engine once its lock is held, so a probe already on the wire
always completes (bounded by the host's ttl) and no new probe starts once
shutdown has been requested, even for dispatchers queued on the engine.
"""

import enum
import logging
import threading
from typing import Callable, Optional

from pingviz.models import MonitoredHost, ProbeOutcome, ProbeSuccess
from pingviz.pinger import ProbeEngine
from pingviz.reporter import MetricsConnectError, MetricsReporter

logger = logging.getLogger(__name__)


class DispatcherState(enum.Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class HostDispatcher:
    """Drives periodic probing of one host and emits a metric per outcome."""

    def __init__(
        self,
        host: MonitoredHost,
        engine: ProbeEngine,
        stop_event: threading.Event,
        reporter_factory: Callable[[], MetricsReporter],
    ) -> None:
        """
        Args:
            host: The host to probe
            engine: Shared probe engine
            stop_event: Shutdown signal broadcast to every dispatcher
            reporter_factory: Builds this dispatcher's MetricsReporter; may raise
                MetricsConnectError, which stops only this dispatcher
        """
        self.host = host
        self.engine = engine
        self.stop_event = stop_event
        self.reporter_factory = reporter_factory
        self.state = DispatcherState.RUNNING
        self.stopped = threading.Event()
        self.probe_count = 0
        self._thread: Optional[threading.Thread] = None

    def run(self) -> None:
        """Probe until the stop event is observed, then acknowledge."""
        logger.debug("Starting dispatcher host=%s address=%s", self.host.name, self.host.address)
        try:
            reporter = self.reporter_factory()
        except MetricsConnectError as exc:
            logger.error("Unable to connect to metrics transport for host=%s; not monitoring: %s", self.host.name, exc)
            self._acknowledge()
            return

        try:
            while True:
                if self.stop_event.is_set():
                    self.state = DispatcherState.STOPPING
                    break
                outcome = self.engine.probe(self.host, cancel=self.stop_event)
                if outcome is None:
                    # Stop arrived while queued behind another host's probe.
                    self.state = DispatcherState.STOPPING
                    break
                self.probe_count += 1
                self._log_outcome(outcome)
                reporter.report(self.host, outcome)
                self.stop_event.wait(self.host.interval)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.exception("Dispatcher for host=%s failed; no longer monitoring: %s", self.host.name, exc)
        finally:
            reporter.close()
            self._acknowledge()

    def _log_outcome(self, outcome: ProbeOutcome) -> None:
        if isinstance(outcome, ProbeSuccess):
            logger.debug(
                "Received ping host=%s sequence=%d duration=%.3fms",
                self.host.name,
                outcome.sequence,
                outcome.duration_ms,
            )
        else:
            logger.warning(
                "Dropped ping host=%s sequence=%d reason=%s %s",
                self.host.name,
                outcome.sequence,
                outcome.reason.value,
                outcome.detail,
            )

    def _acknowledge(self) -> None:
        self.state = DispatcherState.STOPPED
        logger.debug("Stopping dispatcher for %s", self.host.name)
        self.stopped.set()

    def start(self) -> threading.Thread:
        """Run the dispatcher on a daemon thread."""
        self._thread = threading.Thread(target=self.run, name=f"dispatcher-{self.host.name}", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the dispatcher to acknowledge; returns True once stopped."""
        return self.stopped.wait(timeout)
