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
Command-line interface for PingViz.

This module contains the main entry point: it loads the configuration,
resolves the host list, opens the shared ICMP transport, starts one
dispatcher per host and waits for a coordinated shutdown.
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Sequence

from pingviz import __version__
from pingviz.config import load_config, parse_duration
from pingviz.core import build_monitored_hosts
from pingviz.dispatcher import HostDispatcher
from pingviz.pinger import ProbeEngine
from pingviz.reporter import MetricsReporter, connect_statsd
from pingviz.shutdown import ShutdownCoordinator
from pingviz.transport import LISTEN_ADDRESS, IcmpTransport, TransportOpenError

logger = logging.getLogger(__name__)


def _configure_logging(log_level: str, log_file: Optional[str]) -> None:
    """Configure logging handlers for CLI execution."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(os.path.expanduser(log_file), encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _apply_args_to_config(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    """
    Overlay explicitly given CLI options onto the loaded configuration.

    Args:
        args: Namespace returned by ``argparse.ArgumentParser.parse_args()``.
        config: Configuration dict with defaults already applied.
    """
    if args.ttl is not None:
        config["ttl"] = args.ttl
    if args.sleep is not None:
        config["sleep"] = args.sleep
    if args.log_level is not None:
        config["log"] = args.log_level
    if args.report_host is not None:
        config["report"]["host"] = args.report_host


def _duration_arg(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def handle_options(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments and load the configuration file."""
    parser = argparse.ArgumentParser(
        description="PingViz - Report ICMP latency for configured hosts to statsd",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help="Config file path (default: pingviz.{yaml,yml,conf,ini} in /etc, ~/.config, or .)",
    )
    parser.add_argument(
        "-t",
        "--ttl",
        type=_duration_arg,
        default=None,
        help="Time to wait for a reply before counting a ping as dropped, e.g. 1s or 500ms (default: 1s)",
    )
    parser.add_argument(
        "-s",
        "--sleep",
        type=_duration_arg,
        default=None,
        help="Interval between pings to the same host (default: 2s)",
    )
    parser.add_argument(
        "-r",
        "--report-host",
        type=str,
        default=None,
        help="statsd address host[:port] (overrides report.host)",
    )
    parser.add_argument(
        "-l",
        "--listen",
        type=str,
        default=LISTEN_ADDRESS,
        help=f"Local address for the ICMP socket (default: {LISTEN_ADDRESS})",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: log setting from config, else INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Optional log file path for persistent logging",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as exc:
        parser.error(str(exc))

    _apply_args_to_config(args, config)
    if not config["report"]["host"]:
        parser.error("No statsd host configured. Set report.host or use --report-host.")
    args.settings = config
    return args


def run(args: argparse.Namespace) -> int:
    """Run PingViz with parsed arguments; returns the process exit status."""
    config = args.settings
    _configure_logging(str(config["log"]), getattr(args, "log_file", None))
    logger.info("Starting up PingViz loglevel=%s", str(config["log"]).upper())

    try:
        hosts = build_monitored_hosts(config)
    except ValueError as exc:
        logger.error("%s", exc)
        return 1
    if not hosts:
        logger.error("No resolvable hosts configured; nothing to ping.")
        return 1

    try:
        transport = IcmpTransport.open(args.listen)
    except TransportOpenError as exc:
        logger.error("%s", exc)
        return 1

    report_host = config["report"]["host"]

    def reporter_factory() -> MetricsReporter:
        return MetricsReporter(connect_statsd(report_host))

    with transport:
        engine = ProbeEngine(transport)
        coordinator = ShutdownCoordinator()
        coordinator.install_signal_handlers()
        for host in hosts:
            dispatcher = HostDispatcher(host, engine, coordinator.stop_event, reporter_factory)
            coordinator.register(dispatcher)
            dispatcher.start()
        logger.info(
            "Pinging %d host(s) with ttl=%gs sleep=%gs reporting to %s",
            len(hosts),
            config["ttl"],
            config["sleep"],
            report_host,
        )
        try:
            coordinator.wait()
        except KeyboardInterrupt:
            coordinator.request_stop()
            coordinator.wait()

    logger.info("PingViz stopped")
    return 0


def main() -> None:
    """Main entrypoint for the CLI - parses arguments and runs the application."""
    args = handle_options()
    sys.exit(run(args))
