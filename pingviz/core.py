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
Core functionality for PingViz.

This module turns the loaded configuration into the list of MonitoredHost
entries handed to the dispatchers: it resolves every configured host to an
IPv4 address and derives the per-host metric names.
"""

import ipaddress
import logging
import socket
from typing import Any, Callable, Dict, List, Optional

from pingviz.config import metric_names
from pingviz.models import MonitoredHost

logger = logging.getLogger(__name__)

MAX_HOST_THREADS = 128  # Hard cap to avoid unbounded thread growth.


def resolve_address(host: str) -> Optional[str]:
    """Resolve a hostname or IPv4 literal to a dotted IPv4 address."""
    try:
        return str(ipaddress.IPv4Address(host))
    except ValueError:
        pass
    try:
        return socket.gethostbyname(host)
    except (socket.herror, socket.gaierror, OSError):
        return None


def build_monitored_hosts(
    config: Dict[str, Any],
    resolver: Callable[[str], Optional[str]] = resolve_address,
) -> List[MonitoredHost]:
    """
    Build MonitoredHost entries for every configured host.

    Hosts that fail to resolve are logged and left out.

    Args:
        config: Configuration dict as returned by load_config()
        resolver: Function mapping a host name to an IPv4 address or None

    Returns:
        List of MonitoredHost in configuration order

    Raises:
        ValueError: If more than MAX_HOST_THREADS hosts would be monitored
    """
    hosts: List[MonitoredHost] = []
    report = config.get("report") or {}
    for group, names in (config.get("hosts") or {}).items():
        for name in names:
            success_metric, failure_metric = metric_names(name, group, report)
            address = resolver(name)
            if address is None:
                logger.warning("Unable to resolve host %s; will not ping.", name)
                continue
            logger.debug(
                "Found host group=%s host=%s address=%s success_metric=%s failed_metric=%s",
                group,
                name,
                address,
                success_metric,
                failure_metric,
            )
            hosts.append(
                MonitoredHost(
                    name=name,
                    address=address,
                    ttl=config["ttl"],
                    interval=config["sleep"],
                    success_metric=success_metric,
                    failure_metric=failure_metric,
                    group=group,
                )
            )

    if len(hosts) > MAX_HOST_THREADS:
        raise ValueError(
            f"Host count exceeds maximum supported threads ({len(hosts)} > {MAX_HOST_THREADS}). Reduce the host list."
        )
    return hosts
