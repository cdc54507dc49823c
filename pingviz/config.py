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
Config file support for PingViz.

The configuration is looked up as ``pingviz.{yaml,yml,conf,ini}`` in
``/etc``, ``~/.config`` and the current directory (first match wins), unless
an explicit path is given. Both YAML and INI formats are supported.

YAML layout::

    ttl: 1s
    sleep: 2s
    log: info
    report:
      host: statsd.example.com:8125
      prefix: "network."
      normalize: true
    hosts:
      core: [10.0.0.1, router.example.com]

INI layout uses a ``[default]`` section for top-level keys, a ``[report]``
section, and a ``[hosts]`` section mapping each group to a comma-separated
host list.

Priority order: CLI args > config file > hardcoded defaults
"""

import configparser
import copy
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

logger = logging.getLogger(__name__)

CONFIG_NAME = "pingviz"
CONFIG_EXTENSIONS = (".yaml", ".yml", ".conf", ".ini")
DEFAULT_SEARCH_DIRS = ("/etc", "~/.config", ".")

DEFAULT_CONFIG: Dict[str, Any] = {
    "ttl": 1.0,
    "sleep": 2.0,
    "log": "info",
    "report": {
        "host": None,
        "prefix": "",
        "postfix": "",
        "normalize": False,
        "normalize_char": "_",
        "successful": "response.",
        "failed": "failed.",
    },
    "hosts": {},
}

# Mapping of config field names to their expected types ("duration" is seconds as float)
_CONFIG_FIELD_TYPES: Dict[str, Any] = {
    "ttl": "duration",
    "sleep": "duration",
    "log": str,
}

_REPORT_FIELD_TYPES: Dict[str, Any] = {
    "host": str,
    "prefix": str,
    "postfix": str,
    "normalize": bool,
    "normalize_char": str,
    "successful": str,
    "failed": str,
}

_BOOL_TRUE_VALUES = frozenset(("true", "yes", "1", "on"))
_BOOL_FALSE_VALUES = frozenset(("false", "no", "0", "off"))

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def _parse_bool(value: str) -> bool:
    """Parse a boolean value from a string representation."""
    lower = value.lower()
    if lower in _BOOL_TRUE_VALUES:
        return True
    if lower in _BOOL_FALSE_VALUES:
        return False
    raise ValueError(f"Cannot parse '{value}' as a boolean. Use true/false, yes/no, 1/0, or on/off.")


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and Go-style duration strings such as ``1s``,
    ``250ms`` or ``1m30s``.

    Raises:
        ValueError: If the value cannot be parsed or is not positive
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos == 0 or pos != len(text):
                raise ValueError(f"Invalid duration {value!r}") from None
    if seconds <= 0:
        raise ValueError(f"Duration must be positive, got {value!r}")
    return seconds


def _coerce(key: str, raw_value: Any, field_types: Dict[str, Any]) -> Any:
    """Coerce a raw config value to the expected type for the given field name."""
    field_type = field_types[key]
    try:
        if field_type == "duration":
            return parse_duration(raw_value)
        if field_type is bool:
            if isinstance(raw_value, bool):
                return raw_value
            return _parse_bool(str(raw_value))
        return field_type(raw_value)
    except (ValueError, TypeError) as exc:
        expected = field_type if isinstance(field_type, str) else field_type.__name__
        raise ValueError(f"Invalid value for config field '{key}': expected {expected}, got {raw_value!r}") from exc


def _merge_section(
    target: Dict[str, Any],
    section: Dict[str, Any],
    field_types: Dict[str, Any],
    section_name: str,
    path: str,
) -> None:
    for key, value in section.items():
        key = str(key)
        if key not in field_types:
            logger.warning("Unknown config key '%s' in '%s' section of '%s'; ignoring.", key, section_name, path)
            continue
        if value is None:
            logger.warning("Config key '%s' has no value in '%s'; ignoring.", key, path)
            continue
        target[key] = _coerce(key, value, field_types)


def _split_hosts(value: str) -> List[str]:
    return [part.strip() for part in re.split(r"[,\s]+", value) if part.strip()]


def load_ini_config(path: str) -> Dict[str, Any]:
    """
    Load and parse an INI-format config file.

    Args:
        path: Path to the INI config file.

    Returns:
        Dictionary of config values (without defaults applied).

    Raises:
        ValueError: On parse errors or invalid field values.
    """
    parser = configparser.ConfigParser(allow_no_value=True, delimiters=("=", ":"), interpolation=None)
    # Group names end up in metric names; keep their case.
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    try:
        read_files = parser.read(path, encoding="utf-8")
    except configparser.Error as exc:
        raise ValueError(f"Invalid config file '{path}': {exc}") from exc

    if not read_files:
        raise ValueError(f"Config file '{path}' could not be read.")

    result: Dict[str, Any] = {}

    if parser.has_section("default"):
        _merge_section(result, dict(parser.items("default")), _CONFIG_FIELD_TYPES, "default", path)

    if parser.has_section("report"):
        report: Dict[str, Any] = {}
        _merge_section(report, dict(parser.items("report")), _REPORT_FIELD_TYPES, "report", path)
        result["report"] = report

    if parser.has_section("hosts"):
        groups: Dict[str, List[str]] = {}
        for group, value in parser.items("hosts"):
            hosts = _split_hosts(value or "")
            if hosts:
                groups[group] = hosts
            else:
                logger.warning("Host group '%s' in '%s' is empty; ignoring.", group, path)
        result["hosts"] = groups

    return result


def load_yaml_config(path: str) -> Dict[str, Any]:
    """
    Load and parse a YAML-format config file.

    Uses ``yaml.safe_load`` to prevent arbitrary code execution.

    Args:
        path: Path to the YAML config file.

    Returns:
        Dictionary of config values (without defaults applied).

    Raises:
        ValueError: On parse errors or invalid file content.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in config file '{path}': {exc}") from exc
    except OSError as exc:
        raise ValueError(f"Cannot read config file '{path}': {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must contain a YAML mapping at the top level, got {type(data).__name__}.")

    result: Dict[str, Any] = {}
    top_level = {k: v for k, v in data.items() if k not in ("report", "hosts")}
    _merge_section(result, top_level, _CONFIG_FIELD_TYPES, "top-level", path)

    report_section = data.get("report")
    if report_section is not None:
        if not isinstance(report_section, dict):
            raise ValueError(f"The 'report' section in '{path}' must be a YAML mapping.")
        report: Dict[str, Any] = {}
        _merge_section(report, report_section, _REPORT_FIELD_TYPES, "report", path)
        result["report"] = report

    hosts_section = data.get("hosts")
    if hosts_section is not None:
        if not isinstance(hosts_section, dict):
            raise ValueError(f"The 'hosts' section in '{path}' must map group names to host lists.")
        groups: Dict[str, List[str]] = {}
        for group, hosts in hosts_section.items():
            if isinstance(hosts, str):
                hosts = _split_hosts(hosts)
            if not isinstance(hosts, list):
                raise ValueError(f"Host group '{group}' in '{path}' must be a YAML list.")
            entries = [str(h).strip() for h in hosts if h is not None and str(h).strip()]
            if entries:
                groups[str(group)] = entries
            else:
                logger.warning("Host group '%s' in '%s' is empty; ignoring.", group, path)
        result["hosts"] = groups

    return result


def _is_yaml_file(path: str) -> bool:
    """
    Determine whether a config file uses YAML or INI format.

    ``.yaml``/``.yml`` and ``.ini`` extensions decide directly. Otherwise INI
    files begin with a ``[section]`` header on the first non-blank,
    non-comment line and anything else is treated as YAML.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in (".yaml", ".yml"):
        return True
    if ext == ".ini":
        return False
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for line in fh:
                stripped = line.strip()
                if stripped and not stripped.startswith(("#", ";")):
                    return not stripped.startswith("[")
    except OSError:
        pass
    return False


def find_config_file(search_dirs: Sequence[str] = DEFAULT_SEARCH_DIRS) -> Optional[str]:
    """Return the first ``pingviz.*`` config file found in ``search_dirs``."""
    for directory in search_dirs:
        base = os.path.expanduser(directory)
        for ext in CONFIG_EXTENSIONS:
            candidate = os.path.join(base, CONFIG_NAME + ext)
            if os.path.isfile(candidate):
                return candidate
    return None


def apply_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new config dict with hardcoded defaults filled in."""
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in config.items():
        if key == "report":
            merged["report"].update(value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None, search_dirs: Sequence[str] = DEFAULT_SEARCH_DIRS) -> Dict[str, Any]:
    """
    Load settings from a config file and apply defaults.

    Auto-detects whether the file uses YAML or INI format.

    Args:
        path: Path to the config file.  Searched in ``search_dirs`` when None.
        search_dirs: Directories searched for ``pingviz.*``.

    Returns:
        Dictionary of config values with defaults applied.

    Raises:
        ValueError: If no config file is found or it cannot be parsed.
    """
    if path is None:
        path = find_config_file(search_dirs)
        if path is None:
            raise ValueError("Unable to load configuration file.")
    elif not os.path.exists(path):
        raise ValueError(f"Config file '{path}' does not exist.")

    if _is_yaml_file(path):
        logger.debug("Loading YAML config from '%s'.", path)
        raw = load_yaml_config(path)
    else:
        logger.debug("Loading INI config from '%s'.", path)
        raw = load_ini_config(path)
    return apply_defaults(raw)


def metric_names(host: str, group: str, report: Dict[str, Any]) -> Tuple[str, str]:
    """
    Build the success and failure metric names for a host.

    Format: ``<prefix><infix><group>.<host><postfix>`` where the infix is
    ``report.successful`` or ``report.failed``. With ``report.normalize``
    periods in the host are replaced by ``report.normalize_char``.

    Returns:
        (success_metric, failure_metric)
    """
    settings = {**DEFAULT_CONFIG["report"], **report}
    if settings["normalize"]:
        host = host.replace(".", settings["normalize_char"])
    prefix = settings["prefix"] or ""
    postfix = settings["postfix"] or ""
    successful = f"{prefix}{settings['successful']}{group}.{host}{postfix}"
    failed = f"{prefix}{settings['failed']}{group}.{host}{postfix}"
    return successful, failed
