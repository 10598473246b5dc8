"""
Telemetry Collector - Row Flattening

Maps a NodeRecord onto a flat, fixed-schema row.

Each field group (identity, uptime, block, network, location, system,
hardware, io) declares its column names up front. The groups are checked
for overlapping names at import time, and every extractor returns exactly
its own columns, so every row carries the same keys in the same order no
matter which sub-records a node reported.
"""

from datetime import datetime
from numbers import Real
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from .errors import FieldCollisionError
from .models import (
    BlockInfo,
    Hardware,
    IoStats,
    Location,
    NetworkInfo,
    NodeRecord,
    SystemInfo,
)

BYTES_PER_GB = 1024 ** 3

IDENTITY_FIELDS = (
    "collected_at",
    "node_id",
    "name",
    "validator",
    "implementation",
    "version",
    "stale",
    "startup_time",
    "updated_at",
    "tx_count",
)

UPTIME_FIELDS = ("uptime_seconds", "uptime_hours")

BLOCK_FIELDS = (
    "block_height",
    "block_hash",
    "block_finalized_height",
    "block_finalized_hash",
    "block_propagation_ms",
)

NETWORK_FIELDS = ("peer_count", "peer_id", "ip")

LOCATION_FIELDS = ("latitude", "longitude", "city")

SYSTEM_FIELDS = (
    "os",
    "cpu_arch",
    "cpu_model",
    "cpu_cores",
    "memory_bytes",
    "memory_gb",
    "linux_distro",
    "linux_kernel",
    "is_virtual_machine",
)

HARDWARE_FIELDS = (
    "upload_bw_last",
    "upload_bw_avg",
    "upload_bw_max",
    "download_bw_last",
    "download_bw_avg",
    "download_bw_max",
)

IO_FIELDS = (
    "state_cache_size_last",
    "state_cache_size_avg",
    "state_cache_size_max",
)

FIELD_GROUPS: Tuple[Tuple[str, ...], ...] = (
    IDENTITY_FIELDS,
    UPTIME_FIELDS,
    BLOCK_FIELDS,
    NETWORK_FIELDS,
    LOCATION_FIELDS,
    SYSTEM_FIELDS,
    HARDWARE_FIELDS,
    IO_FIELDS,
)


def _check_disjoint(groups: Iterable[Sequence[str]]) -> Tuple[str, ...]:
    """Concatenate field groups, raising if any name appears twice."""
    ordered = []
    for group in groups:
        for name in group:
            if name in ordered:
                raise FieldCollisionError(f"Duplicate row field: {name}")
            ordered.append(name)
    return tuple(ordered)


ROW_FIELDS = _check_disjoint(FIELD_GROUPS)


def _nulls(fields: Sequence[str]) -> Dict[str, Any]:
    return {name: None for name in fields}


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a measurement
    return isinstance(value, Real) and not isinstance(value, bool)


def aggregate(values: Any) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """
    Reduce a chronological sample series to (last, avg, max).

    Args:
        values: List or tuple of numbers, oldest first

    Returns:
        (last, mean, maximum), or (None, None, None) if values is absent,
        not a list/tuple, empty, or holds anything non-numeric
    """
    if not isinstance(values, (list, tuple)) or not values:
        return None, None, None
    if not all(_is_number(v) for v in values):
        return None, None, None
    return values[-1], sum(values) / len(values), max(values)


def parse_system_info(system_info: Optional[SystemInfo]) -> Dict[str, Any]:
    """Extract OS, CPU, RAM, kernel and distro columns."""
    if system_info is None:
        return _nulls(SYSTEM_FIELDS)

    memory = system_info.memory
    memory_gb = memory / BYTES_PER_GB if _is_number(memory) else None

    return {
        "os": system_info.target_os,
        "cpu_arch": system_info.target_arch,
        "cpu_model": system_info.cpu,
        "cpu_cores": system_info.core_count,
        "memory_bytes": memory,
        "memory_gb": memory_gb,
        "linux_distro": system_info.linux_distro,
        "linux_kernel": system_info.linux_kernel,
        "is_virtual_machine": system_info.is_virtual_machine,
    }


def parse_hardware(hardware: Optional[Hardware]) -> Dict[str, Any]:
    """Extract aggregated upload/download bandwidth columns."""
    if hardware is None:
        return _nulls(HARDWARE_FIELDS)

    u_last, u_avg, u_max = aggregate(hardware.upload)
    d_last, d_avg, d_max = aggregate(hardware.download)
    return {
        "upload_bw_last": u_last,
        "upload_bw_avg": u_avg,
        "upload_bw_max": u_max,
        "download_bw_last": d_last,
        "download_bw_avg": d_avg,
        "download_bw_max": d_max,
    }


def parse_io(io: Optional[IoStats]) -> Dict[str, Any]:
    """Extract aggregated state cache columns."""
    if io is None:
        return _nulls(IO_FIELDS)

    last, avg, maximum = aggregate(io.state_cache_size)
    return {
        "state_cache_size_last": last,
        "state_cache_size_avg": avg,
        "state_cache_size_max": maximum,
    }


def parse_block(block: Optional[BlockInfo]) -> Dict[str, Any]:
    if block is None:
        return _nulls(BLOCK_FIELDS)
    return {
        "block_height": block.height,
        "block_hash": block.hash,
        "block_finalized_height": block.finalized,
        "block_finalized_hash": block.finalized_hash,
        "block_propagation_ms": block.propagation_time,
    }


def parse_network(network: Optional[NetworkInfo]) -> Dict[str, Any]:
    if network is None:
        return _nulls(NETWORK_FIELDS)
    return {
        "peer_count": network.peer_count,
        "peer_id": network.peer_id,
        "ip": network.ip,
    }


def parse_location(location: Optional[Location]) -> Dict[str, Any]:
    if location is None:
        return _nulls(LOCATION_FIELDS)
    return {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "city": location.city,
    }


def compute_uptime(startup_ms: Any, now: datetime) -> Optional[float]:
    """
    Calculate uptime in seconds from a startup timestamp.

    Args:
        startup_ms: Node startup time in ms since epoch (number or numeric string)
        now: Collection instant (timezone-aware)

    Returns:
        Seconds elapsed, or None if startup_ms is missing, not numeric,
        or lies in the future
    """
    if startup_ms is None or isinstance(startup_ms, bool):
        return None
    try:
        startup_ms = float(startup_ms)
    except (TypeError, ValueError):
        return None

    diff = now.timestamp() * 1000 - startup_ms
    return diff / 1000 if diff >= 0 else None


def uptime_hours(uptime_seconds: Optional[float]) -> Optional[float]:
    if uptime_seconds is None:
        return None
    return uptime_seconds / 3600


def _merge(*groups: Dict[str, Any]) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    for group in groups:
        for key, value in group.items():
            if key in row:
                raise FieldCollisionError(f"Duplicate row field: {key}")
            row[key] = value
    return row


def node_to_row(node: NodeRecord, now: datetime) -> Dict[str, Any]:
    """
    Convert one NodeRecord into a flat CSV row.

    Args:
        node: Node as decoded from the feed
        now: Collection instant shared by every row of the cycle

    Returns:
        Dictionary keyed by ROW_FIELDS, in that order
    """
    uptime = compute_uptime(node.startup_time, now)

    identity = {
        "collected_at": now.isoformat(),
        "node_id": node.id,
        "name": node.name,
        "validator": node.validator,
        "implementation": node.implementation,
        "version": node.version,
        "stale": node.stale,
        "startup_time": node.startup_time,
        "updated_at": node.updated_at,
        "tx_count": node.transaction_count,
    }
    uptime_group = {
        "uptime_seconds": uptime,
        "uptime_hours": uptime_hours(uptime),
    }

    return _merge(
        identity,
        uptime_group,
        parse_block(node.block),
        parse_network(node.network_info),
        parse_location(node.location),
        parse_system_info(node.system_info),
        parse_hardware(node.hardware),
        parse_io(node.io),
    )
