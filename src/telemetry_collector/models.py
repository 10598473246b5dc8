"""
Telemetry Collector - Data Models

Data classes representing one node as reported by the telemetry feed.

Every sub-record is optional on NodeRecord and every attribute of a
sub-record is optional too. Feed data is partial and heterogeneous
(older nodes never send hardware or sysinfo, location lookups may fail),
so an absent value is always None rather than a missing attribute.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Any


@dataclass
class SystemInfo:
    """Host information a node reports about itself."""

    target_os: Optional[str] = None
    target_arch: Optional[str] = None
    cpu: Optional[str] = None
    core_count: Optional[int] = None
    memory: Optional[int] = None  # bytes
    linux_distro: Optional[str] = None
    linux_kernel: Optional[str] = None
    is_virtual_machine: Optional[bool] = None


@dataclass
class Hardware:
    """Bandwidth samples, chronological, oldest first."""

    upload: List[float] = field(default_factory=list)
    download: List[float] = field(default_factory=list)
    chart_stamps: List[float] = field(default_factory=list)


@dataclass
class IoStats:
    """State cache size samples, chronological, oldest first."""

    state_cache_size: List[float] = field(default_factory=list)


@dataclass
class BlockInfo:
    """Best and finalized block as last seen for a node."""

    height: Optional[int] = None
    hash: Optional[str] = None
    finalized: Optional[int] = None
    finalized_hash: Optional[str] = None
    propagation_time: Optional[int] = None  # ms
    block_time: Optional[int] = None  # ms
    block_timestamp: Optional[int] = None  # ms since epoch


@dataclass
class NetworkInfo:
    peer_count: Optional[int] = None
    peer_id: Optional[str] = None
    ip: Optional[str] = None


@dataclass
class Location:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None


@dataclass
class NodeRecord:
    """
    Represents a single node for one collection cycle.

    Timestamps (startup_time, updated_at) are milliseconds since the epoch.
    startup_time is kept exactly as the feed delivered it, which may be a
    numeric string.
    """

    id: Optional[int] = None
    name: Optional[str] = None
    validator: Optional[bool] = None
    implementation: Optional[str] = None
    version: Optional[str] = None
    stale: Optional[bool] = None
    startup_time: Optional[Any] = None
    updated_at: Optional[int] = None
    transaction_count: Optional[int] = None

    system_info: Optional[SystemInfo] = None
    hardware: Optional[Hardware] = None
    io: Optional[IoStats] = None
    block: Optional[BlockInfo] = None
    network_info: Optional[NetworkInfo] = None
    location: Optional[Location] = None
