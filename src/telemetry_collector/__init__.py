"""
Telemetry Collector - Python Package

Polls the public Substrate telemetry feed and exports one flat CSV row per
node: a fixed-name latest snapshot plus a timestamped archive per cycle.

Usage:
    from telemetry_collector import CollectorConfig, run_cycle

    result = run_cycle(CollectorConfig.from_env())
    print(result.write.latest_path)
"""

__version__ = "0.1.0"

# Public API
from .collector import CycleResult, collect_nodes, run_cycle
from .config import ChainGenesis, CollectorConfig
from .errors import (
    CollectorError,
    EmptyFeedError,
    EmptyRowsError,
    FeedProtocolError,
    FeedUnavailableError,
)
from .feed import FeedClient, FeedState
from .flatten import ROW_FIELDS, node_to_row
from .models import NodeRecord
from .writer import write_csv

__all__ = [
    "CycleResult",
    "collect_nodes",
    "run_cycle",
    "ChainGenesis",
    "CollectorConfig",
    "CollectorError",
    "EmptyFeedError",
    "EmptyRowsError",
    "FeedProtocolError",
    "FeedUnavailableError",
    "FeedClient",
    "FeedState",
    "ROW_FIELDS",
    "node_to_row",
    "NodeRecord",
    "write_csv",
]
