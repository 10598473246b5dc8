"""
Telemetry Collector - Cycle Orchestrator

One cycle: connect to the feed, collect nodes, flatten, write CSVs.
Strictly sequential; nothing is retried here. A failure propagates to the
caller and leaves the previous latest file in place.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import CollectorConfig
from .errors import EmptyFeedError
from .feed import FeedClient
from .flatten import node_to_row
from .logger import log_cycle_complete, track_duration
from .models import NodeRecord
from .writer import WriteResult, write_csv

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    node_count: int
    collected_at: datetime
    write: WriteResult


def collect_nodes(
    config: CollectorConfig,
    client_factory: Callable[..., FeedClient] = FeedClient,
) -> List[NodeRecord]:
    """Connects to telemetry feed and returns list of nodes."""
    with client_factory(
        chain=config.chain_genesis,
        url=config.feed_url,
        warmup_seconds=config.warmup_seconds,
    ) as client:
        return client.get_nodes()


def run_cycle(
    config: CollectorConfig,
    client_factory: Callable[..., FeedClient] = FeedClient,
    clock: Optional[Callable[[], datetime]] = None,
) -> CycleResult:
    """
    Run one collection cycle.

    Args:
        config: Collector configuration
        client_factory: Builds the feed client (keyword args: chain, url, warmup_seconds)
        clock: Returns the collection instant (default: datetime.now(timezone.utc))

    Returns:
        CycleResult with the node count and written files

    Raises:
        FeedUnavailableError: Feed could not be reached
        EmptyFeedError: Feed returned no nodes (no files are written)
        OSError: CSV files could not be written
    """
    with track_duration() as elapsed_ms:
        logger.info(f"Connecting to telemetry feed for chain {config.chain}...")
        nodes = collect_nodes(config, client_factory)
        logger.info(f"Nodes received: {len(nodes)}")

        if not nodes:
            raise EmptyFeedError(
                f"Telemetry feed returned no nodes for chain {config.chain}"
            )

        now = clock() if clock else datetime.now(timezone.utc)
        rows = [node_to_row(node, now) for node in nodes]
        result = write_csv(rows, config.output_dir, now, config.file_prefix)

        log_cycle_complete(
            len(rows),
            str(result.latest_path),
            str(result.archive_path),
            elapsed_ms(),
        )

    return CycleResult(node_count=len(nodes), collected_at=now, write=result)
