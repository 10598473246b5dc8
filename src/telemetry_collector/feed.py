"""
Telemetry Collector - Feed Client

Websocket client for the public Substrate telemetry feed.

The feed pushes JSON frames of the form [action, payload, action, payload, ...].
After "subscribe:<genesis hash>" it sends one AddedNode per known node and then
a stream of incremental updates. FeedState folds those messages into a node
table; FeedClient owns the connection and reads the table after a warm-up.
"""

import asyncio
import json
import logging
import time
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from .config import DEFAULT_FEED_URL, DEFAULT_WARMUP_SECONDS
from .errors import FeedProtocolError, FeedUnavailableError
from .models import (
    BlockInfo,
    Hardware,
    IoStats,
    Location,
    NetworkInfo,
    NodeRecord,
    SystemInfo,
)

logger = logging.getLogger(__name__)

# Node details layout below matches this feed protocol version
FEED_VERSION = "32"


class Actions(IntEnum):
    """Feed message action codes."""

    FEED_VERSION = 0
    BEST_BLOCK = 1
    BEST_FINALIZED = 2
    ADDED_NODE = 3
    REMOVED_NODE = 4
    LOCATED_NODE = 5
    IMPORTED_BLOCK = 6
    FINALIZED_BLOCK = 7
    NODE_STATS = 8
    NODE_HARDWARE = 9
    TIME_SYNC = 10
    ADDED_CHAIN = 11
    REMOVED_CHAIN = 12
    SUBSCRIBED_TO = 13
    UNSUBSCRIBED_FROM = 14
    PONG = 15
    AFG_FINALIZED = 16
    AFG_RECEIVED_PREVOTE = 17
    AFG_RECEIVED_PRECOMMIT = 18
    AFG_AUTHORITY_SET = 19
    STALE_NODE = 20
    NODE_IO = 21
    CHAIN_STATS_UPDATE = 22


def decode_frame(data: Any) -> List[Tuple[int, Any]]:
    """
    Split one feed frame into (action, payload) pairs.

    Args:
        data: Frame body as str or UTF-8 bytes

    Returns:
        List of (action code, payload) tuples in arrival order

    Raises:
        FeedProtocolError: Frame is not a JSON array of action/payload pairs
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FeedProtocolError(f"Frame is not UTF-8: {e}") from e

    try:
        items = json.loads(data)
    except (TypeError, json.JSONDecodeError) as e:
        raise FeedProtocolError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(items, list) or len(items) % 2 != 0:
        raise FeedProtocolError("Frame is not an array of action/payload pairs")

    pairs = []
    for i in range(0, len(items), 2):
        action = items[i]
        if not isinstance(action, int) or isinstance(action, bool):
            raise FeedProtocolError(f"Invalid action code: {action!r}")
        pairs.append((action, items[i + 1]))
    return pairs


def _item(seq: Any, index: int) -> Any:
    """Positional field of a feed tuple, None when absent."""
    if isinstance(seq, (list, tuple)) and index < len(seq):
        return seq[index]
    return None


def _series(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _decode_system_info(target_os: Any, target_arch: Any, raw: Any) -> Optional[SystemInfo]:
    """Combine the build target from node details with the sysinfo dict."""
    if not isinstance(raw, dict):
        if target_os is None and target_arch is None:
            return None
        raw = {}
    return SystemInfo(
        target_os=target_os,
        target_arch=target_arch,
        cpu=raw.get("cpu"),
        core_count=raw.get("core_count"),
        memory=raw.get("memory"),
        linux_distro=raw.get("linux_distro"),
        linux_kernel=raw.get("linux_kernel"),
        is_virtual_machine=raw.get("is_virtual_machine"),
    )


def _decode_hardware(raw: Any) -> Optional[Hardware]:
    if not isinstance(raw, (list, tuple)):
        return None
    return Hardware(
        upload=_series(_item(raw, 0)),
        download=_series(_item(raw, 1)),
        chart_stamps=_series(_item(raw, 2)),
    )


def _decode_io(raw: Any) -> Optional[IoStats]:
    if not isinstance(raw, (list, tuple)):
        return None
    return IoStats(state_cache_size=_series(_item(raw, 0)))


def _decode_location(raw: Any) -> Optional[Location]:
    if not isinstance(raw, (list, tuple)):
        return None
    return Location(latitude=_item(raw, 0), longitude=_item(raw, 1), city=_item(raw, 2))


def _apply_block_details(block: BlockInfo, raw: Any):
    # [height, hash, block_time, block_timestamp, propagation_time]
    block.height = _item(raw, 0)
    block.hash = _item(raw, 1)
    block.block_time = _item(raw, 2)
    block.block_timestamp = _item(raw, 3)
    block.propagation_time = _item(raw, 4)


def _now_ms() -> int:
    return int(time.time() * 1000)


class FeedState:
    """
    Node table built from feed messages.

    Unknown actions are ignored. A payload that cannot be decoded is logged
    and dropped; it never aborts the collection.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        """
        Args:
            clock: Returns the current time in ms since epoch (stamps updated_at)
        """
        self._nodes: Dict[Any, NodeRecord] = {}
        self._clock = clock or _now_ms
        self.feed_version: Optional[int] = None
        self.subscribed_to: Optional[str] = None
        self._handlers = {
            Actions.FEED_VERSION: self._on_feed_version,
            Actions.ADDED_NODE: self._on_added_node,
            Actions.REMOVED_NODE: self._on_removed_node,
            Actions.LOCATED_NODE: self._on_located_node,
            Actions.IMPORTED_BLOCK: self._on_imported_block,
            Actions.FINALIZED_BLOCK: self._on_finalized_block,
            Actions.NODE_STATS: self._on_node_stats,
            Actions.NODE_HARDWARE: self._on_node_hardware,
            Actions.SUBSCRIBED_TO: self._on_subscribed_to,
            Actions.STALE_NODE: self._on_stale_node,
            Actions.NODE_IO: self._on_node_io,
        }

    def __len__(self) -> int:
        return len(self._nodes)

    def nodes(self) -> List[NodeRecord]:
        """Current node table, in the order nodes were added."""
        return list(self._nodes.values())

    def apply(self, action: int, payload: Any):
        """
        Apply one feed message to the node table.

        Raises:
            FeedProtocolError: Feed announced an unsupported protocol version
        """
        handler = self._handlers.get(action)
        if handler is None:
            return
        try:
            handler(payload)
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as e:
            logger.warning(f"Skipping malformed {Actions(action).name} payload: {e}")

    def _node(self, node_id: Any) -> Optional[NodeRecord]:
        node = self._nodes.get(node_id)
        if node is None:
            logger.debug(f"Update for unknown node {node_id}, ignoring")
            return None
        node.updated_at = self._clock()
        return node

    def _on_feed_version(self, payload):
        self.feed_version = payload
        if str(payload) != FEED_VERSION:
            raise FeedProtocolError(
                f"Unsupported feed version {payload!r}, expected {FEED_VERSION}"
            )

    def _on_subscribed_to(self, payload):
        self.subscribed_to = payload
        logger.info(f"Subscribed to chain {payload}")

    def _on_added_node(self, payload):
        # [id, details, stats, io, hardware, block_details, location, startup_time]
        node_id = payload[0]
        details = payload[1]
        if not isinstance(details, (list, tuple)):
            raise ValueError(f"node {node_id} has no details")
        stats = _item(payload, 2)

        block = BlockInfo()
        block_details = _item(payload, 5)
        if isinstance(block_details, (list, tuple)):
            _apply_block_details(block, block_details)

        # details: [name, implementation, version, validator, network_id,
        #           target_os, target_arch, target_env, ip, sysinfo, hwbench]
        self._nodes[node_id] = NodeRecord(
            id=node_id,
            name=_item(details, 0),
            implementation=_item(details, 1),
            version=_item(details, 2),
            validator=bool(_item(details, 3)),
            stale=False,
            startup_time=_item(payload, 7),
            updated_at=self._clock(),
            transaction_count=_item(stats, 1),
            system_info=_decode_system_info(
                _item(details, 5), _item(details, 6), _item(details, 9)
            ),
            hardware=_decode_hardware(_item(payload, 4)),
            io=_decode_io(_item(payload, 3)),
            block=block if isinstance(block_details, (list, tuple)) else None,
            network_info=NetworkInfo(
                peer_count=_item(stats, 0),
                peer_id=_item(details, 4),
                ip=_item(details, 8),
            ),
            location=_decode_location(_item(payload, 6)),
        )

    def _on_removed_node(self, payload):
        self._nodes.pop(payload, None)

    def _on_located_node(self, payload):
        # [id, lat, lon, city]
        node = self._node(payload[0])
        if node is not None:
            node.location = Location(
                latitude=payload[1], longitude=payload[2], city=_item(payload, 3)
            )

    def _on_imported_block(self, payload):
        # [id, block_details]
        node = self._node(payload[0])
        if node is None:
            return
        if node.block is None:
            node.block = BlockInfo()
        _apply_block_details(node.block, payload[1])
        node.stale = False

    def _on_finalized_block(self, payload):
        # [id, height, hash]
        node = self._node(payload[0])
        if node is None:
            return
        if node.block is None:
            node.block = BlockInfo()
        node.block.finalized = payload[1]
        node.block.finalized_hash = payload[2]

    def _on_node_stats(self, payload):
        # [id, [peers, txcount]]
        node = self._node(payload[0])
        if node is None:
            return
        stats = payload[1]
        if node.network_info is None:
            node.network_info = NetworkInfo()
        node.network_info.peer_count = _item(stats, 0)
        node.transaction_count = _item(stats, 1)

    def _on_node_hardware(self, payload):
        node = self._node(payload[0])
        if node is not None:
            node.hardware = _decode_hardware(payload[1])

    def _on_node_io(self, payload):
        node = self._node(payload[0])
        if node is not None:
            node.io = _decode_io(payload[1])

    def _on_stale_node(self, payload):
        node = self._node(payload)
        if node is not None:
            node.stale = True


class FeedClient:
    """
    Scoped connection to the telemetry feed for one chain.

    Usage:
        with FeedClient(ChainGenesis.POLKADOT.value) as client:
            nodes = client.get_nodes()

    The websocket runs on a private event loop so callers stay synchronous.
    The connection is released on every exit path of the with-block.
    """

    def __init__(
        self,
        chain: str,
        url: str = DEFAULT_FEED_URL,
        warmup_seconds: float = DEFAULT_WARMUP_SECONDS,
        session_factory: Optional[Callable[[], Any]] = None,
        state: Optional[FeedState] = None,
    ):
        """
        Initialize feed client.

        Args:
            chain: Genesis hash of the chain to subscribe to
            url: Feed websocket URL
            warmup_seconds: How long get_nodes() receives updates before reading
            session_factory: Builds the aiohttp session (default: aiohttp.ClientSession)
            state: Node table to fill (default: a fresh FeedState)
        """
        self.chain = chain
        self.url = url
        self.warmup_seconds = warmup_seconds
        self.state = state or FeedState()
        self._session_factory = session_factory or aiohttp.ClientSession
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._session = None
        self._ws = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def connect(self) -> "FeedClient":
        """
        Open the websocket and subscribe to the chain.

        Raises:
            FeedUnavailableError: Feed is unreachable
        """
        if self._ws is not None:
            return self

        self._loop = asyncio.new_event_loop()
        try:
            self._loop.run_until_complete(self._connect())
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Feed unavailable at {self.url}: {e}")
            self.close()
            raise FeedUnavailableError(f"Cannot reach telemetry feed at {self.url}") from e

        logger.info(f"Connected to telemetry feed: {self.url}")
        return self

    async def _connect(self):
        self._session = self._session_factory()
        # initial node dump can exceed aiohttp's default frame limit
        self._ws = await self._session.ws_connect(self.url, max_msg_size=0)
        await self._ws.send_str(f"subscribe:{self.chain}")

    def get_nodes(self) -> List[NodeRecord]:
        """
        Receive feed updates for the warm-up period, then return all nodes.

        Returns:
            List of NodeRecord, possibly empty

        Raises:
            FeedUnavailableError: Not connected, or the connection failed
            FeedProtocolError: Feed speaks an unsupported protocol version
        """
        if self._ws is None:
            raise FeedUnavailableError("Feed client is not connected")

        try:
            self._loop.run_until_complete(self._drain(self.warmup_seconds))
        except aiohttp.ClientError as e:
            raise FeedUnavailableError(f"Telemetry feed connection failed: {e}") from e

        nodes = self.state.nodes()
        logger.debug(f"Feed state holds {len(nodes)} nodes")
        return nodes

    async def _drain(self, seconds: float):
        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                msg = await self._ws.receive(timeout=remaining)
            except asyncio.TimeoutError:
                return

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self._handle_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise FeedUnavailableError(f"Telemetry feed error: {msg.data}")
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                logger.warning("Telemetry feed closed the connection during warm-up")
                return

    def _handle_frame(self, data: Any):
        try:
            messages = decode_frame(data)
        except FeedProtocolError as e:
            logger.warning(f"Skipping undecodable feed frame: {e}")
            return
        for action, payload in messages:
            self.state.apply(action, payload)

    def close(self):
        """Close websocket, session and event loop. Safe to call twice."""
        if self._loop is None:
            return
        try:
            self._loop.run_until_complete(self._close())
        finally:
            self._loop.close()
            self._loop = None
            self._ws = None
            self._session = None
            logger.debug("Feed connection closed")

    async def _close(self):
        try:
            if self._ws is not None:
                await self._ws.close()
        finally:
            if self._session is not None:
                await self._session.close()

    def __enter__(self):
        """Context manager entry."""
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False
