"""
Tests for telemetry_collector.feed module

Tests cover:
- decode_frame() splitting and rejection of malformed frames
- FeedState node table updates for each handled action
- Tolerance of malformed payloads and unknown nodes
- Rejection of unsupported feed protocol versions
- FeedClient connect/get_nodes/close against a mocked aiohttp session
- Guaranteed release of the connection on failure
"""

import sys
import json
import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import aiohttp
import pytest
from telemetry_collector.config import ChainGenesis
from telemetry_collector.errors import FeedProtocolError, FeedUnavailableError
from telemetry_collector.feed import (
    FEED_VERSION,
    Actions,
    FeedClient,
    FeedState,
    decode_frame,
)
from telemetry_collector.flatten import node_to_row

POLKADOT = ChainGenesis.POLKADOT.value


def added_node(node_id=1, name="node-1", validator="5Gxyz", sysinfo=None,
               hardware=None, io=None, location=None, startup="1700000000000",
               target_os="linux", target_arch="x86_64"):
    # Feed version 32 node details
    details = [
        name,
        "Parity Polkadot",
        "1.5.0",
        validator,
        "12D3KooWpeer",
        target_os,
        target_arch,
        "gnu",
        "10.0.0.1",
        sysinfo,
        None,
    ]
    stats = [25, 3]
    block = [18000000, "0xbest", 6000, 1700000100000, 210]
    return [node_id, details, stats, io, hardware, block, location, startup]


def frame(*pairs) -> str:
    flat = []
    for action, payload in pairs:
        flat.extend([int(action), payload])
    return json.dumps(flat)


def ws_message(data, kind=aiohttp.WSMsgType.TEXT):
    return SimpleNamespace(type=kind, data=data)


class TestDecodeFrame:
    """Test frame splitting."""

    def test_decode_pairs(self):
        data = frame((Actions.FEED_VERSION, 32), (Actions.STALE_NODE, 4))
        assert decode_frame(data) == [(0, 32), (20, 4)]

    def test_decode_bytes(self):
        assert decode_frame(b"[13, \"0xabc\"]") == [(13, "0xabc")]

    def test_decode_empty_array(self):
        assert decode_frame("[]") == []

    @pytest.mark.parametrize("data", [
        "not json",
        '{"action": 3}',
        "[3]",
        '["3", 1]',
        "[true, 1]",
        b"\xff\xfe",
    ])
    def test_decode_rejects_malformed(self, data):
        with pytest.raises(FeedProtocolError):
            decode_frame(data)


class TestFeedStateAddedNode:
    """Test node creation from AddedNode."""

    def test_added_node_full(self):
        state = FeedState(clock=lambda: 1234)
        sysinfo = {
            "cpu": "AMD EPYC",
            "memory": 34359738368,
            "core_count": 8,
            "linux_kernel": "6.1.0",
            "linux_distro": "Debian 12",
            "is_virtual_machine": True,
        }
        state.apply(Actions.ADDED_NODE, added_node(
            sysinfo=sysinfo,
            hardware=[[1.0, 2.0], [3.0], [1700000000000]],
            io=[[512, 1024]],
            location=[52.5, 13.4, "Berlin"],
        ))

        [node] = state.nodes()
        assert node.id == 1
        assert node.name == "node-1"
        assert node.implementation == "Parity Polkadot"
        assert node.version == "1.5.0"
        assert node.validator is True
        assert node.stale is False
        assert node.startup_time == "1700000000000"
        assert node.updated_at == 1234
        assert node.transaction_count == 3
        assert node.network_info.peer_count == 25
        assert node.network_info.peer_id == "12D3KooWpeer"
        assert node.network_info.ip == "10.0.0.1"
        assert node.block.height == 18000000
        assert node.block.hash == "0xbest"
        assert node.block.propagation_time == 210
        assert node.block.finalized is None
        assert node.system_info.cpu == "AMD EPYC"
        assert node.system_info.is_virtual_machine is True
        assert node.system_info.target_os == "linux"
        assert node.system_info.target_arch == "x86_64"
        assert node.system_info.memory == 34359738368
        assert node.system_info.core_count == 8
        assert node.system_info.linux_kernel == "6.1.0"
        assert node.system_info.linux_distro == "Debian 12"
        assert node.hardware.upload == [1.0, 2.0]
        assert node.hardware.download == [3.0]
        assert node.io.state_cache_size == [512, 1024]
        assert node.location.city == "Berlin"

    def test_added_node_minimal(self):
        """Test that missing optional parts become absent sub-records."""
        state = FeedState()
        state.apply(Actions.ADDED_NODE, added_node(validator=None, target_os=None, target_arch=None))

        [node] = state.nodes()
        assert node.validator is False
        assert node.system_info is None
        assert node.hardware is None
        assert node.io is None
        assert node.location is None

    def test_added_node_short_details(self):
        """Test that older feeds with fewer detail fields still decode."""
        state = FeedState()
        state.apply(Actions.ADDED_NODE, [5, ["old-node", "Substrate", "0.9"], [1, 0]])

        [node] = state.nodes()
        assert node.name == "old-node"
        assert node.validator is False
        assert node.network_info.peer_id is None
        assert node.block is None
        assert node.startup_time is None

    def test_empty_validator_address_is_not_validator(self):
        state = FeedState()
        state.apply(Actions.ADDED_NODE, added_node(validator=""))

        [node] = state.nodes()
        assert node.validator is False

    def test_build_target_without_sysinfo(self):
        """Test that target os/arch survive when the node sends no sysinfo."""
        state = FeedState()
        state.apply(Actions.ADDED_NODE, added_node(sysinfo=None))

        [node] = state.nodes()
        assert node.system_info.target_os == "linux"
        assert node.system_info.target_arch == "x86_64"
        assert node.system_info.cpu is None
        assert node.system_info.memory is None

    def test_added_node_flattens_to_row(self):
        """Test that a version 32 AddedNode fills the host and network columns."""
        state = FeedState()
        state.apply(Actions.ADDED_NODE, added_node(sysinfo={
            "cpu": "AMD EPYC",
            "memory": 34359738368,
            "core_count": 8,
            "linux_kernel": "6.1.0",
            "linux_distro": "Debian 12",
            "is_virtual_machine": False,
        }))

        [node] = state.nodes()
        row = node_to_row(node, datetime(2023, 11, 15, tzinfo=timezone.utc))
        assert row["os"] == "linux"
        assert row["cpu_model"] == "AMD EPYC"
        assert row["ip"] == "10.0.0.1"
        assert row["peer_id"] == "12D3KooWpeer"
        assert row["validator"] is True

    def test_malformed_added_node_is_skipped(self):
        """Test that one broken payload does not prevent later nodes."""
        state = FeedState()
        state.apply(Actions.ADDED_NODE, [9, "not-details"])
        state.apply(Actions.ADDED_NODE, None)
        state.apply(Actions.ADDED_NODE, added_node(node_id=2))

        assert [n.id for n in state.nodes()] == [2]


class TestFeedStateUpdates:
    """Test incremental update actions."""

    @pytest.fixture
    def state(self):
        clock = iter(range(1000, 2000))
        state = FeedState(clock=lambda: next(clock))
        state.apply(Actions.ADDED_NODE, added_node(node_id=1))
        return state

    def node(self, state):
        return state.nodes()[0]

    def test_removed_node(self, state):
        state.apply(Actions.REMOVED_NODE, 1)
        assert len(state) == 0

    def test_removed_unknown_node(self, state):
        state.apply(Actions.REMOVED_NODE, 99)
        assert len(state) == 1

    def test_located_node(self, state):
        state.apply(Actions.LOCATED_NODE, [1, 48.8, 2.3, "Paris"])
        loc = self.node(state).location
        assert (loc.latitude, loc.longitude, loc.city) == (48.8, 2.3, "Paris")

    def test_imported_block_clears_stale(self, state):
        state.apply(Actions.STALE_NODE, 1)
        assert self.node(state).stale is True

        state.apply(Actions.IMPORTED_BLOCK, [1, [18000005, "0xnew", 6000, 1700000200000, 90]])
        node = self.node(state)
        assert node.stale is False
        assert node.block.height == 18000005
        assert node.block.hash == "0xnew"
        assert node.block.propagation_time == 90

    def test_finalized_block(self, state):
        state.apply(Actions.FINALIZED_BLOCK, [1, 17999999, "0xfin"])
        block = self.node(state).block
        assert block.finalized == 17999999
        assert block.finalized_hash == "0xfin"
        assert block.height == 18000000

    def test_node_stats(self, state):
        state.apply(Actions.NODE_STATS, [1, [50, 7]])
        node = self.node(state)
        assert node.network_info.peer_count == 50
        assert node.transaction_count == 7

    def test_node_hardware(self, state):
        state.apply(Actions.NODE_HARDWARE, [1, [[10, 20, 30], [1], [0, 1, 2]]])
        hw = self.node(state).hardware
        assert hw.upload == [10, 20, 30]
        assert hw.download == [1]

    def test_node_io(self, state):
        state.apply(Actions.NODE_IO, [1, [[1, 2, 3]]])
        assert self.node(state).io.state_cache_size == [1, 2, 3]

    def test_update_stamps_updated_at(self, state):
        before = self.node(state).updated_at
        state.apply(Actions.NODE_STATS, [1, [50, 7]])
        assert self.node(state).updated_at > before

    def test_update_for_unknown_node_ignored(self, state):
        state.apply(Actions.NODE_STATS, [42, [1, 1]])
        assert [n.id for n in state.nodes()] == [1]

    def test_unhandled_actions_ignored(self, state):
        state.apply(Actions.BEST_BLOCK, [1, 2, 3])
        state.apply(Actions.TIME_SYNC, 1700000000000)
        state.apply(99, "future action")
        assert len(state) == 1

    def test_subscribed_to_and_version(self, state):
        state.apply(Actions.FEED_VERSION, 32)
        state.apply(Actions.SUBSCRIBED_TO, POLKADOT)
        assert state.feed_version == 32
        assert state.subscribed_to == POLKADOT

    @pytest.mark.parametrize("version", [31, "31", 33, None])
    def test_unsupported_feed_version_raises(self, state, version):
        with pytest.raises(FeedProtocolError):
            state.apply(Actions.FEED_VERSION, version)
        assert FEED_VERSION == "32"


def mock_session(messages=None, connect_error=None):
    """Build a fake aiohttp session whose websocket replays messages."""
    ws = MagicMock()
    ws.send_str = AsyncMock()
    ws.close = AsyncMock()
    ws.receive = AsyncMock(side_effect=list(messages or []) + [
        ws_message(None, aiohttp.WSMsgType.CLOSED)
    ])

    session = MagicMock()
    session.close = AsyncMock()
    if connect_error is not None:
        session.ws_connect = AsyncMock(side_effect=connect_error)
    else:
        session.ws_connect = AsyncMock(return_value=ws)
    return session, ws


class TestFeedClient:
    """Test websocket client lifecycle."""

    def test_connect_subscribes(self):
        session, ws = mock_session()
        client = FeedClient(POLKADOT, url="wss://feed.example/feed", session_factory=lambda: session)

        client.connect()
        try:
            assert client.connected
            session.ws_connect.assert_awaited_once()
            assert session.ws_connect.await_args.args[0] == "wss://feed.example/feed"
            ws.send_str.assert_awaited_once_with(f"subscribe:{POLKADOT}")
        finally:
            client.close()

    def test_get_nodes_applies_frames(self):
        messages = [
            ws_message(frame((Actions.FEED_VERSION, 32), (Actions.SUBSCRIBED_TO, POLKADOT))),
            ws_message(frame(
                (Actions.ADDED_NODE, added_node(node_id=1)),
                (Actions.ADDED_NODE, added_node(node_id=2, name="node-2")),
            )),
            ws_message("garbage"),
            ws_message(frame((Actions.NODE_STATS, [2, [9, 1]])).encode(), aiohttp.WSMsgType.BINARY),
        ]
        session, _ = mock_session(messages)

        with FeedClient(POLKADOT, warmup_seconds=5, session_factory=lambda: session) as client:
            nodes = client.get_nodes()

        assert [n.id for n in nodes] == [1, 2]
        assert nodes[1].network_info.peer_count == 9
        assert client.state.subscribed_to == POLKADOT

    def test_warmup_timeout_ends_collection(self):
        session, ws = mock_session()
        ws.receive = AsyncMock(side_effect=[
            ws_message(frame((Actions.ADDED_NODE, added_node()))),
            asyncio.TimeoutError(),
        ])

        with FeedClient(POLKADOT, warmup_seconds=5, session_factory=lambda: session) as client:
            nodes = client.get_nodes()

        assert len(nodes) == 1

    def test_zero_warmup_returns_immediately(self):
        session, ws = mock_session([ws_message(frame((Actions.ADDED_NODE, added_node())))])

        with FeedClient(POLKADOT, warmup_seconds=0, session_factory=lambda: session) as client:
            nodes = client.get_nodes()

        assert nodes == []
        ws.receive.assert_not_awaited()

    def test_connect_failure_raises_unavailable(self):
        session, _ = mock_session(connect_error=aiohttp.ClientConnectionError("refused"))
        client = FeedClient(POLKADOT, session_factory=lambda: session)

        with pytest.raises(FeedUnavailableError):
            client.connect()

        assert not client.connected
        session.close.assert_awaited_once()

    def test_error_frame_raises_and_releases(self):
        """Test that a websocket error propagates and the connection is still closed."""
        session, ws = mock_session()
        ws.receive = AsyncMock(return_value=ws_message(ConnectionResetError("reset"), aiohttp.WSMsgType.ERROR))

        with pytest.raises(FeedUnavailableError):
            with FeedClient(POLKADOT, warmup_seconds=5, session_factory=lambda: session) as client:
                client.get_nodes()

        ws.close.assert_awaited_once()
        session.close.assert_awaited_once()

    def test_unsupported_feed_version_raises_and_releases(self):
        """Test that a feed on another protocol version aborts collection."""
        messages = [
            ws_message(frame((Actions.FEED_VERSION, 31), (Actions.SUBSCRIBED_TO, POLKADOT))),
            ws_message(frame((Actions.ADDED_NODE, added_node()))),
        ]
        session, ws = mock_session(messages)

        with pytest.raises(FeedProtocolError):
            with FeedClient(POLKADOT, warmup_seconds=5, session_factory=lambda: session) as client:
                client.get_nodes()

        assert len(client.state) == 0
        ws.close.assert_awaited_once()
        session.close.assert_awaited_once()

    def test_get_nodes_requires_connection(self):
        client = FeedClient(POLKADOT)
        with pytest.raises(FeedUnavailableError):
            client.get_nodes()

    def test_close_is_idempotent(self):
        session, ws = mock_session()
        client = FeedClient(POLKADOT, session_factory=lambda: session).connect()

        client.close()
        client.close()

        ws.close.assert_awaited_once()
        session.close.assert_awaited_once()
