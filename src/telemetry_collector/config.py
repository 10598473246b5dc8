"""
Telemetry Collector - Configuration

Configuration loading from environment variables. The collector has no
command-line flags; everything a deployment may want to change (output
directory, feed URL, chain, warm-up) is read here and passed into the core.
"""

import os
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


DEFAULT_FEED_URL = "wss://feed.telemetry.polkadot.io/feed/"
DEFAULT_CHAIN = "polkadot"
DEFAULT_WARMUP_SECONDS = 5.0
DEFAULT_FILE_PREFIX = "polkadot_nodes"
LOG_FORMATS = ("text", "json")


class ChainGenesis(str, Enum):
    """Genesis hashes of well-known chains, used to pick a feed subscription."""

    POLKADOT = "0x91b171bb158e2d3848fa23a9f1c25182fb8e20313b2c1eb49219da7a70ce90c3"
    KUSAMA = "0xb0a8d493285c2df73290dfb7e61f870f17b41801197a149ca93654499ea3dafe"
    WESTEND = "0xe143f23803ac50e8f6f8e62695d1ce9e4e1d68aa36c1cd2cfd15340213f3423e"


def resolve_chain(chain: str) -> Optional[str]:
    """
    Resolve a chain name or genesis hash to a genesis hash.

    Args:
        chain: Chain name (e.g. "polkadot", case-insensitive) or 0x-prefixed hash

    Returns:
        Lower-case genesis hash, or None if the value is neither
    """
    if not chain:
        return None
    value = chain.strip().lower()
    if value.startswith("0x"):
        digits = value[2:]
        if len(digits) == 64 and all(c in "0123456789abcdef" for c in digits):
            return value
        return None
    try:
        return ChainGenesis[value.upper()].value
    except KeyError:
        return None


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class CollectorConfig:
    """
    Configuration for one collection cycle.

    All configuration is loaded from environment variables; unset values
    fall back to the defaults the collector has always used.
    """

    # Directory receiving the latest and archive CSV files
    output_dir: Path

    # Feed endpoint and chain (name or genesis hash)
    feed_url: str = DEFAULT_FEED_URL
    chain: str = DEFAULT_CHAIN

    # Time spent receiving feed updates before the node table is read
    warmup_seconds: float = DEFAULT_WARMUP_SECONDS

    # CSV naming: <prefix>_latest.csv and <prefix>_<YYYYmmdd_HHMMSS>.csv
    file_prefix: str = DEFAULT_FILE_PREFIX

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "CollectorConfig":
        """
        Load configuration from environment variables.

        Environment variables:
            TELEMETRY_OUTPUT_DIR: Output directory (highest priority)
            POLKADOT_TELEMETRY_DIR: Output directory (legacy name)
            TELEMETRY_FEED_URL: Feed websocket URL
            TELEMETRY_CHAIN: Chain name (polkadot, kusama, westend) or genesis hash
            TELEMETRY_WARMUP_SECONDS: Feed warm-up before reading nodes (default: 5)
            TELEMETRY_FILE_PREFIX: CSV file name prefix (default: polkadot_nodes)
            TELEMETRY_LOG_LEVEL: Log level (default: INFO)
            TELEMETRY_LOG_FORMAT: text or json (default: text)

        Returns:
            CollectorConfig: Configuration instance
        """
        output_dir_str = (
            os.getenv("TELEMETRY_OUTPUT_DIR") or
            os.getenv("POLKADOT_TELEMETRY_DIR") or
            None
        )
        if output_dir_str:
            output_dir = Path(output_dir_str)
            logger.debug(f"Using output directory from env: {output_dir}")
        else:
            output_dir = cls._auto_detect_output_dir()
            logger.debug(f"Auto-detected output directory: {output_dir}")

        return cls(
            output_dir=output_dir,
            feed_url=os.getenv("TELEMETRY_FEED_URL", DEFAULT_FEED_URL),
            chain=os.getenv("TELEMETRY_CHAIN", DEFAULT_CHAIN),
            warmup_seconds=_float_from_env("TELEMETRY_WARMUP_SECONDS", DEFAULT_WARMUP_SECONDS),
            file_prefix=os.getenv("TELEMETRY_FILE_PREFIX", DEFAULT_FILE_PREFIX),
            log_level=os.getenv("TELEMETRY_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("TELEMETRY_LOG_FORMAT", "text").lower(),
        )

    @classmethod
    def _auto_detect_output_dir(cls) -> Path:
        """Use the historical install location if present, else the user's home."""
        legacy = Path("/root/polkadot_telemetry")
        if legacy.exists():
            return legacy
        return Path.home() / "polkadot_telemetry"

    @property
    def chain_genesis(self) -> Optional[str]:
        return resolve_chain(self.chain)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate configuration.

        Returns:
            Tuple of (is_valid: bool, errors: list[str])
        """
        errors = []

        if self.chain_genesis is None:
            names = ", ".join(c.name.lower() for c in ChainGenesis)
            errors.append(
                f"Unknown chain {self.chain!r}. Use one of: {names}, "
                f"or a 0x-prefixed genesis hash."
            )

        if not self.feed_url.startswith(("ws://", "wss://")):
            errors.append(f"TELEMETRY_FEED_URL must be a ws:// or wss:// URL, got {self.feed_url!r}")

        if self.warmup_seconds < 0:
            errors.append(f"TELEMETRY_WARMUP_SECONDS must be >= 0, got {self.warmup_seconds}")

        if not self.file_prefix or "/" in self.file_prefix or "\\" in self.file_prefix:
            errors.append(f"TELEMETRY_FILE_PREFIX must be a plain file name, got {self.file_prefix!r}")

        if self.log_format not in LOG_FORMATS:
            errors.append(f"TELEMETRY_LOG_FORMAT must be one of {LOG_FORMATS}, got {self.log_format!r}")

        if self.output_dir.exists() and not self.output_dir.is_dir():
            errors.append(f"Output path exists and is not a directory: {self.output_dir}")

        is_valid = len(errors) == 0
        return is_valid, errors

    def __str__(self) -> str:
        return (
            f"CollectorConfig("
            f"output_dir={self.output_dir}, "
            f"feed_url={self.feed_url}, "
            f"chain={self.chain}, "
            f"warmup_seconds={self.warmup_seconds}, "
            f"file_prefix={self.file_prefix})"
        )
