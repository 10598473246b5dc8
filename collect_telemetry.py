#!/usr/bin/env python3
"""
Polkadot Telemetry Collector - cron entry point

Collects node data from the public telemetry feed and exports two CSV files:
    polkadot_nodes_latest.csv
    polkadot_nodes_<timestamp>.csv

Usage:
    # Every 5 minutes from cron, appending output to a log
    */5 * * * * cd /opt/collector && python3 collect_telemetry.py >> collector.log 2>&1
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from telemetry_collector.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
