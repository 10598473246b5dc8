"""
Run one telemetry collection cycle.

Usage:
    python -m telemetry_collector
    telemetry-collect

Configured entirely through environment variables (see CollectorConfig).
Exit codes: 0 success, 1 failed cycle, 2 invalid configuration.
"""

import sys

from .collector import run_cycle
from .config import CollectorConfig
from .errors import CollectorError
from .logger import configure_logging, log_error, logger


def main() -> int:
    config = CollectorConfig.from_env()
    configure_logging(config.log_level, config.log_format)

    is_valid, errors = config.validate()
    if not is_valid:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 2

    logger.debug(f"Loaded {config}")

    try:
        run_cycle(config)
    except CollectorError as e:
        log_error("cycle", type(e).__name__, str(e))
        return 1
    except OSError as e:
        log_error("write", type(e).__name__, str(e), exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
