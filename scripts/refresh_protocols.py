#!/usr/bin/env python3
"""
Protocol list Refresh Script

This script pulls the protocol list, upserts valid protocols into protocols_list and
writes the protocols_list snapshot.

Designed to be run via cron.

Cron example:
    10 0 * * * cd /opt/defi-dashboard && venv/bin/python scripts/refresh_protocols.py >> logs/protocols_refresh.log 2>&1
"""

import logging
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.collectors.pipeline import RefreshPipeline

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def refresh_protocols():
    """Run one protocols refresh cycle and return a process exit code."""
    logger.info("=" * 60)
    logger.info("Starting protocols refresh")
    logger.info("=" * 60)

    pipeline = None
    try:
        pipeline = RefreshPipeline()
        result = pipeline.refresh_protocols()
        logger.info("Protocol list refresh complete: %s", result)
        return 0
    except Exception as exc:
        logger.error("Protocol list refresh failed: %s", exc, exc_info=True)
        return 1
    finally:
        if pipeline:
            pipeline.close()


def main():
    exit_code = refresh_protocols()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
