#!/usr/bin/env python3
"""
Products Refresh Script

This script pulls every product page on each configured network, enriches it from the
token_lists/protocols_list tables and writes the per-network and combined
snapshots.

Designed to be run via cron.

Cron example:
    */5 * * * * cd /opt/defi-dashboard && venv/bin/python scripts/refresh_products.py >> logs/products_refresh.log 2>&1
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


def refresh_products():
    """Run one products refresh cycle and return a process exit code."""
    logger.info("=" * 60)
    logger.info("Starting products refresh")
    logger.info("=" * 60)

    pipeline = None
    try:
        pipeline = RefreshPipeline()
        result = pipeline.refresh_products()
        logger.info("Products refresh complete: %s", result)
        return 0
    except Exception as exc:
        logger.error("Products refresh failed: %s", exc, exc_info=True)
        return 1
    finally:
        if pipeline:
            pipeline.close()


def main():
    exit_code = refresh_products()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
