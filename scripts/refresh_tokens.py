#!/usr/bin/env python3
"""
Token list Refresh Script

This script pulls the token list (retrying gateway timeouts), upserts token deployments
into token_lists and writes the token_lists snapshot.

Designed to be run via cron.

Cron example:
    0 0 * * * cd /opt/defi-dashboard && venv/bin/python scripts/refresh_tokens.py >> logs/tokens_refresh.log 2>&1
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


def refresh_tokens():
    """Run one tokens refresh cycle and return a process exit code."""
    logger.info("=" * 60)
    logger.info("Starting tokens refresh")
    logger.info("=" * 60)

    pipeline = None
    try:
        pipeline = RefreshPipeline()
        result = pipeline.refresh_tokens()
        logger.info("Token list refresh complete: %s", result)
        return 0
    except Exception as exc:
        logger.error("Token list refresh failed: %s", exc, exc_info=True)
        return 1
    finally:
        if pipeline:
            pipeline.close()


def main():
    exit_code = refresh_tokens()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
