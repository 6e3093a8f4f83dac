#!/usr/bin/env python3
"""
Snapshot Status Check Script

This script checks that every snapshot exists and was refreshed recently.
Logs warnings for missing or stale snapshots, which can be used for alerting.

Usage:
    python scripts/check_snapshot_status.py

Cron example (hourly):
    0 * * * * cd /opt/defi-dashboard && venv/bin/python scripts/check_snapshot_status.py >> logs/status.log 2>&1
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.collectors.products import ALL_PRODUCTS_KEY
from src.collectors.protocols import PROTOCOLS_KEY
from src.collectors.snapshot_store import SnapshotStore
from src.collectors.tokens import TOKENS_KEY
from src.settings import load_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Snapshot key -> maximum acceptable age
SNAPSHOTS_TO_CHECK = [
    (ALL_PRODUCTS_KEY, timedelta(minutes=30)),
    (PROTOCOLS_KEY, timedelta(days=2)),
    (TOKENS_KEY, timedelta(days=2)),
]


def check_snapshot_status():
    """Check that every snapshot exists and is fresh."""
    now = datetime.now(timezone.utc)
    logger.info("=" * 60)
    logger.info("Checking snapshot status at %s", now.isoformat())
    logger.info("=" * 60)

    try:
        store = SnapshotStore(load_settings().storage.data_dir)

        problems = []
        for key, max_age in SNAPSHOTS_TO_CHECK:
            snapshot = store.load(key)
            if not snapshot or not snapshot.get('timestamp'):
                logger.warning("WARNING: %s has no snapshot", key)
                problems.append(key)
                continue

            taken_at = datetime.strptime(snapshot['timestamp'], '%Y-%m-%dT%H:%M:%SZ')
            age = now - taken_at.replace(tzinfo=timezone.utc)
            if age > max_age:
                logger.warning("WARNING: %s is stale (age %s, limit %s)", key, age, max_age)
                problems.append(key)
            else:
                logger.info("OK: %s refreshed %s ago", key, age)

        logger.info("=" * 60)

        if problems:
            logger.error("ALERT: %d snapshot(s) missing or stale: %s",
                         len(problems), ', '.join(problems))
            return 1
        logger.info("All snapshots are fresh")
        return 0

    except Exception as e:
        logger.error("Status check failed: %s", e, exc_info=True)
        return 1


def main():
    exit_code = check_snapshot_status()
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
