"""Protocol list refresh"""
import logging
from typing import Dict, List, Optional

from src.adapters.okx.client import OkxClient
from src.collectors.snapshot_store import SnapshotStore
from src.collectors.stages import cycle_timestamp, refresh_lock, run_stage
from src.database.connection import DatabaseConnection
from src.database.models import Protocol, build_protocols_snapshot
from src.database.queries import MetadataQueries
from src.errors import UpstreamError

logger = logging.getLogger(__name__)

PROTOCOLS_KEY = "protocols_list"


def validate_protocols(raw_protocols: List) -> List[Protocol]:
    """Parse protocol entries, dropping every one that fails validation"""
    valid = []
    for raw in raw_protocols:
        outcome = run_stage("protocols", "validate", Protocol.from_dict, raw)
        if outcome.ok:
            valid.append(outcome.value)
    return valid


class ProtocolsRefresher:
    """Fetch the protocol list, keep valid entries, upsert them and snapshot"""

    def __init__(self, client: OkxClient, queries: MetadataQueries, store: SnapshotStore,
                 db: Optional[DatabaseConnection] = None):
        self.client = client
        self.queries = queries
        self.store = store
        self.db = db

    def run(self) -> Dict:
        with refresh_lock(self.db, "protocols"):
            return self._run()

    def _run(self) -> Dict:
        logger.info("Starting protocol list update process...")
        timestamp = cycle_timestamp()

        raw_protocols = run_stage("protocols", "fetch", self.client.fetch_protocol_list).value
        logger.info("Received %s protocols from API", len(raw_protocols))
        if not raw_protocols:
            raise UpstreamError(None, '', "No protocols received from API")

        protocols = validate_protocols(raw_protocols)
        invalid = len(raw_protocols) - len(protocols)
        logger.info(
            "Filtered %s valid protocols out of %s total protocols", len(protocols), len(raw_protocols)
        )

        saved, updated, failed = run_stage("protocols", "store", self.queries.upsert_protocols, protocols).value
        run_stage(
            "protocols", "save",
            self.store.save, PROTOCOLS_KEY, build_protocols_snapshot(timestamp, protocols),
        )

        result = {
            'timestamp': timestamp,
            'totalCount': len(protocols),
            'invalidCount': invalid,
            'savedCount': saved,
            'updatedCount': updated,
            'failedCount': failed,
            'networkCounts': self.queries.network_counts('protocols_list'),
        }
        logger.info("Protocol list updated successfully: %s", result)
        return result
