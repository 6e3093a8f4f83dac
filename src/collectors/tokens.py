"""Token list refresh"""
import logging
from typing import Dict, List, Optional

from src.adapters.okx.client import OkxClient
from src.collectors.snapshot_store import SnapshotStore
from src.collectors.stages import cycle_timestamp, refresh_lock, run_stage
from src.database.connection import DatabaseConnection
from src.database.models import TokenData, build_tokens_snapshot
from src.database.queries import MetadataQueries
from src.errors import UpstreamError

logger = logging.getLogger(__name__)

TOKENS_KEY = "token_lists"


def validate_tokens(raw_tokens: List) -> List[TokenData]:
    """Parse token entries, keeping only those with at least one valid deployment"""
    valid = []
    for raw in raw_tokens:
        outcome = run_stage("tokens", "validate", TokenData.from_dict, raw)
        if outcome.ok:
            valid.append(outcome.value)
    return valid


class TokensRefresher:
    """Fetch the token list (with retry), keep valid entries, upsert them and snapshot"""

    def __init__(self, client: OkxClient, queries: MetadataQueries, store: SnapshotStore,
                 db: Optional[DatabaseConnection] = None):
        self.client = client
        self.queries = queries
        self.store = store
        self.db = db

    def run(self) -> Dict:
        with refresh_lock(self.db, "tokens"):
            return self._run()

    def _run(self) -> Dict:
        logger.info("Starting token list update process...")
        timestamp = cycle_timestamp()

        raw_tokens = run_stage("tokens", "fetch", self.client.fetch_token_list).value
        logger.info("Received %s tokens from API", len(raw_tokens))
        if not raw_tokens:
            raise UpstreamError(None, '', "No tokens received from API")

        tokens = validate_tokens(raw_tokens)
        logger.info("Filtered %s valid tokens out of %s total tokens", len(tokens), len(raw_tokens))

        token_infos = [info for token in tokens for info in token.token_infos]
        saved, updated, failed = run_stage("tokens", "store", self.queries.upsert_tokens, token_infos).value
        run_stage("tokens", "save", self.store.save, TOKENS_KEY, build_tokens_snapshot(timestamp, tokens))

        result = {
            'timestamp': timestamp,
            'totalCount': len(tokens),
            'tokenInfoCount': len(token_infos),
            'invalidCount': len(raw_tokens) - len(tokens),
            'savedCount': saved,
            'updatedCount': updated,
            'failedCount': failed,
            'networkCounts': self.queries.network_counts('token_lists'),
        }
        logger.info("Token list updated successfully: %s", result)
        return result
