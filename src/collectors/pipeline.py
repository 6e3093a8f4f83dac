"""Wires the refresh pipelines from settings"""
import logging
from typing import Dict, Optional

from src.adapters.okx.client import OkxClient
from src.adapters.okx.paginator import ProductPaginator
from src.collectors.enricher import ProductEnricher
from src.collectors.products import ProductsRefresher
from src.collectors.protocols import ProtocolsRefresher
from src.collectors.rate_limiter import RateLimiter
from src.collectors.snapshot_store import SnapshotStore
from src.collectors.tokens import TokensRefresher
from src.database.connection import DatabaseConnection
from src.database.queries import MetadataQueries
from src.settings import Settings, load_settings

logger = logging.getLogger(__name__)


class RefreshPipeline:
    """
    Owns the resources one process needs to run refreshes.

    The database pool, HTTP session and snapshot store are built once here
    and handed to each refresher; ``close()`` releases them.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 db: Optional[DatabaseConnection] = None,
                 client: Optional[OkxClient] = None,
                 store: Optional[SnapshotStore] = None,
                 queries: Optional[MetadataQueries] = None,
                 use_locks: bool = True):
        self.settings = settings or load_settings()
        self.db = db if db is not None else DatabaseConnection()
        self.client = client or OkxClient(self.settings.aggregator, self.settings.credentials)
        self.store = store or SnapshotStore(self.settings.storage.data_dir)
        self.queries = queries or MetadataQueries(self.db)
        self.use_locks = use_locks

    @property
    def lock_db(self) -> Optional[DatabaseConnection]:
        return self.db if self.use_locks else None

    def products(self) -> ProductsRefresher:
        aggregator = self.settings.aggregator
        paginator = ProductPaginator(
            self.client, aggregator.page_size, RateLimiter(aggregator.request_interval)
        )
        enricher = ProductEnricher(self.queries, aggregator.case_sensitive_networks)
        return ProductsRefresher(
            paginator, enricher, self.queries, self.store, aggregator.networks,
            RateLimiter(aggregator.network_interval), db=self.lock_db,
        )

    def protocols(self) -> ProtocolsRefresher:
        return ProtocolsRefresher(self.client, self.queries, self.store, db=self.lock_db)

    def tokens(self) -> TokensRefresher:
        return TokensRefresher(self.client, self.queries, self.store, db=self.lock_db)

    def refresh_products(self) -> Dict:
        return self.products().run()

    def refresh_protocols(self) -> Dict:
        return self.protocols().run()

    def refresh_tokens(self) -> Dict:
        return self.tokens().run()

    def close(self):
        self.client.close()
        self.db.close_all()
