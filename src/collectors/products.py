"""Products refresh: page through every network, enrich, persist, snapshot"""
import logging
from typing import Dict, Iterable, List, Optional

from src.adapters.okx.paginator import ProductPaginator
from src.collectors.enricher import ProductEnricher
from src.collectors.rate_limiter import RateLimiter
from src.collectors.snapshot_store import SnapshotStore
from src.collectors.stages import cycle_timestamp, refresh_lock, run_stage
from src.database.connection import DatabaseConnection
from src.database.models import Product, build_all_products_snapshot, build_products_snapshot
from src.database.queries import MetadataQueries

logger = logging.getLogger(__name__)

ALL_PRODUCTS_KEY = "products_all"


def network_snapshot_key(network: str) -> str:
    return f"products_{network}"


class ProductsRefresher:
    """
    One products refresh cycle.

    Networks are processed one after another. ``network_limiter`` keeps at
    least its interval between the last request for one network and the
    first request for the next. A network whose first page fails contributes
    an empty list and keeps its previous per-network snapshot; the combined
    snapshot is written last.
    """

    def __init__(self, paginator: ProductPaginator, enricher: ProductEnricher,
                 queries: MetadataQueries, store: SnapshotStore, networks: Iterable[str],
                 network_limiter: RateLimiter, db: Optional[DatabaseConnection] = None):
        self.paginator = paginator
        self.enricher = enricher
        self.queries = queries
        self.store = store
        self.networks = list(networks)
        self.network_limiter = network_limiter
        self.db = db

    def run(self) -> Dict:
        with refresh_lock(self.db, "products"):
            return self._run()

    def _store(self, network: str, products: List[Product]):
        """Upsert into products_list; a failure of the whole batch counts every product as failed"""
        outcome = run_stage("products", "store", self.queries.upsert_products, products)
        if not outcome.ok:
            logger.error("Error saving %s products to database: %s", network, outcome.error)
            return 0, 0, len(products)
        return outcome.value

    def _run(self) -> Dict:
        logger.info("Starting products update process...")
        timestamp = cycle_timestamp()

        by_network: Dict[str, List[Product]] = {}
        network_counts: Dict[str, int] = {}
        failed_networks: List[str] = []
        skipped_pages: Dict[str, List[int]] = {}
        enriched_count = 0
        saved_total = updated_total = failed_total = 0

        self.network_limiter.reset()
        for network in self.networks:
            self.network_limiter.wait()
            outcome = run_stage("products", "first_page", self.paginator.fetch_network, network)
            self.network_limiter.mark()

            if not outcome.ok:
                logger.error("Error fetching all products for %s: %s", network, outcome.error)
                failed_networks.append(network)
                by_network[network] = []
                network_counts[network] = 0
                continue

            pagination = outcome.value
            if pagination.skipped_pages:
                skipped_pages[network] = list(pagination.skipped_pages)
            logger.info("Fetched %s products for %s", len(pagination.products), network)

            logger.info("Enriching %s products with token information...", network)
            enriched = [self.enricher.enrich(product) for product in pagination.products]
            network_enriched = sum(1 for product in enriched if product.is_enriched)
            enriched_count += network_enriched

            saved, updated, failed = self._store(network, enriched)
            saved_total += saved
            updated_total += updated
            failed_total += failed

            run_stage(
                "products", "save_network",
                self.store.save, network_snapshot_key(network),
                build_products_snapshot(timestamp, network, enriched),
            )
            by_network[network] = enriched
            network_counts[network] = len(enriched)
            logger.info(
                "%s: %s products, %s enriched, saved=%s, updated=%s, failed=%s",
                network, len(enriched), network_enriched, saved, updated, failed,
            )

        run_stage(
            "products", "save_combined",
            self.store.save, ALL_PRODUCTS_KEY,
            build_all_products_snapshot(timestamp, by_network),
        )

        result = {
            'timestamp': timestamp,
            'totalCount': sum(network_counts.values()),
            'networkCounts': network_counts,
            'enrichedCount': enriched_count,
            'savedProducts': saved_total,
            'updatedProducts': updated_total,
            'failedProducts': failed_total,
            'failedNetworks': failed_networks,
            'skippedPages': skipped_pages,
        }
        logger.info("Products updated successfully: %s", result)
        return result
