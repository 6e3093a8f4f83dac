"""Fetch every product page for a network"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List

from src.adapters.okx.client import OkxClient
from src.collectors.rate_limiter import RateLimiter
from src.collectors.stages import run_stage
from src.database.models import Product
from src.errors import ValidationFailure

logger = logging.getLogger(__name__)


@dataclass
class PaginationResult:
    """Products collected for one network plus page accounting"""
    network: str
    total: int = 0
    products: List[Product] = field(default_factory=list)
    pages_fetched: int = 0
    skipped_pages: List[int] = field(default_factory=list)
    invalid_items: int = 0


def remaining_pages(total: int, page_size: int) -> int:
    """Pages still needed after the first one"""
    return max(0, math.ceil((total - page_size) / page_size))


def _parse_total(data: Dict) -> int:
    try:
        return int(float(data.get('total') or 0))
    except (TypeError, ValueError):
        logger.warning("Unparseable total in products response: %r", data.get('total'))
        return 0


class ProductPaginator:
    """
    Drives sequential page requests for the product list.

    The first page is authoritative for ``total`` so its failure propagates.
    Later pages are best effort: a failed page is logged and skipped while
    the pages that succeeded are kept.
    """

    def __init__(self, client: OkxClient, page_size: int, limiter: RateLimiter):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.page_size = page_size
        self.limiter = limiter

    def fetch_all_pages(self, network: str) -> List[Product]:
        return self.fetch_network(network).products

    def fetch_network(self, network: str) -> PaginationResult:
        logger.info("=== Starting to fetch all products for network %s ===", network)
        result = PaginationResult(network=network)

        self.limiter.reset()
        self.limiter.wait()
        first_page = self.client.fetch_products_page(network, 0, self.page_size)
        result.total = _parse_total(first_page)
        result.pages_fetched = 1
        self._collect(first_page, network, result)

        logger.info("Total products available for %s: %s", network, result.total)
        if result.total == 0:
            logger.info("No products found for %s", network)
            return result

        pages = remaining_pages(result.total, self.page_size)
        logger.info("Need to fetch %s more pages for %s", pages, network)

        for page in range(1, pages + 1):
            offset = page * self.page_size
            self.limiter.wait()
            outcome = run_stage(
                "products", "page",
                self.client.fetch_products_page, network, offset, self.page_size,
            )
            if not outcome.ok:
                logger.error("Error fetching page %s for %s: %s", page, network, outcome.error)
                result.skipped_pages.append(page)
                continue

            result.pages_fetched += 1
            self._collect(outcome.value, network, result)
            logger.info(
                "Fetched page %s/%s for %s, total products so far: %s",
                page, pages, network, len(result.products),
            )

        logger.info(
            "=== Completed fetching all products for %s. Total products: %s ===",
            network, len(result.products),
        )
        return result

    def _collect(self, data: Dict, network: str, result: PaginationResult):
        for item in data.get('investments') or []:
            try:
                result.products.append(Product.from_page_item(item, network))
            except ValidationFailure as e:
                result.invalid_items += 1
                logger.warning("Dropping product on %s: %s", network, e)
