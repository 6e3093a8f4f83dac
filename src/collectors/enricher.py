"""Attach token and protocol metadata to fetched products"""
import logging
from typing import Any, Dict, Iterable, Optional

from src.collectors.stages import run_stage
from src.database.models import Product
from src.database.queries import MetadataQueries

logger = logging.getLogger(__name__)


def normalize_address(address: str, network: str, case_sensitive_networks: Iterable[str]) -> str:
    """Lowercase EVM-style addresses; leave case-sensitive networks untouched"""
    if not address:
        return ''
    if network in case_sensitive_networks:
        return address
    return address.lower()


def coerce_platform_id(platform_id: Any) -> Optional[int]:
    """Platform ids arrive as ints or numeric strings"""
    if platform_id is None or platform_id == '':
        return None
    if isinstance(platform_id, bool):
        return None
    if isinstance(platform_id, int):
        return platform_id
    try:
        return int(str(platform_id).strip())
    except ValueError:
        logger.warning("Non-numeric platformId %r", platform_id)
        return None


class ProductEnricher:
    """
    Best-effort enrichment of products from the relational store.

    A missing token or protocol row leaves the corresponding fields absent.
    A failing lookup is logged and the product comes back unchanged, so
    enrichment never fails a refresh.
    """

    def __init__(self, queries: MetadataQueries, case_sensitive_networks: Iterable[str] = ()):
        self.queries = queries
        self.case_sensitive_networks = tuple(case_sensitive_networks)

    def enrich(self, product: Product) -> Product:
        outcome = run_stage("products", "enrich", self._enrich, product)
        if not outcome.ok:
            logger.error(
                "Error enriching product %s (tokenAddr=%s, network=%s, platformId=%s): %s",
                product.investment_id, product.token_addr, product.network,
                product.platform_id, outcome.error,
            )
            return product
        return outcome.value

    def _enrich(self, product: Product) -> Product:
        fields: Dict[str, Any] = {}
        fields.update(self._token_fields(product))
        fields.update(self._protocol_fields(product))
        if not fields:
            return product
        return product.with_fields(**fields)

    def _token_fields(self, product: Product) -> Dict[str, Any]:
        if not product.token_addr:
            logger.warning("Product %s missing tokenAddr for enrichment", product.investment_id)
            return {}

        case_sensitive = product.network in self.case_sensitive_networks
        address = normalize_address(product.token_addr, product.network, self.case_sensitive_networks)
        row = self.queries.find_token(address, product.network, case_sensitive=case_sensitive)
        if row is None:
            logger.warning(
                "Token not found in token_lists: %s (network %s)", address, product.network
            )
            return {}

        return {
            'tokenId': row.get('token_id'),
            'logoUrl': row.get('logo_url'),
            'tokenDecimal': row.get('token_decimal'),
        }

    def _protocol_fields(self, product: Product) -> Dict[str, Any]:
        platform_id = coerce_platform_id(product.platform_id)
        if platform_id is None:
            return {}

        row = self.queries.find_protocol(platform_id)
        if row is None:
            logger.warning("Protocol not found: platformId %s", platform_id)
            return {}

        return {
            'protocolLogo': row.get('logo'),
            'platformWebSite': row.get('platform_website'),
        }
