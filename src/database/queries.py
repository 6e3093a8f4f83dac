"""Database queries for token, protocol and product data"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from src.database.connection import DatabaseConnection
from src.database.models import Product, Protocol, TokenInfo
from src.errors import MetadataLookupError

logger = logging.getLogger(__name__)

COUNTED_TABLES = ('token_lists', 'protocols_list', 'products_list')


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def product_params(product: Product) -> tuple:
    """Column values for one products_list row"""
    raw = product.raw
    underlying = product.underlying_tokens
    return (
        product.investment_id,
        product.investment_name,
        str(raw.get('chainId') or ''),
        product.network,
        _to_float(raw.get('rate')),
        str(raw.get('investType') or ''),
        raw.get('platformName') or '',
        _to_int(product.platform_id),
        raw.get('platformWebSite') or raw.get('platformUrl') or '',
        raw.get('protocolLogo'),
        str(raw.get('poolVersion') or ''),
        str(raw.get('rateType') or ''),
        _to_float(raw.get('tvl')),
        product.token_addr,
        underlying[0].token_symbol if underlying else None,
        raw.get('tokenId'),
        raw.get('logoUrl'),
        _to_int(raw.get('tokenDecimal')),
    )


def product_record(row: Dict) -> Dict:
    """Shape a products_list row like an enriched aggregator record"""
    return {
        'investmentId': row['investment_id'],
        'investmentName': row['investment_name'],
        'chainId': row['chain_id'],
        'network': row['network'],
        'rate': row['rate'],
        'investType': row['invest_type'],
        'platformName': row['platform_name'],
        'platformId': row['platform_id'],
        'platformWebSite': row['platform_url'],
        'protocolLogo': row['platform_logo'],
        'poolVersion': row['pool_version'],
        'rateType': row['rate_type'],
        'tvl': row['tvl'],
        'tokenAddr': row['token_address'],
        'tokenSymbol': row['token_symbol'],
        'tokenId': row['token_id'],
        'logoUrl': row['token_logo'],
        'tokenDecimal': row['token_decimal'],
        'underlyingToken': [
            {'tokenSymbol': row['token_symbol'] or '', 'tokenAddress': row['token_address'] or ''}
        ],
    }


class MetadataQueries:
    """Lookups and upserts against the token_lists, protocols_list and products_list tables"""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection

    # ============================================
    # Lookups used by product enrichment
    # ============================================

    def find_token(self, address: str, network: str,
                   case_sensitive: bool = False) -> Optional[Dict]:
        """
        Find token metadata by contract address.

        A row on the same network wins; otherwise any row with the address
        is accepted, since the aggregator reuses addresses across EVM chains.

        Args:
            address: Normalized token address
            network: Network identifier of the product
            case_sensitive: Compare the stored address verbatim instead of lowercased

        Returns:
            Dict with token_id, logo_url, token_decimal or None if not found

        Raises:
            MetadataLookupError: if the query fails
        """
        column = "token_address" if case_sensitive else "LOWER(token_address)"
        by_network = (
            f"SELECT token_id, logo_url, token_decimal::text AS token_decimal "
            f"FROM token_lists WHERE {column} = %s AND network = %s LIMIT 1"
        )
        by_address = (
            f"SELECT token_id, logo_url, token_decimal::text AS token_decimal "
            f"FROM token_lists WHERE {column} = %s ORDER BY token_id LIMIT 1"
        )
        try:
            with self.db.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(by_network, (address, network))
                    row = cur.fetchone()
                    if row is None:
                        cur.execute(by_address, (address,))
                        row = cur.fetchone()
                    return dict(row) if row else None
        except psycopg2.Error as e:
            raise MetadataLookupError(f"Token lookup failed for {address}: {e}") from e

    def find_protocol(self, platform_id: int) -> Optional[Dict]:
        """
        Find protocol metadata by platform id.

        Returns:
            Dict with logo and platform_website or None if not found

        Raises:
            MetadataLookupError: if the query fails
        """
        try:
            with self.db.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        """SELECT logo, platform_website
                           FROM protocols_list
                           WHERE platform_id = %s
                           LIMIT 1""",
                        (platform_id,)
                    )
                    row = cur.fetchone()
                    return dict(row) if row else None
        except psycopg2.Error as e:
            raise MetadataLookupError(f"Protocol lookup failed for {platform_id}: {e}") from e

    # ============================================
    # Upserts used by the refreshes
    # ============================================

    def _upsert_rows(self, kind: str, query: str, rows: Iterable[Tuple[str, tuple]]) -> Tuple[int, int, int]:
        """
        Upsert rows one by one inside a single transaction.

        Each row runs under its own savepoint, so a row the database rejects
        is rolled back and counted as failed while the others are kept.

        Args:
            kind: Label for log messages
            query: INSERT ... ON CONFLICT statement ending in RETURNING (xmax = 0)
            rows: (row key, params) pairs

        Returns:
            (inserted, updated, failed)
        """
        inserted = updated = failed = 0
        conn = self.db.get_connection()
        try:
            with conn.cursor() as cur:
                for key, params in rows:
                    cur.execute("SAVEPOINT upsert_row")
                    try:
                        cur.execute(query, params)
                        is_insert = cur.fetchone()[0]
                    except psycopg2.Error as e:
                        cur.execute("ROLLBACK TO SAVEPOINT upsert_row")
                        failed += 1
                        logger.warning(f"Failed to upsert {kind} {key}: {e}")
                        continue
                    cur.execute("RELEASE SAVEPOINT upsert_row")
                    if is_insert:
                        inserted += 1
                    else:
                        updated += 1
            conn.commit()
            logger.info(f"Upserted {kind}: {inserted} inserted, {updated} updated, {failed} failed")
            return inserted, updated, failed
        except Exception as e:
            conn.rollback()
            logger.error(f"Error upserting {kind}: {e}")
            raise
        finally:
            self.db.return_connection(conn)

    def upsert_tokens(self, token_infos: Iterable[TokenInfo]) -> Tuple[int, int, int]:
        """Insert or update token rows, returning (inserted, updated, failed)"""
        query = """INSERT INTO token_lists (
                       token_id, token_symbol, network,
                       logo_url, token_address, token_decimal
                   ) VALUES (%s, %s, %s, %s, %s, %s)
                   ON CONFLICT (token_id) DO UPDATE SET
                       token_symbol = EXCLUDED.token_symbol,
                       network = EXCLUDED.network,
                       logo_url = EXCLUDED.logo_url,
                       token_address = EXCLUDED.token_address,
                       token_decimal = EXCLUDED.token_decimal,
                       updated_at = NOW()
                   RETURNING (xmax = 0) AS inserted"""
        rows = (
            (info.token_id, (info.token_id, info.token_symbol, info.network,
                             info.logo_url, info.token_address, info.token_decimal))
            for info in token_infos
        )
        return self._upsert_rows("tokens", query, rows)

    def upsert_protocols(self, protocols: Iterable[Protocol]) -> Tuple[int, int, int]:
        """Insert or update protocol rows, returning (inserted, updated, failed)"""
        query = """INSERT INTO protocols_list (
                       platform_id, platform_name, logo, network,
                       platform_website, platform_min_infos
                   ) VALUES (%s, %s, %s, %s, %s, %s)
                   ON CONFLICT (platform_id) DO UPDATE SET
                       platform_name = EXCLUDED.platform_name,
                       logo = EXCLUDED.logo,
                       network = EXCLUDED.network,
                       platform_website = EXCLUDED.platform_website,
                       platform_min_infos = EXCLUDED.platform_min_infos,
                       updated_at = NOW()
                   RETURNING (xmax = 0) AS inserted"""
        rows = (
            (protocol.platform_id,
             (protocol.platform_id, protocol.platform_name, protocol.logo,
              protocol.network, protocol.platform_website,
              Json([info.to_dict() for info in protocol.platform_min_infos])))
            for protocol in protocols
        )
        return self._upsert_rows("protocols", query, rows)

    def upsert_products(self, products: Iterable[Product]) -> Tuple[int, int, int]:
        """Insert or update enriched products, returning (inserted, updated, failed)"""
        query = """INSERT INTO products_list (
                       investment_id, investment_name, chain_id, network,
                       rate, invest_type, platform_name, platform_id,
                       platform_url, platform_logo, pool_version, rate_type,
                       tvl, token_address, token_symbol, token_id,
                       token_logo, token_decimal
                   ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s,
                             %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (investment_id) DO UPDATE SET
                       investment_name = EXCLUDED.investment_name,
                       chain_id = EXCLUDED.chain_id,
                       network = EXCLUDED.network,
                       rate = EXCLUDED.rate,
                       invest_type = EXCLUDED.invest_type,
                       platform_name = EXCLUDED.platform_name,
                       platform_id = EXCLUDED.platform_id,
                       platform_url = EXCLUDED.platform_url,
                       platform_logo = EXCLUDED.platform_logo,
                       pool_version = EXCLUDED.pool_version,
                       rate_type = EXCLUDED.rate_type,
                       tvl = EXCLUDED.tvl,
                       token_address = EXCLUDED.token_address,
                       token_symbol = EXCLUDED.token_symbol,
                       token_id = EXCLUDED.token_id,
                       token_logo = EXCLUDED.token_logo,
                       token_decimal = EXCLUDED.token_decimal,
                       updated_at = NOW()
                   RETURNING (xmax = 0) AS inserted"""
        rows = ((product.investment_id, product_params(product)) for product in products)
        return self._upsert_rows("products", query, rows)

    # ============================================
    # Reads used by the public API
    # ============================================

    def find_products(self, network: Optional[str] = None) -> List[Dict]:
        """
        Cached products, highest rate first.

        Rows come back keyed like the aggregator records (investmentId,
        underlyingToken, ...) so API filters treat them like snapshot items.
        """
        query = """SELECT investment_id, investment_name, chain_id, network,
                          rate::float8 AS rate, invest_type, platform_name, platform_id,
                          platform_url, platform_logo, pool_version, rate_type,
                          tvl::float8 AS tvl, token_address, token_symbol, token_id,
                          token_logo, token_decimal
                   FROM products_list"""
        params: tuple = ()
        if network:
            query += " WHERE network = %s"
            params = (network,)
        query += " ORDER BY rate DESC NULLS LAST"

        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [product_record(row) for row in cur.fetchall()]

    def network_counts(self, table: str) -> Dict[str, int]:
        """Row counts per network for one of the metadata tables"""
        if table not in COUNTED_TABLES:
            raise ValueError(f"Unknown table: {table}")

        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL(
                        "SELECT network, COUNT(*) FROM {} GROUP BY network ORDER BY network"
                    ).format(sql.Identifier(table))
                )
                return {row[0]: int(row[1]) for row in cur.fetchall()}
