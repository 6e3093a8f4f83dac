"""Tests for metadata queries against a scripted connection"""
from contextlib import contextmanager

import psycopg2
import pytest

from conftest import make_investment
from src.database.models import PlatformMinInfo, Product, Protocol, TokenInfo
from src.database.queries import MetadataQueries, product_params, product_record
from src.errors import MetadataLookupError


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.conn.executed.append((str(query), params))
        if self.conn.error:
            raise self.conn.error
        if self.conn.fail_when and self.conn.fail_when(str(query), params):
            raise psycopg2.DataError("invalid input syntax for type integer")

    def fetchone(self):
        return self.conn.rows.pop(0) if self.conn.rows else None

    def fetchall(self):
        rows, self.conn.rows = self.conn.rows, []
        return rows


class FakeConnection:
    def __init__(self, rows=None, error=None, fail_when=None):
        self.rows = list(rows or [])
        self.error = error
        self.fail_when = fail_when
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeDB:
    def __init__(self, conn):
        self.conn = conn
        self.returned = 0

    def get_connection(self):
        return self.conn

    def return_connection(self, conn):
        self.returned += 1

    @contextmanager
    def connection(self):
        try:
            yield self.conn
        finally:
            self.returned += 1


def make_queries(rows=None, error=None, fail_when=None):
    conn = FakeConnection(rows, error, fail_when)
    db = FakeDB(conn)
    return MetadataQueries(db), conn, db


TOKEN_ROW = {'token_id': "7", 'logo_url': "https://logo/7.png", 'token_decimal': "18"}


def test_find_token_prefers_network_match():
    queries, conn, db = make_queries(rows=[TOKEN_ROW])

    assert queries.find_token("0xabc", "ETH") == TOKEN_ROW
    assert len(conn.executed) == 1
    query, params = conn.executed[0]
    assert "LOWER(token_address)" in query
    assert params == ("0xabc", "ETH")
    assert db.returned == 1


def test_find_token_falls_back_to_address_only():
    queries, conn, _ = make_queries(rows=[None, TOKEN_ROW])

    assert queries.find_token("0xabc", "BASE") == TOKEN_ROW
    assert [params for _, params in conn.executed] == [("0xabc", "BASE"), ("0xabc",)]


def test_find_token_case_sensitive_compares_raw_column():
    queries, conn, _ = make_queries(rows=[TOKEN_ROW])

    queries.find_token("0x2::sui::SUI", "SUI", case_sensitive=True)

    query, _ = conn.executed[0]
    assert "LOWER(" not in query


def test_find_token_returns_none_when_missing():
    queries, _, _ = make_queries(rows=[])
    assert queries.find_token("0xabc", "ETH") is None


def test_database_errors_become_lookup_errors():
    queries, _, db = make_queries(error=psycopg2.OperationalError("connection lost"))

    with pytest.raises(MetadataLookupError):
        queries.find_token("0xabc", "ETH")
    with pytest.raises(MetadataLookupError):
        queries.find_protocol(1)
    assert db.returned == 2


def test_find_protocol():
    row = {'logo': "https://logo/p.png", 'platform_website': "https://p.example"}
    queries, conn, _ = make_queries(rows=[row])

    assert queries.find_protocol(12) == row
    assert conn.executed[0][1] == (12,)


def statements(conn):
    return [query.split()[0] for query, _ in conn.executed]


def test_upsert_tokens_counts_inserts_and_updates():
    infos = [
        TokenInfo(token_id="1", token_symbol="USDC", network="ETH", token_decimal="6"),
        TokenInfo(token_id="2", token_symbol="USDC", network="SOL", token_decimal="6"),
    ]
    queries, conn, db = make_queries(rows=[(True,), (False,)])

    assert queries.upsert_tokens(infos) == (1, 1, 0)
    assert conn.commits == 1
    assert db.returned == 1
    assert statements(conn) == ["SAVEPOINT", "INSERT", "RELEASE"] * 2
    assert conn.executed[1][1][0] == "1"


def test_rejected_row_is_rolled_back_alone():
    infos = [
        TokenInfo(token_id="1", token_symbol="USDC", network="ETH", token_decimal="6"),
        TokenInfo(token_id="2", token_symbol="BAD", network="ETH", token_decimal="x"),
        TokenInfo(token_id="3", token_symbol="WETH", network="ETH", token_decimal="18"),
    ]
    queries, conn, _ = make_queries(
        rows=[(True,), (True,)],
        fail_when=lambda query, params: bool(params) and params[0] == "2",
    )

    assert queries.upsert_tokens(infos) == (2, 0, 1)
    assert conn.commits == 1
    assert conn.rollbacks == 0
    assert "ROLLBACK TO SAVEPOINT upsert_row" in [query for query, _ in conn.executed]


def test_upsert_protocols_rolls_back_when_the_connection_fails():
    protocol = Protocol(
        platform_id=1, platform_name="Aave", logo="l", network="ETH", platform_website="w",
        platform_min_infos=[PlatformMinInfo("101", "1", "ETH", "1")],
    )
    queries, conn, db = make_queries(error=psycopg2.OperationalError("connection lost"))

    with pytest.raises(psycopg2.OperationalError):
        queries.upsert_protocols([protocol])
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert db.returned == 1


def test_upsert_products_maps_enriched_fields():
    product = Product.from_page_item(
        make_investment("9", address="0xAbC", chainId=1, rate="0.0512", tvl="", poolVersion="3"),
        "ETH",
    ).with_fields(tokenId="42", logoUrl="https://logo/usdc.png", tokenDecimal="6",
                  protocolLogo="https://logo/aave.png", platformWebSite="https://aave.com")
    queries, conn, _ = make_queries(rows=[(True,)])

    assert queries.upsert_products([product]) == (1, 0, 0)

    params = conn.executed[1][1]
    assert params == product_params(product)
    assert params[0] == "9"
    assert params[2] == "1"
    assert params[4] == 0.0512
    assert params[7] == 1
    assert params[8] == "https://aave.com"
    assert params[12] is None
    assert params[13:] == ("0xAbC", "USDC", "42", "https://logo/usdc.png", 6)


def test_find_products_orders_by_rate_and_shapes_records():
    row = {
        'investment_id': "9", 'investment_name': "USDC pool", 'chain_id': "1", 'network': "ETH",
        'rate': 0.05, 'invest_type': "1", 'platform_name': "Aave V3", 'platform_id': 1,
        'platform_url': "https://aave.com", 'platform_logo': "l", 'pool_version': "3",
        'rate_type': "0", 'tvl': 1000.0, 'token_address': "0xabc", 'token_symbol': "USDC",
        'token_id': "42", 'token_logo': "t", 'token_decimal': 6,
    }
    queries, conn, _ = make_queries(rows=[row])

    [record] = queries.find_products("ETH")

    query, params = conn.executed[0]
    assert "ORDER BY rate DESC" in query
    assert params == ("ETH",)
    assert record['investmentId'] == "9"
    assert record['underlyingToken'] == [{'tokenSymbol': "USDC", 'tokenAddress': "0xabc"}]
    assert record == product_record(row)


def test_find_products_without_network_reads_everything():
    queries, conn, _ = make_queries(rows=[])
    assert queries.find_products() == []
    query, params = conn.executed[0]
    assert "WHERE" not in query
    assert params == ()


def test_network_counts():
    queries, _, _ = make_queries(rows=[("ETH", 3), ("SOL", 1)])
    assert queries.network_counts('token_lists') == {'ETH': 3, 'SOL': 1}


def test_network_counts_rejects_unknown_table():
    queries, _, _ = make_queries()
    with pytest.raises(ValueError):
        queries.network_counts('users')
