"""Shared fakes for the pipeline tests. No live network or database."""
import json
from typing import Dict, List, Optional

import psycopg2
import pytest
import requests

from src.collectors.rate_limiter import RateLimiter
from src.collectors.snapshot_store import SnapshotStore
from src.errors import MetadataLookupError
from src.settings import AggregatorSettings, Credentials, Settings, StorageSettings

TEST_CREDENTIALS = Credentials(
    api_key="test-key",
    secret_key="test-secret",
    passphrase="test-pass",
    cron_secret="cron-secret",
    ideas_api_key="ideas-key",
)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: Optional[str] = None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400


class FakeSession:
    """requests.Session stand-in replaying scripted responses or exceptions"""

    def __init__(self, responses: List):
        self.responses = list(responses)
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict] = []
        self.closed = False

    def request(self, method, url, headers=None, data=None, timeout=None):
        self.calls.append({
            'method': method, 'url': url, 'headers': headers, 'data': data, 'timeout': timeout,
        })
        if not self.responses:
            raise AssertionError("FakeSession ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


def envelope(data, code=0, msg=""):
    return {'code': code, 'msg': msg, 'data': data}


# ---------------------------------------------------------------------------
# Upstream client
# ---------------------------------------------------------------------------


def make_investment(investment_id, address="0xABCDEF", platform_id=1, symbol="USDC", **extra):
    item = {
        'investmentId': str(investment_id),
        'investmentName': f"{symbol} pool {investment_id}",
        'platformName': "Aave V3",
        'platformId': platform_id,
        'rate': "0.05",
        'rateType': "0",
        'investType': "1",
        'tvl': "1000000",
        'underlyingToken': [
            {'tokenSymbol': symbol, 'tokenAddress': address, 'isBaseToken': True},
        ],
    }
    item.update(extra)
    return item


class FakeProductsClient:
    """
    Product pages for a fixed total per network.

    ``fail_offsets`` maps network -> offsets that raise; an offset of 0
    makes the whole network fail on its first page.
    """

    def __init__(self, totals: Dict[str, int], fail_offsets: Optional[Dict[str, List[int]]] = None,
                 page_size: int = 10, clock=None):
        self.totals = totals
        self.fail_offsets = fail_offsets or {}
        self.page_size = page_size
        self.clock = clock
        self.calls: List = []
        # (network, offset, clock time) per request when a clock is given
        self.request_times: List = []

    def fetch_products_page(self, network, offset, limit):
        self.calls.append((network, offset, limit))
        if self.clock is not None:
            self.request_times.append((network, offset, self.clock()))
        if offset in self.fail_offsets.get(network, []):
            raise requests.ConnectionError(f"simulated failure {network}@{offset}")
        total = self.totals.get(network, 0)
        count = max(0, min(limit, total - offset))
        investments = [
            make_investment(f"{network}-{offset + i}", address=f"0xAbC{offset + i:04d}")
            for i in range(count)
        ]
        return {'investments': investments, 'total': str(total)}

    def close(self):
        pass


class FakeListClient:
    """Token and protocol list endpoints returning fixed data"""

    def __init__(self, tokens=None, protocols=None, error: Optional[Exception] = None):
        self.tokens = tokens if tokens is not None else []
        self.protocols = protocols if protocols is not None else []
        self.error = error
        self.calls = []

    def fetch_token_list(self):
        self.calls.append('tokens')
        if self.error:
            raise self.error
        return self.tokens

    def fetch_protocol_list(self):
        self.calls.append('protocols')
        if self.error:
            raise self.error
        return self.protocols

    def close(self):
        pass


# ---------------------------------------------------------------------------
# Relational store
# ---------------------------------------------------------------------------


class FakeQueries:
    """In-memory stand-in for MetadataQueries"""

    def __init__(self, tokens: Optional[Dict] = None, protocols: Optional[Dict] = None,
                 fail: bool = False, fail_store: bool = False):
        # (address, network) -> row
        self.tokens = tokens or {}
        # platform_id -> row
        self.protocols = protocols or {}
        self.fail = fail
        self.fail_store = fail_store
        self.token_lookups: List = []
        self.protocol_lookups: List = []
        self.upserted_tokens: List = []
        self.upserted_protocols: List = []
        self.upserted_products: List = []

    def find_token(self, address, network, case_sensitive=False):
        self.token_lookups.append((address, network, case_sensitive))
        if self.fail:
            raise MetadataLookupError("database unavailable")
        return self.tokens.get((address, network))

    def find_protocol(self, platform_id):
        self.protocol_lookups.append(platform_id)
        if self.fail:
            raise MetadataLookupError("database unavailable")
        return self.protocols.get(platform_id)

    def upsert_tokens(self, token_infos):
        token_infos = list(token_infos)
        self.upserted_tokens.extend(token_infos)
        return len(token_infos), 0, 0

    def upsert_protocols(self, protocols):
        protocols = list(protocols)
        self.upserted_protocols.extend(protocols)
        return len(protocols), 0, 0

    def upsert_products(self, products):
        if self.fail_store:
            raise psycopg2.OperationalError("database unavailable")
        products = list(products)
        known = {p.investment_id for p in self.upserted_products}
        self.upserted_products.extend(products)
        updated = sum(1 for p in products if p.investment_id in known)
        return len(products) - updated, updated, 0

    def find_products(self, network=None):
        rows = [p.to_dict() for p in self.upserted_products if not network or p.network == network]
        return sorted(rows, key=lambda row: float(row.get('rate') or 0), reverse=True)

    def network_counts(self, table):
        rows = self.upserted_tokens if table == 'token_lists' else self.upserted_protocols
        counts: Dict[str, int] = {}
        for row in rows:
            counts[row.network] = counts.get(row.network, 0) + 1
        return counts


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced only by its own sleep"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


def make_limiter(interval: float = 1.0, clock: Optional[FakeClock] = None) -> RateLimiter:
    clock = clock or FakeClock()
    return RateLimiter(interval, clock=clock, sleep=clock.sleep)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def aggregator_settings():
    return AggregatorSettings(base_url="https://okx.test", page_size=10, retry_delay=0.5)


@pytest.fixture
def settings(tmp_path, aggregator_settings):
    return Settings(
        aggregator=aggregator_settings,
        storage=StorageSettings(data_dir=tmp_path / "data"),
        credentials=TEST_CREDENTIALS,
    )


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "data")
