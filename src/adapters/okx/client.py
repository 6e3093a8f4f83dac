"""HTTP client for the OKX DeFi explore API"""
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from src.adapters.okx.signing import build_headers, redact_headers
from src.errors import ConfigurationError, ParseError, UpstreamError
from src.settings import AggregatorSettings, Credentials

logger = logging.getLogger(__name__)

TOKEN_LIST_PATH = "/api/v5/defi/explore/token/list"
PROTOCOL_LIST_PATH = "/api/v5/defi/explore/protocol/list"
PRODUCT_LIST_PATH = "/api/v5/defi/explore/product/list"

GATEWAY_TIMEOUT = 504


class OkxClient:
    """
    Signed requests against the aggregator.

    Each call signs with a fresh timestamp and keeps no state between calls
    apart from the pooled HTTP session.
    """

    def __init__(self, settings: AggregatorSettings, credentials: Credentials,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.credentials = credentials
        self.base_url = settings.base_url.rstrip("/")
        self.timeout = settings.timeout
        self.sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "defi-dashboard/1.0"})

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def request(self, path: str, method: str = "GET", body: Optional[Dict] = None) -> Any:
        """
        Send one signed request and return the parsed JSON body.

        Raises:
            UpstreamError: on a non-2xx HTTP status (carries status and body text)
            ParseError: if the body is not valid JSON
            requests.RequestException: on transport failures
        """
        method = method.upper()
        body_str = json.dumps(body, separators=(',', ':')) if body is not None else ''
        headers = build_headers(self.credentials, method, path, body_str)
        url = f"{self.base_url}{path}"

        logger.debug("%s %s headers=%s body=%s", method, url, redact_headers(headers), body_str)
        started = time.monotonic()
        resp = self.session.request(
            method,
            url,
            headers=headers,
            data=body_str or None,
            timeout=self.timeout,
        )
        logger.debug("Response %s from %s in %.0fms",
                     resp.status_code, path, (time.monotonic() - started) * 1000)

        text = resp.text
        if not resp.ok:
            logger.error("OKX API error %s for %s: %s", resp.status_code, path, text)
            raise UpstreamError(resp.status_code, text)

        try:
            return json.loads(text)
        except ValueError as e:
            logger.error("Failed to parse response JSON from %s: %s", path, text[:500])
            raise ParseError(text, str(e)) from e

    def _unwrap(self, payload: Any, path: str) -> Any:
        """Return the envelope's data, raising UpstreamError for error envelopes"""
        if not isinstance(payload, dict):
            raise UpstreamError(200, json.dumps(payload), f"Unexpected response shape from {path}")

        code = payload.get('code')
        if code is None or str(code) != '0':
            raise UpstreamError(
                200,
                json.dumps(payload),
                f"OKX API error! code: {code}, msg: {payload.get('msg')}",
            )
        if payload.get('data') is None:
            raise UpstreamError(200, json.dumps(payload), f"No data in response from {path}")
        return payload['data']

    # ------------------------------------------------------------------ #
    # Resources
    # ------------------------------------------------------------------ #

    def fetch_token_list(self) -> List[Dict]:
        """
        Fetch the token list, retrying because the endpoint times out under load.

        A 504 or any other failure is retried up to ``token_list_retries``
        extra times with ``retry_delay`` seconds between attempts; the last
        error propagates once the budget is spent. Missing credentials are
        raised at once.
        """
        attempts = self.settings.token_list_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                logger.info("Fetching token list (attempt %s/%s)", attempt, attempts)
                data = self._unwrap(self.request(TOKEN_LIST_PATH, "GET"), TOKEN_LIST_PATH)
                logger.info("Token list returned %s entries", len(data))
                return data
            except ConfigurationError:
                raise
            except Exception as e:
                if attempt >= attempts:
                    logger.error("Error fetching token list (final attempt): %s", e)
                    raise
                if isinstance(e, UpstreamError) and e.status == GATEWAY_TIMEOUT:
                    logger.warning("Received 504, waiting %ss before retry", self.settings.retry_delay)
                else:
                    logger.warning("Error fetching token list (attempt %s), retrying: %s", attempt, e)
                self.sleep(self.settings.retry_delay)

    def fetch_protocol_list(self) -> List[Dict]:
        """Fetch the protocol list in a single attempt"""
        logger.info("Fetching protocol list")
        data = self._unwrap(self.request(PROTOCOL_LIST_PATH, "GET"), PROTOCOL_LIST_PATH)
        logger.info("Protocol list returned %s entries", len(data))
        return data

    def fetch_products_page(self, network: str, offset: int, limit: int) -> Dict:
        """
        Fetch one page of products for a network.

        Returns:
            The envelope data, e.g. {"investments": [...], "total": "25"}
        """
        body = {
            'simplifyInvestType': self.settings.invest_type,
            'network': network,
            'offset': str(offset),
            'limit': str(limit),
            'sort': {
                'orders': [{
                    'direction': self.settings.sort_direction,
                    'property': self.settings.sort_property,
                }]
            },
        }
        logger.info("Fetching products page for %s, offset: %s", network, offset)
        data = self._unwrap(self.request(PRODUCT_LIST_PATH, "POST", body), PRODUCT_LIST_PATH)
        logger.info(
            "Products page for %s offset %s: %s products, total %s",
            network, offset, len(data.get('investments') or []), data.get('total', 'N/A'),
        )
        return data

    def close(self):
        self.session.close()
