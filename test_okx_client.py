"""Tests for OKX request signing and the upstream client"""
import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone

import pytest
import requests

from conftest import TEST_CREDENTIALS, FakeResponse, FakeSession, envelope
from src.adapters.okx.client import (
    PRODUCT_LIST_PATH,
    PROTOCOL_LIST_PATH,
    TOKEN_LIST_PATH,
    OkxClient,
)
from src.adapters.okx.signing import build_headers, iso_timestamp, redact_headers, sign_request
from src.errors import ConfigurationError, ParseError, UpstreamError
from src.settings import Credentials


def make_client(aggregator_settings, responses):
    sleeps = []
    session = FakeSession(responses)
    client = OkxClient(aggregator_settings, TEST_CREDENTIALS, session=session, sleep=sleeps.append)
    return client, session, sleeps


# ============================================
# Signing
# ============================================

def test_sign_request_matches_hmac_sha256_base64():
    timestamp = "2024-05-01T12:00:00.000Z"
    expected = base64.b64encode(
        hmac.new(b"secret", f"{timestamp}GET/api/path".encode(), hashlib.sha256).digest()
    ).decode()
    assert sign_request("secret", timestamp, "GET", "/api/path") == expected


def test_sign_request_includes_body():
    timestamp = "2024-05-01T12:00:00.000Z"
    with_body = sign_request("secret", timestamp, "POST", "/p", '{"a":1}')
    without_body = sign_request("secret", timestamp, "POST", "/p")
    assert with_body != without_body


def test_iso_timestamp_is_utc_with_milliseconds():
    now = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert iso_timestamp(now) == "2024-05-01T12:00:00.123Z"


def test_build_headers_sets_okx_access_headers():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    headers = build_headers(TEST_CREDENTIALS, "GET", TOKEN_LIST_PATH, now=now)
    assert headers['OK-ACCESS-KEY'] == "test-key"
    assert headers['OK-ACCESS-PASSPHRASE'] == "test-pass"
    assert headers['OK-ACCESS-TIMESTAMP'] == "2024-05-01T00:00:00.000Z"
    assert headers['OK-ACCESS-SIGN'] == sign_request(
        "test-secret", "2024-05-01T00:00:00.000Z", "GET", TOKEN_LIST_PATH
    )


def test_build_headers_requires_credentials():
    with pytest.raises(ConfigurationError) as exc:
        build_headers(Credentials(api_key="k"), "GET", "/x")
    assert "OKX_SECRET_KEY" in str(exc.value)
    assert "OKX_PASSPHRASE" in str(exc.value)


def test_redact_headers_hides_secrets():
    headers = build_headers(TEST_CREDENTIALS, "GET", "/x")
    redacted = redact_headers(headers)
    assert redacted['OK-ACCESS-PASSPHRASE'] == '***'
    assert redacted['OK-ACCESS-SIGN'].endswith('...')
    assert headers['OK-ACCESS-PASSPHRASE'] == "test-pass"


# ============================================
# Transport
# ============================================

def test_request_returns_parsed_json(aggregator_settings):
    client, session, _ = make_client(aggregator_settings, [FakeResponse(200, envelope([1, 2]))])
    assert client.request(TOKEN_LIST_PATH) == envelope([1, 2])
    call = session.calls[0]
    assert call['url'] == "https://okx.test" + TOKEN_LIST_PATH
    assert call['method'] == "GET"
    assert call['data'] is None
    assert call['timeout'] == aggregator_settings.timeout


def test_request_non_2xx_raises_upstream_error_with_status_and_body(aggregator_settings):
    client, _, _ = make_client(aggregator_settings, [FakeResponse(429, text="slow down")])
    with pytest.raises(UpstreamError) as exc:
        client.request(TOKEN_LIST_PATH)
    assert exc.value.status == 429
    assert exc.value.body == "slow down"


def test_request_invalid_json_raises_parse_error(aggregator_settings):
    client, _, _ = make_client(aggregator_settings, [FakeResponse(200, text="<html>")])
    with pytest.raises(ParseError) as exc:
        client.request(TOKEN_LIST_PATH)
    assert exc.value.body == "<html>"


def test_error_envelope_raises_upstream_error(aggregator_settings):
    client, _, _ = make_client(
        aggregator_settings, [FakeResponse(200, envelope(None, code=50011, msg="Too Many Requests"))]
    )
    with pytest.raises(UpstreamError) as exc:
        client.fetch_protocol_list()
    assert "50011" in str(exc.value)


def test_envelope_without_data_raises_upstream_error(aggregator_settings):
    client, _, _ = make_client(aggregator_settings, [FakeResponse(200, {'code': "0", 'msg': ""})])
    with pytest.raises(UpstreamError):
        client.fetch_protocol_list()


# ============================================
# Resources
# ============================================

def test_fetch_products_page_posts_signed_json_body(aggregator_settings):
    page = {'investments': [], 'total': "0"}
    client, session, _ = make_client(aggregator_settings, [FakeResponse(200, envelope(page))])

    assert client.fetch_products_page("ETH", 20, 10) == page

    call = session.calls[0]
    assert call['method'] == "POST"
    assert call['url'].endswith(PRODUCT_LIST_PATH)
    body = json.loads(call['data'])
    assert body == {
        'simplifyInvestType': "101",
        'network': "ETH",
        'offset': "20",
        'limit': "10",
        'sort': {'orders': [{'direction': "DESC", 'property': "RATE"}]},
    }
    headers = call['headers']
    assert headers['OK-ACCESS-SIGN'] == sign_request(
        "test-secret", headers['OK-ACCESS-TIMESTAMP'], "POST", PRODUCT_LIST_PATH, call['data']
    )


def test_fetch_protocol_list_makes_a_single_attempt(aggregator_settings):
    client, session, sleeps = make_client(
        aggregator_settings, [FakeResponse(504, text="timeout"), FakeResponse(200, envelope([]))]
    )
    with pytest.raises(UpstreamError):
        client.fetch_protocol_list()
    assert len(session.calls) == 1
    assert sleeps == []
    assert session.calls[0]['url'].endswith(PROTOCOL_LIST_PATH)


def test_token_list_retries_504_until_success(aggregator_settings):
    tokens = [{'symbol': "USDC", 'tokenInfos': []}]
    client, session, sleeps = make_client(aggregator_settings, [
        FakeResponse(504, text="gateway timeout"),
        FakeResponse(504, text="gateway timeout"),
        FakeResponse(200, envelope(tokens)),
    ])

    assert client.fetch_token_list() == tokens
    assert len(session.calls) == 3
    assert sleeps == [aggregator_settings.retry_delay] * 2


def test_token_list_retries_other_errors_with_same_budget(aggregator_settings):
    client, session, _ = make_client(aggregator_settings, [
        requests.ConnectionError("reset"),
        FakeResponse(200, text="not json"),
        FakeResponse(200, envelope([{'symbol': "ETH", 'tokenInfos': []}])),
    ])
    assert client.fetch_token_list()[0]['symbol'] == "ETH"
    assert len(session.calls) == 3


def test_token_list_gives_up_after_retry_budget(aggregator_settings):
    client, session, sleeps = make_client(
        aggregator_settings, [FakeResponse(504, text="gateway timeout")] * 4
    )
    with pytest.raises(UpstreamError) as exc:
        client.fetch_token_list()
    assert exc.value.status == 504
    assert len(session.calls) == aggregator_settings.token_list_retries + 1
    assert len(sleeps) == aggregator_settings.token_list_retries


def test_token_list_missing_credentials_are_not_retried(aggregator_settings):
    sleeps = []
    session = FakeSession([FakeResponse(200, envelope([]))])
    client = OkxClient(aggregator_settings, Credentials(), session=session, sleep=sleeps.append)

    with pytest.raises(ConfigurationError) as exc:
        client.fetch_token_list()
    assert "OKX_API_KEY" in str(exc.value)
    assert session.calls == []
    assert sleeps == []


def test_close_closes_session(aggregator_settings):
    client, session, _ = make_client(aggregator_settings, [])
    client.close()
    assert session.closed
