"""OKX Web3 API request signing"""
import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Dict, Optional

from src.settings import Credentials


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp in the millisecond ISO-8601 form OKX expects, e.g. 2024-05-01T12:00:00.000Z"""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def sign_request(secret_key: str, timestamp: str, method: str, path: str, body: str = '') -> str:
    """base64(HMAC-SHA256(secret, timestamp + method + path + body))"""
    message = f"{timestamp}{method.upper()}{path}{body}"
    digest = hmac.new(secret_key.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def build_headers(credentials: Credentials, method: str, path: str, body: str = '',
                  now: Optional[datetime] = None) -> Dict[str, str]:
    """
    Build authenticated headers for one request.

    Args:
        credentials: API key, secret and passphrase
        method: HTTP method
        path: Request path including any query string
        body: Serialized JSON body for POST requests, empty for GET

    Returns:
        Header dict including OK-ACCESS-KEY/SIGN/TIMESTAMP/PASSPHRASE
    """
    credentials.require()
    timestamp = iso_timestamp(now)
    return {
        'OK-ACCESS-KEY': credentials.api_key,
        'OK-ACCESS-SIGN': sign_request(credentials.secret_key, timestamp, method, path, body),
        'OK-ACCESS-TIMESTAMP': timestamp,
        'OK-ACCESS-PASSPHRASE': credentials.passphrase,
        'Content-Type': 'application/json',
    }


def redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Copy of headers safe to log"""
    redacted = dict(headers)
    for name in ('OK-ACCESS-KEY', 'OK-ACCESS-SIGN'):
        if redacted.get(name):
            redacted[name] = redacted[name][:10] + '...'
    if 'OK-ACCESS-PASSPHRASE' in redacted:
        redacted['OK-ACCESS-PASSPHRASE'] = '***'
    return redacted
