"""Shared-secret request signing used by in-world scripts.

A request carries ``timestamp`` and ``signature`` where
``signature = sha256(timestamp + universe_secret)`` in hex.
"""

import hashlib
import hmac
import re
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

from flask import current_app

ISO_TIMESTAMP_RE = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{1,6})?Z$')
SIGNATURE_RE = re.compile(r'^[a-f0-9]{64}$')

_UNIVERSE_KEYS = {
    'arkana': 'ARKANA_UNIVERSE_SECRET_KEY',
    'gor': 'GOR_UNIVERSE_SECRET_KEY',
}


class SignatureError(Exception):
    pass


def _secret_for(universe: str) -> Optional[str]:
    config_key = _UNIVERSE_KEYS.get((universe or '').lower())
    if not config_key:
        return None
    return current_app.config.get(config_key) or None


def _window_sec() -> int:
    try:
        return int(current_app.config.get('SIGNATURE_WINDOW_SEC', 300))
    except (TypeError, ValueError):
        return 300


def _digest(payload: str, universe: str) -> str:
    secret = _secret_for(universe)
    if not secret:
        raise SignatureError(f"No secret key configured for universe: {universe}")
    return hashlib.sha256((payload + secret).encode('utf-8')).hexdigest()


def parse_timestamp(timestamp: str) -> Optional[datetime]:
    if not isinstance(timestamp, str) or not ISO_TIMESTAMP_RE.match(timestamp):
        return None
    fmt = '%Y-%m-%dT%H:%M:%S.%fZ' if '.' in timestamp else '%Y-%m-%dT%H:%M:%SZ'
    try:
        return datetime.strptime(timestamp, fmt).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def generate_timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


def generate_signature(timestamp: str, universe: str) -> str:
    return _digest(timestamp, universe)


def _matches(signature: str, expected: str) -> bool:
    if not isinstance(signature, str):
        return False
    return hmac.compare_digest(signature.lower().encode('ascii', 'ignore'), expected.encode('ascii'))


def validate_signature(timestamp: str, signature: str, universe: str) -> Tuple[bool, Optional[str]]:
    requested_at = parse_timestamp(timestamp)
    if requested_at is None:
        return False, 'Invalid timestamp format. Expected ISO 8601 format (YYYY-MM-DDThh:mm:ss.fffZ)'

    window = _window_sec()
    skew = abs((datetime.now(timezone.utc) - requested_at).total_seconds())
    if skew > window:
        return False, f"Timestamp is outside acceptable time window ({window // 60} minutes)"

    if not _secret_for(universe):
        return False, f"No secret key configured for universe: {universe}"

    if _matches(signature, generate_signature(timestamp, universe)):
        return True, None
    return False, 'Invalid signature'


def generate_unix_signature(unix_timestamp: str, universe: str) -> str:
    return _digest(str(unix_timestamp), universe)


def validate_unix_signature(unix_timestamp: str, signature: str, universe: str) -> Tuple[bool, Optional[str]]:
    try:
        value = int(str(unix_timestamp))
    except (TypeError, ValueError):
        value = 0
    window = _window_sec()
    if value <= 0 or abs(int(time.time()) - value) > window:
        return False, f"Invalid Unix timestamp or timestamp outside acceptable time window ({window // 60} minutes)"

    if not _secret_for(universe):
        return False, f"No secret key configured for universe: {universe}"

    if _matches(signature, generate_unix_signature(str(unix_timestamp), universe)):
        return True, None
    return False, 'Invalid signature'


def create_signed_request(data: dict, universe: str) -> dict:
    """Return ``data`` with a fresh timestamp and signature attached."""
    timestamp = generate_timestamp()
    signed = dict(data)
    signed['timestamp'] = timestamp
    signed['signature'] = generate_signature(timestamp, universe)
    return signed
