from __future__ import annotations

import ipaddress
import json
import logging
from urllib.error import URLError
from urllib.request import Request, urlopen

from queuepoint.config import settings

logger = logging.getLogger(__name__)


def normalize_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def detect_client_ip(url: str | None = None, timeout: float | None = None) -> str | None:
    """Ask the IP-echo service for our public address. Any failure yields None."""
    req = Request(
        url=url or settings.ip_echo_url,
        headers={'Accept': 'application/json'},
        method='GET',
    )
    try:
        with urlopen(req, timeout=timeout or settings.ip_echo_timeout_seconds) as response:
            parsed = json.loads(response.read().decode('utf-8'))
    except (URLError, OSError, ValueError) as exc:
        logger.warning('IP echo lookup failed: %s', exc)
        return None
    if not isinstance(parsed, dict):
        return None
    return normalize_ip(parsed.get('ip'))
