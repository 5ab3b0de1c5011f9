from fastapi import Request

from queuepoint.config import settings
from queuepoint.services.change_feed import ChangeFeed
from queuepoint.services.ip_cache import IpRegistrationCache


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_ip_cache(request: Request) -> IpRegistrationCache:
    return request.app.state.ip_cache


def get_client_ip(request: Request) -> str | None:
    """The connecting address, or the nearest untrusted hop when a trusted proxy forwarded the request."""
    peer = request.client.host if request.client else None
    forwarded_for = request.headers.get('x-forwarded-for')
    if not forwarded_for or peer not in settings.trusted_proxies:
        return peer

    hops = [hop.strip() for hop in forwarded_for.split(',') if hop.strip()]
    for hop in reversed(hops):
        if hop not in settings.trusted_proxies:
            return hop
    return hops[0] if hops else peer
