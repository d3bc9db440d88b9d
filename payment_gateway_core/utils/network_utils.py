"""
Network origin helpers for callback endpoints.
"""

import ipaddress
from typing import Iterable, Mapping, Optional

FORWARDED_FOR_HEADER = "x-forwarded-for"
FALLBACK_ADDRESS_HEADERS = ("x-real-ip", "cf-connecting-ip")


def extract_client_address(headers: Mapping[str, str], trusted_hops: int = 1) -> Optional[str]:
    """
    Resolve the caller's address from proxy headers.

    Every proxy appends the address it received the request from to
    ``X-Forwarded-For``, so only the rightmost ``trusted_hops`` entries were
    written by our own infrastructure. The entry ``trusted_hops`` from the
    end is the caller; anything left of it came from the caller and is
    ignored. When the header is shorter than that, all of it was written by
    trusted proxies and its first entry is used. ``trusted_hops=0`` takes
    the first entry as-is and is only safe without a proxy in front.

    Without ``X-Forwarded-For``, ``X-Real-IP`` and then ``CF-Connecting-IP``
    are used. Header lookup is case-insensitive.
    """
    lowered = {str(k).lower(): v for k, v in headers.items()}

    forwarded = [hop.strip() for hop in (lowered.get(FORWARDED_FOR_HEADER) or "").split(",")]
    forwarded = [hop for hop in forwarded if hop]
    if forwarded:
        if trusted_hops <= 0 or len(forwarded) < trusted_hops:
            return forwarded[0]
        return forwarded[-trusted_hops]

    for header in FALLBACK_ADDRESS_HEADERS:
        value = (lowered.get(header) or "").strip()
        if value:
            return value
    return None


def is_address_allowed(address: Optional[str], networks: Iterable[str]) -> bool:
    """
    Check an address against a list of CIDR ranges.

    Missing or unparsable addresses are never allowed.
    """
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return False

    return any(ip in ipaddress.ip_network(network, strict=False) for network in networks)
