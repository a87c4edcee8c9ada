"""
Client IP resolution + IPv4 CIDR matching.

Precedence: X-Forwarded-For (first entry) → X-Real-IP → transport peer.
A trailing :port (or [v6]:port) is stripped in every case.
"""

import ipaddress

_MASK_32 = 0xFFFFFFFF


def strip_port(addr: str) -> str:
    """Drop a trailing port from host:port or [v6]:port."""
    idx = addr.rfind("]:")
    if idx != -1:
        return addr[1:idx]
    # Only strip when there is exactly one colon; bare IPv6 stays intact.
    if addr.count(":") == 1:
        return addr.split(":", 1)[0]
    return addr


def extract_ip(headers: dict[str, str], client: str = "") -> str:
    """Extract real client IP. `headers` must be the lower-cased header map."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        # First IP in chain is the client
        return strip_port(forwarded.split(",", 1)[0].strip())
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return strip_port(real_ip.strip())
    return strip_port(client or "")


def ipv4_to_int(ip: str) -> int | None:
    """Dotted-quad → 32-bit int, None if unparsable."""
    try:
        return int(ipaddress.IPv4Address(ip.strip()))
    except ValueError:
        return None


def cidr_contains(cidr: str, ip: str) -> bool:
    """True if `ip` falls in `cidr`. Entries without a slash need an exact match."""
    if "/" not in cidr:
        return cidr == ip

    base, _, prefix = cidr.partition("/")
    base_int = ipv4_to_int(base)
    target_int = ipv4_to_int(ip)
    if base_int is None or target_int is None:
        return False

    prefix = prefix.strip()
    if not (prefix.isascii() and prefix.isdigit()):
        return False
    bits = int(prefix)
    if bits > 32:
        return False

    mask = (_MASK_32 << (32 - bits)) & _MASK_32
    return (base_int & mask) == (target_int & mask)
