"""
Identity resolver - pseudonymous visitor hashes, IP hashing and session ids.

Nothing here stores or returns a raw IP address; callers only ever see
hashes. Resolution never fails: malformed input degrades to defaults.
"""
import hashlib
import ipaddress
import secrets
from datetime import datetime
from typing import Mapping, Optional

from horizn.core.logging import get_logger

logger = get_logger(__name__)

FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip")
FALLBACK_IP = "127.0.0.1"
SESSION_PREFIX = "sess_"


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode()).hexdigest()


def _public_ip(candidate: str) -> Optional[str]:
    try:
        address = ipaddress.ip_address(candidate.strip())
    except ValueError:
        return None
    return str(address) if address.is_global else None


def client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Best-effort client address.

    Takes the first public address from the proxy headers, then the socket
    peer, then a loopback placeholder.
    """
    for header in FORWARDED_HEADERS:
        value = headers.get(header)
        if not value:
            continue
        for candidate in value.split(","):
            ip = _public_ip(candidate)
            if ip:
                return ip

    if peer:
        try:
            return str(ipaddress.ip_address(peer))
        except ValueError:
            logger.debug("Unparseable peer address", peer=peer)
    return FALLBACK_IP


def visitor_hash(ip: str, user_agent: str, now: datetime, user_id: Optional[str] = None) -> str:
    """
    Pseudonymous visitor key.

    An authenticated user id wins; otherwise IP, user agent and the calendar
    day are hashed together, so anonymous keys rotate every day.
    """
    if user_id:
        return sha256_hex(f"user_{user_id}")
    return sha256_hex(f"{ip}{user_agent}{now.strftime('%Y-%m-%d')}")


def hash_ip(ip: str, salt: str) -> str:
    return sha256_hex(f"{ip}{salt}")


def new_session_id() -> str:
    return SESSION_PREFIX + secrets.token_hex(16)


def successor_session_id(
    previous_id: str,
    user_hash: str,
    previous_activity: Optional[datetime],
) -> str:
    """
    Deterministic id for the session that replaces an expired one.

    Beacons carrying the same stale id derive the same successor, so a
    concurrent insert-if-absent leaves exactly one new session.
    """
    marker = previous_activity.isoformat() if previous_activity else ""
    return SESSION_PREFIX + sha256_hex(f"{previous_id}{user_hash}{marker}")[:32]
