"""
core/security.py
----------------
Opaque bearer-token utilities and IP allowlist matching.

Design decisions:
  - Tokens are 32 random hex characters from `secrets`.
  - Only the sha256 hash is persisted; the first 8 characters are kept
    as a display prefix so operators can recognise a token in listings.
  - IP restrictions are comma-separated addresses or CIDR networks.
"""

import hashlib
import ipaddress
import secrets
from typing import List, Optional, Union

TOKEN_BYTES = 16
PREFIX_LENGTH = 8

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


# ── Token Utilities ───────────────────────────────────────────────────────────

def generate_token() -> tuple[str, str, str]:
    """Return (token, prefix, sha256_hash) for a fresh bearer token."""
    token = secrets.token_hex(TOKEN_BYTES)
    return token, token[:PREFIX_LENGTH], hash_token(token)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token_name(firstname: str, lastname: str, suffix: str) -> str:
    """
    Format: FIRSTNAME_LASTNAME_SUFFIX, upper-cased, spaces → underscores.

    >>> generate_token_name("Ana María", "Gómez", "acme corp")
    'ANA_MARÍA_GÓMEZ_ACME_CORP'
    """
    parts = (firstname, lastname, suffix)
    return "_".join(p.strip().replace(" ", "_").upper() for p in parts)


# ── IP Restrictions ───────────────────────────────────────────────────────────

def parse_ip_restriction(value: Optional[str]) -> List[IPNetwork]:
    """
    Parse "10.0.0.1, 192.168.0.0/24" into networks.

    Raises:
        ValueError: If any entry is not a valid address or network.
    """
    if not value:
        return []
    networks = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        networks.append(ipaddress.ip_network(entry, strict=False))
    return networks


def normalise_ip_restriction(value: Optional[str]) -> Optional[str]:
    networks = parse_ip_restriction(value)
    if not networks:
        return None
    return ",".join(str(n) for n in networks)


def ip_allowed(ip_restriction: Optional[str], remote_addr: str) -> bool:
    """True if remote_addr falls inside the allowlist (empty list allows all)."""
    networks = parse_ip_restriction(ip_restriction)
    if not networks:
        return True
    try:
        address = ipaddress.ip_address(remote_addr)
    except ValueError:
        return False
    return any(address in network for network in networks)
