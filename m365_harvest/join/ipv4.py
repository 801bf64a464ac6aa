"""
IPv4 helpers for subnet matching.

Two ways to decide that an address belongs to a subnet:

  masked  (addr & mask) == (net & mask) on the big-endian 32-bit value
  prefix  addr.startswith("10.120.26.")

They agree for /24 (and /8, /16) tables written without leading zeros.
They differ for masks that do not end on an octet boundary, and for
addresses like "10.120.026.5", which the masked test reads as 10.120.26.5
while the string test does not.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Optional

_SPLIT = re.compile(r"[,;\s]+")


def ip_to_int(address: str) -> int:
    """Parse a dotted quad. Octets are read as decimal, leading zeros allowed."""
    parts = address.strip().split(".")
    if len(parts) != 4:
        raise ValueError(f"Not an IPv4 address: {address!r}")
    value = 0
    for part in parts:
        if not part.isdigit() or not part.isascii():
            raise ValueError(f"Not an IPv4 address: {address!r}")
        octet = int(part)
        if octet > 255:
            raise ValueError(f"Octet out of range in {address!r}")
        value = (value << 8) | octet
    return value


def int_to_ip(value: int) -> str:
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def mask_for(mask_length: int) -> int:
    if not 0 <= mask_length <= 32:
        raise ValueError(f"Mask length must be 0-32, got {mask_length}")
    return (0xFFFFFFFF << (32 - mask_length)) & 0xFFFFFFFF


def in_subnet(candidate: str, network: str, mask_length: int = 24) -> bool:
    """Masked-integer membership test. Unparseable candidates never match."""
    try:
        addr = ip_to_int(candidate)
    except ValueError:
        return False
    mask = mask_for(mask_length)
    return (addr & mask) == (ip_to_int(network) & mask)


def prefix_match(candidate: str, prefix: str) -> bool:
    return bool(prefix) and candidate.startswith(prefix)


def parse_scope(scope: str, default_length: Optional[int] = None) -> tuple[int, Optional[int]]:
    """'10.1.2.0/24' -> (network int, 24); '10.1.2.0' -> (network int, default_length)."""
    base, sep, length = scope.strip().partition("/")
    network = ip_to_int(base)
    if not sep:
        return network, default_length
    if not length.isdigit():
        raise ValueError(f"Bad mask length in {scope!r}")
    mask_length = int(length)
    mask_for(mask_length)
    return network, mask_length


def prefix_for(network: int, mask_length: int) -> str:
    """String prefix equivalent of an octet-aligned subnet: 10.120.26.0/24 -> '10.120.26.'"""
    if mask_length % 8:
        raise ValueError(f"/{mask_length} does not end on an octet boundary")
    octets = int_to_ip(network).split(".")[: mask_length // 8]
    return "".join(f"{o}." for o in octets)


def network_from_prefix(prefix: str) -> tuple[int, int]:
    """'10.120.26.' -> (10.120.26.0 as int, 24)"""
    octets = [o for o in prefix.strip().split(".") if o]
    if not 1 <= len(octets) <= 4:
        raise ValueError(f"Not an address prefix: {prefix!r}")
    padded = octets + ["0"] * (4 - len(octets))
    return ip_to_int(".".join(padded)), 8 * len(octets)


def extract_candidates(value: Any, item_key: Optional[str] = None) -> list[str]:
    """
    Candidate addresses held by one field.
    Strings are split on comma, semicolon and whitespace; lists are taken
    element-wise, reading item_key from dict elements.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [token for token in _SPLIT.split(value) if token]
    if isinstance(value, (list, tuple)):
        return list(_from_items(value, item_key))
    return [str(value)]


def _from_items(items: Iterable[Any], item_key: Optional[str]) -> Iterable[str]:
    for item in items:
        if isinstance(item, Mapping):
            item = item.get(item_key) if item_key else None
        yield from extract_candidates(item)
