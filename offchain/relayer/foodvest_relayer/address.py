"""
Address helpers for the supported chains.

Tron addresses are base58check strings (T...) over a 21-byte payload
whose first byte is 0x41. Event logs carry the 20-byte tail as hex,
so log decoding needs base58check in both directions.
"""

import hashlib
from typing import Optional

# Base58 charset
BASE58_CHARSET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

TRON_ADDRESS_PREFIX = 0x41


def _checksum(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[:4]


def encode_base58check(payload: bytes) -> str:
    """Encode payload with a 4-byte double-SHA256 checksum."""
    combined = payload + _checksum(payload)

    num = int.from_bytes(combined, "big")
    chars = []
    while num > 0:
        num, rem = divmod(num, 58)
        chars.append(BASE58_CHARSET[rem])

    # Leading zero bytes are encoded as '1'
    pad = len(combined) - len(combined.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(chars))


def decode_base58check(addr: str) -> Optional[bytes]:
    """
    Decode a base58check encoded string.

    Returns payload (with version byte, without checksum) or None if invalid.
    """
    if not addr:
        return None

    num = 0
    for c in addr:
        if c not in BASE58_CHARSET:
            return None
        num = num * 58 + BASE58_CHARSET.index(c)

    pad = len(addr) - len(addr.lstrip("1"))
    raw = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    combined = b"\x00" * pad + raw
    if len(combined) < 5:
        return None

    data, checksum = combined[:-4], combined[-4:]
    if checksum != _checksum(data):
        return None
    return data


def tron_hex_to_base58(hex_address: str) -> str:
    """
    Convert a hex Tron address to base58check.

    Accepts the 21-byte form (41...), the bare 20-byte form used in
    event logs, and either with a 0x prefix.
    """
    hex_address = hex_address.lower()
    if hex_address.startswith("0x"):
        hex_address = hex_address[2:]

    raw = bytes.fromhex(hex_address)
    if len(raw) == 20:
        raw = bytes([TRON_ADDRESS_PREFIX]) + raw
    if len(raw) != 21 or raw[0] != TRON_ADDRESS_PREFIX:
        raise ValueError(f"Not a Tron address: {hex_address}")
    return encode_base58check(raw)


def tron_base58_to_hex(address: str) -> Optional[str]:
    """Convert a base58check Tron address to its 21-byte hex form, or None if invalid."""
    payload = decode_base58check(address)
    if payload is None or len(payload) != 21 or payload[0] != TRON_ADDRESS_PREFIX:
        return None
    return payload.hex()


def topic_to_hex_address(topic: str) -> str:
    """Extract the 20-byte address from a 32-byte indexed log topic."""
    topic = topic.lower()
    if topic.startswith("0x"):
        topic = topic[2:]
    return topic[-40:]


def addresses_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address comparison."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()
