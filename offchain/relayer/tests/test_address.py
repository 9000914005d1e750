"""
Tests for chain address helpers.
"""

from foodvest_relayer.address import (
    addresses_equal,
    decode_base58check,
    encode_base58check,
    topic_to_hex_address,
    tron_base58_to_hex,
    tron_hex_to_base58,
)

USDT_TRC20 = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
USDT_TRC20_HEX = "41a614f803b6fd780986a42c78ec9c7f77e6ded13c"


class TestTronAddresses:
    """Tests for base58check <-> hex conversion."""

    def test_base58_to_hex(self):
        """Known USDT contract converts to its 21-byte hex form."""
        assert tron_base58_to_hex(USDT_TRC20) == USDT_TRC20_HEX

    def test_hex_to_base58_full_form(self):
        assert tron_hex_to_base58(USDT_TRC20_HEX) == USDT_TRC20

    def test_hex_to_base58_log_form(self):
        """Event logs carry only the 20-byte tail, sometimes 0x-prefixed."""
        assert tron_hex_to_base58(USDT_TRC20_HEX[2:]) == USDT_TRC20
        assert tron_hex_to_base58("0x" + USDT_TRC20_HEX[2:]) == USDT_TRC20

    def test_roundtrip_arbitrary_payload(self):
        tail = "11" * 20
        address = tron_hex_to_base58(tail)
        assert address.startswith("T")
        assert tron_base58_to_hex(address) == "41" + tail

    def test_invalid_checksum_rejected(self):
        """Changing one character breaks the checksum."""
        broken = USDT_TRC20[:-1] + ("u" if USDT_TRC20[-1] != "u" else "v")
        assert tron_base58_to_hex(broken) is None

    def test_invalid_characters_rejected(self):
        assert decode_base58check("T0OIl") is None
        assert decode_base58check("") is None

    def test_non_tron_payload_rejected(self):
        """A valid base58check string with another version byte is not a Tron address."""
        bitcoin_style = encode_base58check(b"\x00" + b"\x22" * 20)
        assert bitcoin_style.startswith("1")
        assert tron_base58_to_hex(bitcoin_style) is None

    def test_wrong_length_hex_rejected(self):
        import pytest

        with pytest.raises(ValueError):
            tron_hex_to_base58("41" + "00" * 10)


def test_topic_to_hex_address_takes_last_20_bytes() -> None:
    topic = "0x000000000000000000000000" + "ab" * 20
    assert topic_to_hex_address(topic) == "ab" * 20


def test_addresses_equal_is_case_insensitive() -> None:
    assert addresses_equal("0xABCDEF", "0xabcdef")
    assert addresses_equal(" 0xabc ", "0xABC")
    assert not addresses_equal("0xabc", "0xabd")


def test_addresses_equal_rejects_empty() -> None:
    assert not addresses_equal("", "")
    assert not addresses_equal(None, "0xabc")
