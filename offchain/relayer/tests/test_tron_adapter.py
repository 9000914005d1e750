from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

import httpx
import pytest

from foodvest_relayer.address import tron_hex_to_base58
from foodvest_relayer.chains import TRANSFER_EVENT_TOPIC
from foodvest_relayer.config import NetworkConfig
from foodvest_relayer.domain import Network, TransferStatus
from foodvest_relayer.errors import UpstreamError
from foodvest_relayer.tron import TronAdapter

BASE_URL = "https://api.trongrid.io"
USDT = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
USDT_LOG_ADDRESS = "a614f803b6fd780986a42c78ec9c7f77e6ded13c"
WALLET_HEX = "22" * 20
SENDER_HEX = "33" * 20
WALLET = tron_hex_to_base58(WALLET_HEX)
SENDER = tron_hex_to_base58(SENDER_HEX)


class _FakeResponse:
    def __init__(self, payload: Any = None, text: str = ""):
        self._payload = payload
        self.text = text

    def raise_for_status(self) -> None:
        return

    def json(self) -> Any:
        return self._payload


def _adapter(api_key: str = "") -> TronAdapter:
    return TronAdapter(
        NetworkConfig(
            network=Network.TRC20,
            name="Tron (TRC20)",
            base_url=BASE_URL,
            api_key=api_key,
            contract_address=USDT,
            wallet_address=WALLET,
            min_confirmations=12,
            decimals=6,
        )
    )


def _topic(hex_address: str) -> str:
    return "0" * 24 + hex_address


def _tx_info(block_number: Optional[int] = 990, result: str = "SUCCESS", value: int = 50_000_000) -> dict[str, Any]:
    info: dict[str, Any] = {
        "id": "ab" * 32,
        "receipt": {"result": result},
        "log": [
            {
                "address": USDT_LOG_ADDRESS,
                "topics": [TRANSFER_EVENT_TOPIC, _topic(SENDER_HEX), _topic(WALLET_HEX)],
                "data": f"{value:064x}",
            }
        ],
    }
    if block_number is not None:
        info["blockNumber"] = block_number
        info["blockTimeStamp"] = 1_700_000_000_000
    return info


class _FakeTronGrid:
    """Routes adapter GET/POST calls to canned payloads and records them."""

    def __init__(self, height: int = 1000):
        self.height = height
        self.get_payloads: dict[str, Any] = {}
        self.tx_infos: dict[str, Any] = {}
        self.get_calls: list[tuple[str, Optional[dict[str, Any]]]] = []
        self.post_calls: list[tuple[str, dict[str, Any]]] = []

    def get(self, url: str, params: Optional[dict[str, Any]] = None) -> _FakeResponse:
        self.get_calls.append((url, params))
        if url not in self.get_payloads:
            raise AssertionError(f"unexpected url: {url}")
        return _FakeResponse(payload=self.get_payloads[url])

    def post(self, url: str, json: Optional[dict[str, Any]] = None) -> _FakeResponse:
        self.post_calls.append((url, json or {}))
        if url.endswith("/wallet/getnowblock"):
            return _FakeResponse(payload={"block_header": {"raw_data": {"number": self.height}}})
        if url.endswith("/wallet/gettransactioninfobyid"):
            return _FakeResponse(payload=self.tx_infos.get(json["value"], {}))
        raise AssertionError(f"unexpected url: {url}")

    def install(self, adapter: TronAdapter) -> None:
        adapter.client.get = self.get  # type: ignore[assignment]
        adapter.client.post = self.post  # type: ignore[assignment]


def test_api_key_header() -> None:
    adapter = _adapter(api_key="secret")
    assert adapter.client.headers["TRON-PRO-API-KEY"] == "secret"
    assert "TRON-PRO-API-KEY" not in _adapter().client.headers


def test_current_block_height() -> None:
    adapter = _adapter()
    fake = _FakeTronGrid(height=61_000_000)
    fake.install(adapter)

    assert adapter.get_current_block_height() == 61_000_000
    assert fake.post_calls == [(f"{BASE_URL}/wallet/getnowblock", {})]


def test_current_block_height_missing_number() -> None:
    adapter = _adapter()
    adapter.client.post = lambda url, json=None: _FakeResponse(payload={})  # type: ignore[assignment]

    with pytest.raises(UpstreamError):
        adapter.get_current_block_height()


class TestBalance:
    """Tests for TRC20 balance lookup."""

    def test_balance_from_trc20_list(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[f"{BASE_URL}/v1/accounts/{WALLET}"] = {
            "success": True,
            "data": [{"trc20": [{"TXLAQ63Xg1NAzckPwKHvzw7CSEmLMEqcdj": "1"}, {USDT: "1234500000"}]}],
        }
        fake.install(adapter)

        assert adapter.get_balance(WALLET) == Decimal("1234.5")

    def test_unactivated_account_has_zero_balance(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[f"{BASE_URL}/v1/accounts/{WALLET}"] = {"success": True, "data": []}
        fake.install(adapter)

        assert adapter.get_balance(WALLET) == 0

    def test_error_payload_raises(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[f"{BASE_URL}/v1/accounts/{WALLET}"] = {"success": False, "error": "rate limited"}
        fake.install(adapter)

        with pytest.raises(UpstreamError, match="rate limited"):
            adapter.get_balance(WALLET)


class TestIncomingTransfers:
    """Tests for the TRC20 transfer listing."""

    LIST_URL = f"{BASE_URL}/v1/accounts/{WALLET}/transactions/trc20"

    def test_listing_resolves_block_and_status(self):
        adapter = _adapter()
        fake = _FakeTronGrid(height=1000)
        fake.get_payloads[self.LIST_URL] = {
            "success": True,
            "data": [
                {
                    "transaction_id": "aa" * 32,
                    "from": SENDER,
                    "to": WALLET,
                    "value": "50000000",
                    "block_timestamp": 1_700_000_000_000,
                    "token_info": {"address": USDT, "decimals": 6},
                },
                {
                    # Outgoing entry, filtered out
                    "transaction_id": "bb" * 32,
                    "from": WALLET,
                    "to": SENDER,
                    "value": "1",
                    "block_timestamp": 1_700_000_000_000,
                },
            ],
        }
        fake.tx_infos["aa" * 32] = _tx_info(block_number=990)
        fake.install(adapter)

        transfers = adapter.list_incoming_transfers(WALLET, limit=50)

        assert len(transfers) == 1
        transfer = transfers[0]
        assert transfer.hash == "aa" * 32
        assert transfer.raw_value == "50000000"
        assert transfer.block_number == 990
        assert transfer.confirmations == 11
        assert transfer.status == TransferStatus.SUCCESS
        assert transfer.timestamp_millis == 1_700_000_000_000

        url, params = fake.get_calls[0]
        assert url == self.LIST_URL
        assert params == {"limit": 50, "only_to": "true", "contract_address": USDT}

    def test_unmined_transfer_is_pending(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[self.LIST_URL] = {
            "success": True,
            "data": [{"transaction_id": "cc" * 32, "from": SENDER, "to": WALLET, "value": "5"}],
        }
        fake.install(adapter)

        [transfer] = adapter.list_incoming_transfers(WALLET)

        assert transfer.status == TransferStatus.PENDING
        assert transfer.block_number is None
        assert transfer.confirmations == 0

    def test_empty_listing_is_not_an_error(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[self.LIST_URL] = {"success": True, "data": []}
        fake.install(adapter)

        assert adapter.list_incoming_transfers(WALLET) == []
        # No height lookup when there is nothing to date
        assert fake.post_calls == []

    def test_error_payload_raises(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[self.LIST_URL] = {"success": False, "error": "bad address"}
        fake.install(adapter)

        with pytest.raises(UpstreamError):
            adapter.list_incoming_transfers(WALLET)

    @pytest.mark.parametrize(
        "item",
        [
            {"from": SENDER, "to": WALLET, "value": "12500000", "block": 990},
            {"transaction_id": "dd" * 32, "from": SENDER, "to": WALLET, "value": "12.5", "block": 990},
            {"transaction_id": "dd" * 32, "from": SENDER, "to": WALLET, "value": "1", "block": "latest"},
        ],
    )
    def test_malformed_item_raises_upstream_error(self, item):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.get_payloads[self.LIST_URL] = {"success": True, "data": [item]}
        fake.install(adapter)

        with pytest.raises(UpstreamError, match="malformed transfer item") as excinfo:
            adapter.list_incoming_transfers(WALLET)
        assert excinfo.value.network == "TRC20"


class TestTransferByHash:
    """Tests for transaction info decoding."""

    def test_decodes_transfer_event(self):
        adapter = _adapter()
        fake = _FakeTronGrid(height=1001)
        fake.tx_infos["aa" * 32] = _tx_info(block_number=990)
        fake.install(adapter)

        transfer = adapter.get_transfer_by_hash("aa" * 32)

        assert transfer is not None
        assert transfer.from_address == SENDER
        assert transfer.to_address == WALLET
        assert transfer.raw_value == "50000000"
        assert transfer.confirmations == 12
        assert transfer.status == TransferStatus.SUCCESS

    def test_unknown_hash_is_not_found(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.install(adapter)

        assert adapter.get_transfer_by_hash("dd" * 32) is None

    def test_reverted_transaction_is_failed(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.tx_infos["aa" * 32] = _tx_info(result="OUT_OF_ENERGY")
        fake.install(adapter)

        transfer = adapter.get_transfer_by_hash("aa" * 32)

        assert transfer is not None
        assert transfer.status == TransferStatus.FAILED

    def test_other_token_logs_ignored(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        info = _tx_info()
        info["log"][0]["address"] = "44" * 20
        fake.tx_infos["aa" * 32] = info
        fake.install(adapter)

        assert adapter.get_transfer_by_hash("aa" * 32) is None

    def test_mined_info_is_cached(self):
        adapter = _adapter()
        fake = _FakeTronGrid()
        fake.tx_infos["aa" * 32] = _tx_info()
        fake.install(adapter)

        adapter.get_transaction_info("aa" * 32)
        adapter.get_transaction_info("aa" * 32)

        info_calls = [c for c in fake.post_calls if c[0].endswith("gettransactioninfobyid")]
        assert len(info_calls) == 1


def test_http_error_maps_to_upstream_error() -> None:
    adapter = _adapter()

    def fake_post(url: str, json: Optional[dict[str, Any]] = None) -> httpx.Response:
        return httpx.Response(503, request=httpx.Request("POST", url))

    adapter.client.post = fake_post  # type: ignore[assignment]

    with pytest.raises(UpstreamError) as excinfo:
        adapter.get_current_block_height()

    assert excinfo.value.status_code == 503
    assert excinfo.value.network == "TRC20"


def test_transport_error_maps_to_upstream_error() -> None:
    adapter = _adapter()

    def fake_post(url: str, json: Optional[dict[str, Any]] = None) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out")

    adapter.client.post = fake_post  # type: ignore[assignment]

    with pytest.raises(UpstreamError, match="timed out"):
        adapter.get_current_block_height()
