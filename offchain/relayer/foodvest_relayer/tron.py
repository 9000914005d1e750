"""
Tron USDT (TRC20) interaction via the TronGrid API.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from .address import addresses_equal, topic_to_hex_address, tron_base58_to_hex, tron_hex_to_base58
from .chains import TRANSFER_EVENT_TOPIC, ChainAdapter, confirmations_between, parse_raw_value
from .domain import BlockchainTransfer, TransferStatus
from .errors import UpstreamError

logger = structlog.get_logger()

# Transaction infos are immutable once mined; keep a bounded per-adapter cache.
TX_INFO_CACHE_SIZE = 1024


class TronAdapter(ChainAdapter):
    """Client for TronGrid's v1 REST and /wallet HTTP APIs."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._tx_info_cache: dict[str, dict[str, Any]] = {}

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        if self.config.api_key:
            headers["TRON-PRO-API-KEY"] = self.config.api_key
        return headers

    @property
    def _contract_hex(self) -> Optional[str]:
        """USDT contract as 20-byte hex, the form event logs use."""
        if not self.config.contract_address:
            return None
        full = tron_base58_to_hex(self.config.contract_address)
        return full[2:] if full else None

    def _check_v1(self, data: Any, what: str) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise UpstreamError(self.network.value, f"unexpected {what} payload")
        if data.get("success") is False:
            raise UpstreamError(self.network.value, data.get("error") or f"failed to fetch {what}")
        return data

    def _check_wallet(self, data: Any, what: str) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise UpstreamError(self.network.value, f"unexpected {what} payload")
        if data.get("Error"):
            raise UpstreamError(self.network.value, str(data["Error"]))
        return data

    # ------------------------------------------------------------------
    # Raw lookups
    # ------------------------------------------------------------------

    def get_transaction_info(self, tx_hash: str) -> dict[str, Any]:
        """
        Get execution info for a transaction (block, receipt, event logs).

        Returns an empty dict when the transaction is unknown or not yet mined.
        """
        cached = self._tx_info_cache.get(tx_hash)
        if cached is not None:
            return cached

        data = self._post_json(
            f"{self.base_url}/wallet/gettransactioninfobyid",
            {"value": tx_hash},
        )
        info = self._check_wallet(data, "transaction info")

        if info.get("blockNumber"):
            if len(self._tx_info_cache) >= TX_INFO_CACHE_SIZE:
                self._tx_info_cache.pop(next(iter(self._tx_info_cache)))
            self._tx_info_cache[tx_hash] = info
        return info

    def _status_from_info(self, info: dict[str, Any]) -> TransferStatus:
        if not info.get("blockNumber"):
            return TransferStatus.PENDING
        receipt_result = info.get("receipt", {}).get("result")
        if info.get("result") == "FAILED" or (receipt_result and receipt_result != "SUCCESS"):
            return TransferStatus.FAILED
        return TransferStatus.SUCCESS

    def _find_transfer_log(self, info: dict[str, Any]) -> Optional[tuple[str, str, int]]:
        """Return (from, to, value) of the USDT Transfer event, preferring one paid to our wallet."""
        contract_hex = self._contract_hex
        candidates = []

        for log in info.get("log", []):
            topics = log.get("topics", [])
            if len(topics) < 3 or topics[0].lower().removeprefix("0x") != TRANSFER_EVENT_TOPIC:
                continue
            log_address = log.get("address", "").lower().removeprefix("0x")
            if contract_hex and log_address[-40:] != contract_hex:
                continue

            from_address = tron_hex_to_base58(topic_to_hex_address(topics[1]))
            to_address = tron_hex_to_base58(topic_to_hex_address(topics[2]))
            value = int(log.get("data") or "0", 16)
            candidates.append((from_address, to_address, value))

        for candidate in candidates:
            if addresses_equal(candidate[1], self.config.wallet_address):
                return candidate
        return candidates[0] if candidates else None

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    def get_balance(self, address: str) -> Decimal:
        """Get USDT balance of an address."""
        data = self._check_v1(
            self._get_json(f"{self.base_url}/v1/accounts/{address}"),
            "account",
        )

        accounts = data.get("data") or []
        if not accounts:
            # Account not activated yet
            return Decimal(0)

        for entry in accounts[0].get("trc20", []):
            if self.config.contract_address in entry:
                return self.to_amount(entry[self.config.contract_address])
        return Decimal(0)

    def list_incoming_transfers(self, address: str, limit: int = 50) -> list[BlockchainTransfer]:
        """
        Get recent USDT transfers to an address (latest first).

        The TRC20 listing carries neither block number nor execution status,
        so each entry is completed from its transaction info.
        """
        params: dict[str, Any] = {"limit": limit, "only_to": "true"}
        if self.config.contract_address:
            params["contract_address"] = self.config.contract_address

        data = self._check_v1(
            self._get_json(f"{self.base_url}/v1/accounts/{address}/transactions/trc20", params),
            "transfers",
        )
        items = data.get("data") or []
        if not items:
            return []

        current_height = self.get_current_block_height()
        transfers = []
        for item in items:
            if not addresses_equal(item.get("to"), address):
                continue

            try:
                transfers.append(self._transfer_from_item(item, current_height))
            except (KeyError, TypeError, ValueError) as e:
                raise UpstreamError(self.network.value, f"malformed transfer item: {e!r}") from e
        return transfers

    def _transfer_from_item(self, item: dict[str, Any], current_height: int) -> BlockchainTransfer:
        tx_hash = item["transaction_id"]
        block_number = item.get("block")
        status = TransferStatus.SUCCESS if block_number else TransferStatus.PENDING
        if not block_number:
            info = self.get_transaction_info(tx_hash)
            block_number = info.get("blockNumber")
            status = self._status_from_info(info)
        if block_number is not None:
            block_number = int(block_number)

        return BlockchainTransfer(
            hash=tx_hash,
            from_address=item.get("from", ""),
            to_address=item["to"],
            raw_value=str(parse_raw_value(item.get("value", "0"))),
            block_number=block_number,
            timestamp_millis=item.get("block_timestamp"),
            status=status,
            confirmations=confirmations_between(block_number, current_height),
        )

    def get_transfer_by_hash(self, tx_hash: str) -> Optional[BlockchainTransfer]:
        """Get a USDT transfer by transaction id."""
        info = self.get_transaction_info(tx_hash)
        if not info:
            return None

        parsed = self._find_transfer_log(info)
        if parsed is None:
            logger.debug("not_a_usdt_transfer", network=self.network.value, tx_hash=tx_hash)
            return None
        from_address, to_address, value = parsed

        block_number = info.get("blockNumber")
        current_height = self.get_current_block_height()

        return BlockchainTransfer(
            hash=tx_hash,
            from_address=from_address,
            to_address=to_address,
            raw_value=str(value),
            block_number=block_number,
            timestamp_millis=info.get("blockTimeStamp"),
            status=self._status_from_info(info),
            confirmations=confirmations_between(block_number, current_height),
        )

    def get_current_block_height(self) -> int:
        """Get current block height."""
        data = self._check_wallet(
            self._post_json(f"{self.base_url}/wallet/getnowblock", {}),
            "latest block",
        )
        number = data.get("block_header", {}).get("raw_data", {}).get("number")
        if number is None:
            raise UpstreamError(self.network.value, "latest block has no number")
        return int(number)
