"""
ERC-20 USDT interaction via Etherscan-compatible explorer APIs.

Etherscan and BscScan share the same query-string API: `module=account`
endpoints wrap results in a {status, message, result} envelope while
`module=proxy` endpoints return raw JSON-RPC responses.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from .address import addresses_equal, topic_to_hex_address
from .chains import TRANSFER_EVENT_TOPIC, ChainAdapter, confirmations_between, parse_raw_value
from .domain import BlockchainTransfer, TransferStatus
from .errors import UpstreamError

logger = structlog.get_logger()

# Account endpoints report an empty history as an error envelope.
EMPTY_RESULT_MESSAGES = ("No transactions found", "No records found")

# transfer(address,uint256)
TRANSFER_SELECTOR = "a9059cbb"


class EtherscanAdapter(ChainAdapter):
    """Client for the Etherscan API."""

    def _params(self, **params: Any) -> dict[str, Any]:
        if self.config.chain_id is not None:
            params["chainid"] = self.config.chain_id
        if self.config.api_key:
            params["apikey"] = self.config.api_key
        return params

    def _account_call(self, what: str, **params: Any) -> Any:
        data = self._get_json(self.base_url, self._params(module="account", **params))
        if not isinstance(data, dict):
            raise UpstreamError(self.network.value, f"unexpected {what} payload")

        if data.get("status") == "1":
            return data.get("result")

        message = data.get("message") or ""
        result = data.get("result")
        if any(m in message for m in EMPTY_RESULT_MESSAGES) or result == []:
            return []
        raise UpstreamError(self.network.value, f"failed to fetch {what}: {message} {result}".strip())

    def _proxy_call(self, action: str, **params: Any) -> Any:
        data = self._get_json(self.base_url, self._params(module="proxy", action=action, **params))
        if not isinstance(data, dict):
            raise UpstreamError(self.network.value, f"unexpected {action} payload")

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamError(self.network.value, f"{action}: {message}")
        # Rate limiting and bad keys come back in the account-style envelope
        if data.get("status") == "0":
            raise UpstreamError(self.network.value, f"{action}: {data.get('result') or data.get('message')}")
        return data.get("result")

    # ------------------------------------------------------------------
    # Transfer decoding
    # ------------------------------------------------------------------

    def _find_transfer_log(self, logs: list[dict[str, Any]]) -> Optional[tuple[str, str, int]]:
        """Return (from, to, value) of the USDT Transfer log, preferring one paid to our wallet."""
        contract = self.config.contract_address
        candidates = []

        for log in logs:
            topics = log.get("topics", [])
            if len(topics) < 3 or topics[0].lower().removeprefix("0x") != TRANSFER_EVENT_TOPIC:
                continue
            if contract and not addresses_equal(log.get("address"), contract):
                continue
            candidates.append(
                (
                    "0x" + topic_to_hex_address(topics[1]),
                    "0x" + topic_to_hex_address(topics[2]),
                    int(log.get("data") or "0x0", 16),
                )
            )

        for candidate in candidates:
            if addresses_equal(candidate[1], self.config.wallet_address):
                return candidate
        return candidates[0] if candidates else None

    def _decode_transfer_input(self, tx: dict[str, Any]) -> Optional[tuple[str, str, int]]:
        """Decode a transfer(address,uint256) call; used when a reverted tx emitted no logs."""
        if not addresses_equal(tx.get("to"), self.config.contract_address):
            return None
        data = (tx.get("input") or "").lower().removeprefix("0x")
        if not data.startswith(TRANSFER_SELECTOR) or len(data) < 8 + 128:
            return None
        to_address = "0x" + data[8 + 24 : 8 + 64]
        value = int(data[8 + 64 : 8 + 128], 16)
        return tx.get("from", ""), to_address, value

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    def get_balance(self, address: str) -> Decimal:
        """Get USDT balance of an address."""
        result = self._account_call(
            "balance",
            action="tokenbalance",
            contractaddress=self.config.contract_address,
            address=address,
            tag="latest",
        )
        if result == []:
            return Decimal(0)
        return self.to_amount(result)

    def list_incoming_transfers(self, address: str, limit: int = 50) -> list[BlockchainTransfer]:
        """Get recent USDT transfers to an address (latest first)."""
        result = self._account_call(
            "transfers",
            action="tokentx",
            contractaddress=self.config.contract_address,
            address=address,
            page=1,
            offset=limit,
            sort="desc",
        )

        transfers = []
        for tx in result or []:
            # tokentx also lists outgoing transfers
            if not addresses_equal(tx.get("to"), address):
                continue

            try:
                transfers.append(self._transfer_from_tokentx(tx))
            except (KeyError, TypeError, ValueError) as e:
                raise UpstreamError(self.network.value, f"malformed transfer item: {e!r}") from e
        return transfers

    @staticmethod
    def _transfer_from_tokentx(tx: dict[str, Any]) -> BlockchainTransfer:
        is_error = tx.get("isError", "0")
        return BlockchainTransfer(
            hash=tx["hash"],
            from_address=tx.get("from", ""),
            to_address=tx["to"],
            raw_value=str(parse_raw_value(tx.get("value", "0"))),
            block_number=int(tx["blockNumber"]) if tx.get("blockNumber") else None,
            timestamp_millis=int(tx["timeStamp"]) * 1000 if tx.get("timeStamp") else None,
            status=TransferStatus.SUCCESS if is_error == "0" else TransferStatus.FAILED,
            confirmations=int(tx.get("confirmations") or 0),
        )

    def get_transfer_by_hash(self, tx_hash: str) -> Optional[BlockchainTransfer]:
        """
        Get a USDT transfer by transaction hash.

        The receipt gives execution status, block, and the Transfer log;
        confirmations are derived from the current block height.
        """
        receipt = self._proxy_call("eth_getTransactionReceipt", txhash=tx_hash)
        if not receipt:
            tx = self._proxy_call("eth_getTransactionByHash", txhash=tx_hash)
            if not tx:
                return None
            # Known but not mined yet
            parsed = self._decode_transfer_input(tx)
            if parsed is None:
                return None
            from_address, to_address, value = parsed
            return BlockchainTransfer(
                hash=tx_hash,
                from_address=from_address,
                to_address=to_address,
                raw_value=str(value),
                block_number=None,
                timestamp_millis=None,
                status=TransferStatus.PENDING,
                confirmations=0,
            )

        succeeded = receipt.get("status") == "0x1"
        parsed = self._find_transfer_log(receipt.get("logs", []))
        if parsed is None and not succeeded:
            tx = self._proxy_call("eth_getTransactionByHash", txhash=tx_hash)
            parsed = self._decode_transfer_input(tx) if tx else None
        if parsed is None:
            logger.debug("not_a_usdt_transfer", network=self.network.value, tx_hash=tx_hash)
            return None
        from_address, to_address, value = parsed

        block_number = int(receipt["blockNumber"], 16) if receipt.get("blockNumber") else None
        current_height = self.get_current_block_height()

        return BlockchainTransfer(
            hash=tx_hash,
            from_address=from_address,
            to_address=to_address,
            raw_value=str(value),
            block_number=block_number,
            timestamp_millis=None,
            status=TransferStatus.SUCCESS if succeeded else TransferStatus.FAILED,
            confirmations=confirmations_between(block_number, current_height),
        )

    def get_current_block_height(self) -> int:
        """Get current block height."""
        result = self._proxy_call("eth_blockNumber")
        if not result:
            raise UpstreamError(self.network.value, "eth_blockNumber returned no result")
        return int(result, 16)


class BscScanAdapter(EtherscanAdapter):
    """Client for the BscScan API (Etherscan-compatible, BEP-20 USDT uses 18 decimals)."""
