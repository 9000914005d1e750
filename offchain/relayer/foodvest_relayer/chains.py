"""
Chain adapter base: the uniform capability set every explorer client exposes.

Each supported network has one concrete adapter (TronGrid, Etherscan,
BscScan). The reconciliation engine only talks to this interface.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

import httpx
import structlog

from .address import addresses_equal
from .config import NetworkConfig
from .domain import BlockchainTransfer, Network, TransferStatus, TransferValidation, as_decimal
from .errors import UpstreamError

logger = structlog.get_logger()

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

DEFAULT_TOLERANCE = Decimal("0.01")


def parse_raw_value(value: Union[int, str]) -> int:
    """
    Parse an on-chain integer amount.

    Explorers return decimal strings, JSON integers, or 0x-prefixed hex.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid raw value: {value!r}")
    if isinstance(value, int):
        parsed = value
    else:
        text = str(value).strip()
        if text.lower().startswith("0x"):
            parsed = int(text, 16) if len(text) > 2 else 0
        else:
            try:
                dec_value = Decimal(text)
            except InvalidOperation:
                raise ValueError(f"Invalid raw value: {value!r}") from None
            if not dec_value.is_finite() or dec_value != dec_value.to_integral_value():
                raise ValueError(f"Raw value {value} is not an integer")
            parsed = int(dec_value)

    if parsed < 0:
        raise ValueError(f"Raw value {value} is negative")
    return parsed


def to_token_amount(raw_value: Union[int, str], decimals: int) -> Decimal:
    """
    Convert a smallest-unit amount to human USDT units with exact precision.

    Examples:
        >>> to_token_amount("50000000", 6)
        Decimal('50.000000')
        >>> to_token_amount("0x2faf080", 6)
        Decimal('50.000000')
    """
    return Decimal(parse_raw_value(raw_value)).scaleb(-decimals)


def confirmations_between(block_number: Optional[int], current_height: int) -> int:
    """Confirmation depth of a block given the chain tip; 0 when not yet mined."""
    if block_number is None or block_number <= 0:
        return 0
    return max(current_height - block_number + 1, 0)


class ChainAdapter(ABC):
    """
    Translate one explorer's HTTP API into the uniform capability set.

    Concrete adapters implement the four primitives; transfer validation
    is composed from them here so every chain applies the same rules.
    """

    def __init__(
        self,
        config: NetworkConfig,
        timeout: float = 10.0,
        max_retries: int = 3,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.client = httpx.Client(
            timeout=timeout,
            transport=httpx.HTTPTransport(retries=max_retries),
            headers=self._default_headers(),
        )

    @property
    def network(self) -> Network:
        return self.config.network

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _decode(self, response: httpx.Response) -> Any:
        response.raise_for_status()
        return response.json()

    def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET a JSON document, mapping every failure to UpstreamError."""
        try:
            response = self.client.get(url, params=params)
            return self._decode(response)
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                self.network.value,
                f"HTTP {e.response.status_code} from {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(self.network.value, f"request to {url} failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(self.network.value, f"invalid JSON from {url}") from e

    def _post_json(self, url: str, payload: dict[str, Any]) -> Any:
        """POST a JSON body and decode the JSON response."""
        try:
            response = self.client.post(url, json=payload)
            return self._decode(response)
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                self.network.value,
                f"HTTP {e.response.status_code} from {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(self.network.value, f"request to {url} failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(self.network.value, f"invalid JSON from {url}") from e

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    @abstractmethod
    def get_balance(self, address: str) -> Decimal:
        """USDT balance of an address in human units."""

    @abstractmethod
    def list_incoming_transfers(self, address: str, limit: int = 50) -> list[BlockchainTransfer]:
        """Recent USDT transfers received by address, most recent first."""

    @abstractmethod
    def get_transfer_by_hash(self, tx_hash: str) -> Optional[BlockchainTransfer]:
        """Look up one USDT transfer; None when the explorer does not know it."""

    @abstractmethod
    def get_current_block_height(self) -> int:
        """Current chain tip height."""

    # ------------------------------------------------------------------
    # Composed operations
    # ------------------------------------------------------------------

    def to_amount(self, raw_value: Union[int, str]) -> Decimal:
        return to_token_amount(raw_value, self.config.decimals)

    def validate_transfer(
        self,
        tx_hash: str,
        expected_amount: Decimal,
        expected_recipient: str,
        required_confirmations: Optional[int] = None,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ) -> TransferValidation:
        """
        Check that a transfer pays expected_amount to expected_recipient and is final.

        Insufficient confirmations yield an invalid result that still carries
        the transfer and its depth so the caller can record partial progress.
        """
        if required_confirmations is None:
            required_confirmations = self.config.min_confirmations

        try:
            transfer = self.get_transfer_by_hash(tx_hash)
        except UpstreamError as e:
            logger.error(
                "transfer_lookup_failed",
                network=self.network.value,
                tx_hash=tx_hash,
                error=str(e),
            )
            return TransferValidation(is_valid=False, reason=str(e))

        if transfer is None:
            return TransferValidation(is_valid=False, reason="Transaction not found")

        if not addresses_equal(transfer.to_address, expected_recipient):
            return TransferValidation(is_valid=False, reason="Invalid recipient address")

        if transfer.status != TransferStatus.SUCCESS:
            return TransferValidation(is_valid=False, reason="Transaction failed")

        try:
            amount = self.to_amount(transfer.raw_value)
        except ValueError as e:
            return TransferValidation(is_valid=False, reason=str(e))

        if abs(amount - as_decimal(expected_amount)) > tolerance:
            return TransferValidation(
                is_valid=False,
                reason=f"Amount mismatch. Expected: {expected_amount}, Got: {amount}",
            )

        if transfer.confirmations < required_confirmations:
            return TransferValidation(
                is_valid=False,
                reason=(
                    f"Insufficient confirmations. Required: {required_confirmations}, "
                    f"Got: {transfer.confirmations}"
                ),
                transfer=transfer,
                normalized_amount=amount,
                confirmations=transfer.confirmations,
            )

        return TransferValidation(
            is_valid=True,
            transfer=transfer,
            normalized_amount=amount,
            confirmations=transfer.confirmations,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
