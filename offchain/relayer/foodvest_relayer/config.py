"""
Configuration management for the FoodVest deposit relayer.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain import Network

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Intent limits
    min_amount: Decimal = Field(default=Decimal("10"), description="Minimum deposit in USDT")
    max_amount: Decimal = Field(default=Decimal("100000"), description="Maximum deposit in USDT")
    intent_ttl_minutes: int = Field(default=30, gt=0, description="Minutes before an unpaid intent expires")
    amount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Absolute slack when matching an on-chain amount to an intent",
    )

    # Poller
    poll_interval_seconds: int = Field(default=30, gt=0)
    transfer_page_size: int = Field(default=50, gt=0, description="Recent transfers fetched per network per cycle")

    # Explorer HTTP
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=3, ge=0, description="Connection retries per explorer request")

    # Database
    database_url: str = "sqlite:///./foodvest_deposits.db"

    # Networks to poll and accept (comma-separated)
    enabled_networks: str = "TRC20,BEP20,ERC20"

    # Tron (TronGrid)
    tron_api_url: str = "https://api.trongrid.io"
    tron_api_key: str = ""
    tron_usdt_contract: str = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
    tron_wallet_address: str = ""
    tron_min_confirmations: int = 12
    tron_decimals: int = 6

    # BNB Smart Chain (BscScan)
    bsc_api_url: str = "https://api.bscscan.com/api"
    bsc_api_key: str = ""
    bsc_usdt_contract: str = "0x55d398326f99059fF775485246999027B3197955"
    bsc_wallet_address: str = ""
    bsc_min_confirmations: int = 15
    bsc_decimals: int = 18
    bsc_chain_id: Optional[int] = None

    # Ethereum (Etherscan)
    eth_api_url: str = "https://api.etherscan.io/api"
    eth_api_key: str = ""
    eth_usdt_contract: str = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
    eth_wallet_address: str = ""
    eth_min_confirmations: int = 12
    eth_decimals: int = 6
    eth_chain_id: Optional[int] = None


class NetworkConfig(BaseModel):
    """Static per-network explorer and wallet configuration."""

    model_config = ConfigDict(frozen=True)

    network: Network
    name: str
    base_url: str
    api_key: str = ""
    contract_address: Optional[str] = None
    wallet_address: str
    min_confirmations: int = Field(ge=0)
    decimals: int = Field(ge=0)
    chain_id: Optional[int] = None


def _parse_networks(value: str) -> list[Network]:
    networks = []
    for item in value.split(","):
        item = item.strip()
        if item:
            networks.append(Network(item))
    return networks


def build_network_configs(settings: Settings) -> dict[Network, NetworkConfig]:
    """Build one NetworkConfig per enabled network from flat settings."""
    candidates = {
        Network.TRC20: NetworkConfig(
            network=Network.TRC20,
            name="Tron (TRC20)",
            base_url=settings.tron_api_url,
            api_key=settings.tron_api_key,
            contract_address=settings.tron_usdt_contract,
            wallet_address=settings.tron_wallet_address,
            min_confirmations=settings.tron_min_confirmations,
            decimals=settings.tron_decimals,
        ),
        Network.BEP20: NetworkConfig(
            network=Network.BEP20,
            name="BNB Smart Chain (BEP20)",
            base_url=settings.bsc_api_url,
            api_key=settings.bsc_api_key,
            contract_address=settings.bsc_usdt_contract,
            wallet_address=settings.bsc_wallet_address,
            min_confirmations=settings.bsc_min_confirmations,
            decimals=settings.bsc_decimals,
            chain_id=settings.bsc_chain_id,
        ),
        Network.ERC20: NetworkConfig(
            network=Network.ERC20,
            name="Ethereum (ERC20)",
            base_url=settings.eth_api_url,
            api_key=settings.eth_api_key,
            contract_address=settings.eth_usdt_contract,
            wallet_address=settings.eth_wallet_address,
            min_confirmations=settings.eth_min_confirmations,
            decimals=settings.eth_decimals,
            chain_id=settings.eth_chain_id,
        ),
    }

    configs: dict[Network, NetworkConfig] = {}
    for network in _parse_networks(settings.enabled_networks):
        network_config = candidates[network]
        if not network_config.wallet_address:
            # No destination wallet means nothing to deposit into
            logger.warning("network_wallet_not_configured", network=network.value)
            continue
        configs[network] = network_config
    return configs


@dataclass
class DepositConfig:
    """Full relayer configuration: global settings plus the immutable network map."""

    settings: Settings
    networks: dict[Network, NetworkConfig] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "DepositConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls.from_settings(settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DepositConfig":
        return cls(settings=settings, networks=build_network_configs(settings))

    @property
    def supported_networks(self) -> list[Network]:
        return list(self.networks)

    @property
    def intent_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.intent_ttl_minutes)

    def is_supported(self, network: object) -> bool:
        try:
            return Network(network) in self.networks
        except ValueError:
            return False

    def network(self, network: Network) -> NetworkConfig:
        """Get the configuration for a supported network."""
        try:
            return self.networks[Network(network)]
        except (KeyError, ValueError):
            raise KeyError(f"Network not configured: {network}") from None
