from __future__ import annotations

import pytest

from foodvest_relayer.config import DepositConfig, Settings
from foodvest_relayer.db import IntentStore
from foodvest_relayer.domain import Network
from foodvest_relayer.service import DepositService
from foodvest_relayer.settlement import InMemoryBalanceLedger

from fakes import BSC_WALLET, ETH_WALLET, TRON_WALLET, FakeAdapter, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        tron_wallet_address=TRON_WALLET,
        bsc_wallet_address=BSC_WALLET,
        eth_wallet_address=ETH_WALLET,
    )


@pytest.fixture
def config(settings: Settings) -> DepositConfig:
    return DepositConfig.from_settings(settings)


@pytest.fixture
def store(clock: FakeClock) -> IntentStore:
    store = IntentStore("sqlite://", clock=clock)
    yield store
    store.close()


@pytest.fixture
def adapters(config: DepositConfig) -> dict[Network, FakeAdapter]:
    return {network: FakeAdapter(network_config) for network, network_config in config.networks.items()}


@pytest.fixture
def sink(clock: FakeClock) -> InMemoryBalanceLedger:
    sink = InMemoryBalanceLedger(clock=clock)
    sink.initialize_user("u1")
    sink.initialize_user("u2")
    return sink


@pytest.fixture
def service(
    config: DepositConfig,
    store: IntentStore,
    adapters: dict[Network, FakeAdapter],
    sink: InMemoryBalanceLedger,
    clock: FakeClock,
) -> DepositService:
    return DepositService(config, store, adapters, sink, clock=clock)
