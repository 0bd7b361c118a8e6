"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from fakes import (
    C_SEI,
    C_USDC,
    COMPTROLLER,
    COMPTROLLER_ORACLE,
    DATA_PROVIDER,
    NATIVE,
    POOL,
    POOL_ORACLE,
    USDC,
    WSEI,
    FakeChain,
    FakeSigner,
)

from lending_engine.config import (
    AppConfig,
    ChainConfig,
    ManagerConfig,
    ProtocolConfig,
    RiskConfig,
)
from lending_engine.fixed_point import WAD
from lending_engine.models import AssetDescriptor


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id=1329,
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        confirmation_timeout=5,
        poll_interval=0.01,
    )


@pytest.fixture()
def pool_protocol_config() -> ProtocolConfig:
    return ProtocolConfig(
        name="yei",
        kind="pool",
        chain="sei",
        contracts={"pool": POOL, "data_provider": DATA_PROVIDER, "oracle": POOL_ORACLE},
        assets=(
            AssetDescriptor(symbol="WSEI", address=WSEI, decimals=18),
            AssetDescriptor(symbol="USDC", address=USDC, decimals=6),
        ),
    )


@pytest.fixture()
def comptroller_protocol_config() -> ProtocolConfig:
    return ProtocolConfig(
        name="takara",
        kind="comptroller",
        chain="sei",
        contracts={"comptroller": COMPTROLLER, "oracle": COMPTROLLER_ORACLE},
        assets=(
            AssetDescriptor(
                symbol="SEI",
                address=NATIVE,
                decimals=18,
                receipt_token=C_SEI,
                collateral_factor=3 * WAD // 4,
                liquidation_threshold=85 * WAD // 100,
                is_native=True,
            ),
            AssetDescriptor(symbol="USDC", address=USDC, decimals=6, receipt_token=C_USDC),
        ),
        blocks_per_year=10_512_000,
    )


@pytest.fixture()
def sample_app_config(
    sample_chain_config: ChainConfig,
    pool_protocol_config: ProtocolConfig,
    comptroller_protocol_config: ProtocolConfig,
) -> AppConfig:
    return AppConfig(
        chains={"sei": sample_chain_config},
        protocols={"yei": pool_protocol_config, "takara": comptroller_protocol_config},
        manager=ManagerConfig(request_timeout=5, aggregate_timeout=10),
        risk=RiskConfig(),
    )


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def signer() -> FakeSigner:
    return FakeSigner()


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    chains:
      sei:
        chain_id: 1329
        rpc_endpoints: ["https://rpc.example.com", "${{LENDING_TEST_UNSET_RPC}}"]
        rpc_timeout: 10
    protocols:
      yei:
        kind: pool
        version: v3
        chain: sei
        reserve_cache_ttl: 5
        contracts:
          pool: "{POOL}"
          data_provider: "{DATA_PROVIDER}"
          oracle: "{POOL_ORACLE}"
        assets:
          - symbol: USDC
            address: "{USDC}"
            decimals: 6
      takara:
        kind: comptroller
        chain: sei
        blocks_per_year: 10512000
        contracts:
          comptroller: "{COMPTROLLER}"
          oracle: "{COMPTROLLER_ORACLE}"
        assets:
          - symbol: SEI
            address: "{NATIVE}"
            decimals: 18
            receipt_token: "{C_SEI}"
            native: true
            collateral_factor: 0.75
            liquidation_threshold: 0.85
          - symbol: USDC
            address: "{USDC}"
            decimals: 6
            receipt_token: "{C_USDC}"
    manager:
      request_timeout: 5
      aggregate_timeout: 20
    risk:
      target_health_factor: 2
      repay_buffer_bps: 5
      health_score_weights:
        health_factor: 0.6
        utilization: 0.2
        diversification: 0.2
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("LENDING_TEST_UNSET_RPC", raising=False)
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
