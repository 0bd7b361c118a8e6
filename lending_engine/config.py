"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .fixed_point import parse_wad
from .models import AssetDescriptor
from .risk import DEFAULT_TARGET_HEALTH_FACTOR, HealthScoreWeights

logger = logging.getLogger(__name__)

PROTOCOL_KINDS = ("pool", "comptroller")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int = 0
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    confirmation_timeout: int = 120
    poll_interval: float = 2.0


@dataclass(frozen=True)
class ProtocolConfig:
    name: str = ""
    kind: str = "pool"
    version: str = ""
    chain: str = ""
    contracts: dict[str, str] = field(default_factory=dict)
    assets: tuple[AssetDescriptor, ...] = ()
    # Comptroller markets quote per-block rates.
    blocks_per_year: int = 0
    # Decimals of the pool oracle's base currency (USD with 8 decimals on Aave V3).
    base_currency_decimals: int = 8
    market_cache_ttl: float = 30.0
    reserve_cache_ttl: float = 0.0


@dataclass(frozen=True)
class ManagerConfig:
    request_timeout: float = 15.0
    aggregate_timeout: float = 45.0


@dataclass(frozen=True)
class RiskConfig:
    target_health_factor: int = DEFAULT_TARGET_HEALTH_FACTOR
    health_score_weights: HealthScoreWeights = field(default_factory=HealthScoreWeights)
    repay_buffer_bps: int = 1


@dataclass(frozen=True)
class AppConfig:
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    protocols: dict[str, ProtocolConfig] = field(default_factory=dict)
    manager: ManagerConfig = field(default_factory=ManagerConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _optional_wad(raw: dict[str, Any], key: str) -> int | None:
    value = raw.get(key)
    return None if value is None else parse_wad(value)


def _build_asset(raw: dict[str, Any]) -> AssetDescriptor:
    return AssetDescriptor(
        symbol=str(raw.get("symbol", "")),
        address=str(raw.get("address", "")),
        decimals=int(raw.get("decimals", 18)),
        receipt_token=str(raw.get("receipt_token", "")),
        stable_debt_token=str(raw.get("stable_debt_token", "")),
        variable_debt_token=str(raw.get("variable_debt_token", "")),
        oracle=str(raw.get("oracle", "")),
        collateral_factor=_optional_wad(raw, "collateral_factor"),
        liquidation_threshold=_optional_wad(raw, "liquidation_threshold"),
        is_native=bool(raw.get("native", False)),
    )


def _build_chains(raw: dict[str, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for name, cfg in raw.items():
        chains[name] = ChainConfig(
            chain_id=int(cfg.get("chain_id", 0)),
            rpc_endpoints=tuple(e for e in cfg.get("rpc_endpoints", []) if e),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
            confirmation_timeout=int(cfg.get("confirmation_timeout", 120)),
            poll_interval=float(cfg.get("poll_interval", 2.0)),
        )
    return chains


def _build_protocols(raw: dict[str, Any]) -> dict[str, ProtocolConfig]:
    protocols: dict[str, ProtocolConfig] = {}
    for name, cfg in raw.items():
        protocols[name] = ProtocolConfig(
            name=name,
            kind=str(cfg.get("kind", "pool")),
            version=str(cfg.get("version", "")),
            chain=cfg.get("chain", ""),
            contracts=dict(cfg.get("contracts", {})),
            assets=tuple(_build_asset(a) for a in cfg.get("assets", [])),
            blocks_per_year=int(cfg.get("blocks_per_year", 0)),
            base_currency_decimals=int(cfg.get("base_currency_decimals", 8)),
            market_cache_ttl=float(cfg.get("market_cache_ttl", 30.0)),
            reserve_cache_ttl=float(cfg.get("reserve_cache_ttl", 0.0)),
        )
    return protocols


def _build_manager(raw: dict[str, Any]) -> ManagerConfig:
    return ManagerConfig(
        request_timeout=float(raw.get("request_timeout", 15.0)),
        aggregate_timeout=float(raw.get("aggregate_timeout", 45.0)),
    )


def _build_risk(raw: dict[str, Any]) -> RiskConfig:
    weights = raw.get("health_score_weights", {})
    target = raw.get("target_health_factor")
    return RiskConfig(
        target_health_factor=(
            DEFAULT_TARGET_HEALTH_FACTOR if target is None else parse_wad(target)
        ),
        health_score_weights=HealthScoreWeights(
            health_factor=Decimal(str(weights.get("health_factor", "0.5"))),
            utilization=Decimal(str(weights.get("utilization", "0.3"))),
            diversification=Decimal(str(weights.get("diversification", "0.2"))),
        ),
        repay_buffer_bps=int(raw.get("repay_buffer_bps", 1)),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        chains=_build_chains(raw.get("chains", {})),
        protocols=_build_protocols(raw.get("protocols", {})),
        manager=_build_manager(raw.get("manager", {})),
        risk=_build_risk(raw.get("risk", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.protocols:
        raise ValueError("At least one protocol must be configured")

    for name, chain in cfg.chains.items():
        if not chain.rpc_endpoints:
            raise ValueError(f"Chain '{name}' has no RPC endpoints")

    for name, proto in cfg.protocols.items():
        if proto.kind not in PROTOCOL_KINDS:
            raise ValueError(f"Protocol '{name}' has unknown kind '{proto.kind}'")
        if proto.chain not in cfg.chains:
            raise ValueError(f"Protocol '{name}' references unknown chain '{proto.chain}'")
        if not proto.assets:
            raise ValueError(f"Protocol '{name}' has no assets")

        required = ("pool", "data_provider", "oracle") if proto.kind == "pool" else (
            "comptroller",
            "oracle",
        )
        for contract in required:
            if not proto.contracts.get(contract):
                raise ValueError(f"Protocol '{name}' is missing contract '{contract}'")

        if proto.kind == "comptroller" and proto.blocks_per_year <= 0:
            raise ValueError(f"Protocol '{name}' needs a positive blocks_per_year")

        seen: set[str] = set()
        for asset in proto.assets:
            if not asset.symbol or not asset.address:
                raise ValueError(f"Protocol '{name}' has an asset without symbol/address")
            if asset.symbol in seen:
                raise ValueError(f"Protocol '{name}' lists asset '{asset.symbol}' twice")
            seen.add(asset.symbol)
            if proto.kind == "comptroller" and not asset.receipt_token:
                raise ValueError(
                    f"Protocol '{name}' asset '{asset.symbol}' has no receipt_token"
                )

    if cfg.risk.target_health_factor <= 0:
        raise ValueError("risk.target_health_factor must be positive")
    if cfg.manager.request_timeout <= 0 or cfg.manager.aggregate_timeout <= 0:
        raise ValueError("manager timeouts must be positive")
