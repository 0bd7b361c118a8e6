"""Unit tests for the error taxonomy, code tables and message classification."""
from __future__ import annotations

import asyncio

import aiohttp
import pytest
from eth_abi import encode

from lending_engine.chains.evm.client import RpcError
from lending_engine.errors import (
    COMPTROLLER_ERROR_CODES,
    POOL_ERROR_CODES,
    ErrorKind,
    LendingError,
    classify_message,
    map_error,
)


def _revert_data(reason: str) -> str:
    return "0x08c379a0" + encode(["string"], [reason]).hex()


class _CodedError(Exception):
    def __init__(self, message: str, protocol_code: int) -> None:
        super().__init__(message)
        self.protocol_code = protocol_code


class TestClassifyMessage:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("market not listed", ErrorKind.ASSET_NOT_SUPPORTED),
            ("Asset not found in registry", ErrorKind.ASSET_NOT_SUPPORTED),
            ("Market not entered", ErrorKind.INSUFFICIENT_COLLATERAL),
            ("redeem: insufficient cash", ErrorKind.INSUFFICIENT_LIQUIDITY),
            ("borrow cap reached", ErrorKind.BORROW_CAP_EXCEEDED),
            ("supply cap reached", ErrorKind.SUPPLY_CAP_EXCEEDED),
            ("reserve frozen", ErrorKind.MARKET_FROZEN),
            ("mint is paused", ErrorKind.MARKET_FROZEN),
            ("Borrowing not enabled", ErrorKind.BORROWING_DISABLED),
            ("ERC20: insufficient allowance", ErrorKind.TOKEN_ALLOWANCE_INSUFFICIENT),
            ("ERC20: transfer amount exceeds balance", ErrorKind.TOKEN_TRANSFER_FAILED),
            ("liquidation call invalid", ErrorKind.LIQUIDATION_INVALID),
            ("liquidation repays too much", ErrorKind.LIQUIDATION_EXCESSIVE),
            ("price feed is stale", ErrorKind.PRICE_ORACLE_ERROR),
            ("arithmetic overflow or underflow", ErrorKind.MATH_ERROR),
            ("health factor lower than liquidation threshold", ErrorKind.HEALTH_FACTOR_TOO_LOW),
            ("Insufficient collateral", ErrorKind.INSUFFICIENT_COLLATERAL),
            ("not enough liquidity", ErrorKind.INSUFFICIENT_LIQUIDITY),
            ("invalid amount", ErrorKind.INVALID_AMOUNT),
            ("request timed out", ErrorKind.NETWORK_ERROR),
            ("something unexpected", ErrorKind.CONTRACT_ERROR),
        ],
    )
    def test_patterns(self, message: str, expected: ErrorKind) -> None:
        kind, _code = classify_message(message)
        assert kind == expected

    def test_comptroller_message_extracts_code(self) -> None:
        assert classify_message("Comptroller rejection: error 14") == (
            ErrorKind.PROTOCOL_REJECTION,
            "14",
        )

    def test_comptroller_message_without_code(self) -> None:
        assert classify_message("comptroller rejected") == (ErrorKind.PROTOCOL_REJECTION, None)


class TestMapError:
    def test_lending_error_passes_through_with_protocol(self) -> None:
        original = LendingError(ErrorKind.INVALID_AMOUNT, "bad amount")
        mapped = map_error(original, "supply", protocol="yei")
        assert mapped is original
        assert mapped.protocol == "yei"

    def test_lending_error_keeps_existing_protocol(self) -> None:
        original = LendingError(ErrorKind.INVALID_AMOUNT, "bad amount", protocol="takara")
        assert map_error(original, protocol="yei").protocol == "takara"

    def test_timeout(self) -> None:
        mapped = map_error(asyncio.TimeoutError(), "getReserveData", protocol="yei")
        assert mapped.kind == ErrorKind.NETWORK_ERROR
        assert mapped.code == "TIMEOUT"
        assert mapped.message == "getReserveData: TimeoutError"

    def test_transport_error(self) -> None:
        mapped = map_error(aiohttp.ClientConnectionError("refused"), "read")
        assert mapped.kind == ErrorKind.NETWORK_ERROR
        assert mapped.code == "NETWORK_ERROR"

    def test_pool_revert_code_uses_table(self) -> None:
        exc = RpcError("execution reverted", code=3, data=_revert_data("35"))
        mapped = map_error(exc, "borrow", POOL_ERROR_CODES, protocol="yei")
        assert mapped.kind == ErrorKind.HEALTH_FACTOR_TOO_LOW
        assert mapped.code == "35"
        assert mapped.message == "borrow: execution reverted: 35"
        assert mapped.protocol == "yei"

    def test_structured_code_attribute(self) -> None:
        mapped = map_error(_CodedError("rejected", 9), "mint", COMPTROLLER_ERROR_CODES)
        assert mapped.kind == ErrorKind.ASSET_NOT_SUPPORTED
        assert mapped.code == "9"

    def test_unknown_code_becomes_rejection_when_requested(self) -> None:
        exc = RpcError("execution reverted", code=3, data=_revert_data("99"))
        mapped = map_error(
            exc, "borrow", COMPTROLLER_ERROR_CODES, rejection_on_unknown_code=True
        )
        assert mapped.kind == ErrorKind.PROTOCOL_REJECTION
        assert mapped.code == "99"

    def test_unknown_code_falls_back_to_contract_error(self) -> None:
        exc = RpcError("execution reverted", code=3, data=_revert_data("99"))
        mapped = map_error(exc, "borrow", POOL_ERROR_CODES)
        assert mapped.kind == ErrorKind.CONTRACT_ERROR
        assert mapped.code == "99"

    def test_legacy_message_uses_patterns(self) -> None:
        exc = RpcError("execution reverted", code=3, data=_revert_data("insufficient cash"))
        mapped = map_error(exc, "redeem")
        assert mapped.kind == ErrorKind.INSUFFICIENT_LIQUIDITY

    def test_unclassified_keeps_rpc_code(self) -> None:
        mapped = map_error(RpcError("nonce too low", code=-32000), "submit")
        assert mapped.kind == ErrorKind.CONTRACT_ERROR
        assert mapped.code == "-32000"

    def test_empty_context(self) -> None:
        assert map_error(RuntimeError("boom")).message == "boom"


class TestLendingError:
    def test_equality(self) -> None:
        a = LendingError(ErrorKind.MATH_ERROR, "overflow", "11", "takara")
        b = LendingError(ErrorKind.MATH_ERROR, "overflow", "11", "takara")
        assert a == b
        assert hash(a) == hash(b)
        assert a != LendingError(ErrorKind.MATH_ERROR, "overflow")

    def test_repr_and_str(self) -> None:
        err = LendingError(ErrorKind.INVALID_AMOUNT, "zero", protocol="yei")
        assert str(err) == "zero"
        assert "invalid_amount" in repr(err)

    def test_is_exception(self) -> None:
        with pytest.raises(LendingError):
            raise LendingError(ErrorKind.NETWORK_ERROR, "down")
