"""Unit tests for ABI signature parsing, call encoding and revert decoding."""
from __future__ import annotations

import pytest
from eth_abi import encode

from lending_engine.chains.evm.abi import (
    decode_result,
    decode_revert,
    encode_call,
    parse_signature,
)

ADDRESS = "0x" + "ab" * 20


class TestParseSignature:
    def test_inputs_and_outputs(self) -> None:
        sig = parse_signature("getAccountLiquidity(address)(uint256,uint256,uint256)")
        assert sig.name == "getAccountLiquidity"
        assert sig.inputs == ("address",)
        assert sig.outputs == ("uint256", "uint256", "uint256")
        assert sig.canonical == "getAccountLiquidity(address)"

    def test_write_call_without_outputs(self) -> None:
        sig = parse_signature("mint()")
        assert sig.inputs == ()
        assert sig.outputs == ()

    def test_nested_tuple_types(self) -> None:
        sig = parse_signature("f((uint256,address),bool)(uint256[])")
        assert sig.inputs == ("(uint256,address)", "bool")
        assert sig.outputs == ("uint256[]",)

    def test_selector(self) -> None:
        assert parse_signature("transfer(address,uint256)(bool)").selector.hex() == "a9059cbb"

    @pytest.mark.parametrize("bad", ["noparens", "(uint256)", "f(uint256", "f()()x"])
    def test_invalid(self, bad: str) -> None:
        with pytest.raises(ValueError):
            parse_signature(bad)


class TestEncodeCall:
    def test_encodes_selector_and_args(self) -> None:
        data = encode_call("balanceOf(address)(uint256)", [ADDRESS])
        assert data == "0x70a08231" + "00" * 12 + "ab" * 20

    def test_argument_count_mismatch(self) -> None:
        with pytest.raises(ValueError, match="expects 1 arguments"):
            encode_call("balanceOf(address)(uint256)", [])


class TestDecodeResult:
    def test_single_output_unwrapped(self) -> None:
        data = "0x" + encode(["uint256"], [42]).hex()
        assert decode_result("totalBorrows()(uint256)", data) == 42

    def test_multiple_outputs(self) -> None:
        data = "0x" + encode(["bool", "uint256"], [True, 8 * 10**17]).hex()
        assert decode_result("markets(address)(bool,uint256)", data) == (True, 8 * 10**17)

    def test_no_outputs(self) -> None:
        assert decode_result("mint()", "0x") is None


class TestDecodeRevert:
    def test_error_string(self) -> None:
        data = "0x08c379a0" + encode(["string"], ["35"]).hex()
        assert decode_revert(data) == "35"

    def test_named_panic(self) -> None:
        data = "0x4e487b71" + encode(["uint256"], [0x11]).hex()
        assert decode_revert(data) == "arithmetic overflow or underflow"

    def test_unnamed_panic(self) -> None:
        data = "0x4e487b71" + encode(["uint256"], [0x99]).hex()
        assert decode_revert(data) == "panic 0x99"

    def test_custom_error(self) -> None:
        assert decode_revert("0xdeadbeef") == "custom error 0xdeadbeef"

    def test_undecodable_payload(self) -> None:
        assert decode_revert("0x08c379a000") == "undecodable revert 0x08c379a0"

    @pytest.mark.parametrize("data", [None, "", "0x", "0x1234"])
    def test_empty(self, data: str | None) -> None:
        assert decode_revert(data) is None
