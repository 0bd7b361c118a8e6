"""ABI helpers — pure functions for call encoding and result/revert decoding.

Signatures use the human form ``name(inputTypes)(outputTypes)``; the output
group is optional for write calls.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex, function_signature_to_4byte_selector

ERROR_STRING_SELECTOR = "0x08c379a0"
PANIC_SELECTOR = "0x4e487b71"

# Solidity panic codes worth naming; everything else is reported numerically.
PANIC_REASONS: dict[int, str] = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division by zero",
    0x21: "invalid enum value",
    0x32: "array index out of bounds",
}


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...]

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.canonical)


def _split_types(group: str) -> tuple[str, ...]:
    """Split ``a,(b,c),d[]`` on top-level commas."""
    if not group:
        return ()
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in group:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    parts.append(current.strip())
    return tuple(parts)


def _take_group(text: str, start: int) -> tuple[str, int]:
    """Return the contents of the balanced group opening at ``start``."""
    if start >= len(text) or text[start] != "(":
        raise ValueError(f"Expected '(' at position {start} in {text!r}")
    depth = 0
    for i in range(start, len(text)):
        if text[i] == "(":
            depth += 1
        elif text[i] == ")":
            depth -= 1
            if depth == 0:
                return text[start + 1 : i], i + 1
    raise ValueError(f"Unbalanced parentheses in {text!r}")


def parse_signature(signature: str) -> FunctionSignature:
    text = signature.replace(" ", "")
    open_at = text.find("(")
    if open_at <= 0:
        raise ValueError(f"Invalid function signature: {signature!r}")
    name = text[:open_at]
    inputs, end = _take_group(text, open_at)
    outputs = ""
    if end < len(text):
        outputs, end = _take_group(text, end)
        if end != len(text):
            raise ValueError(f"Trailing characters in signature: {signature!r}")
    return FunctionSignature(name, _split_types(inputs), _split_types(outputs))


def encode_call(signature: str | FunctionSignature, args: Sequence[Any] = ()) -> str:
    """Build hex calldata for a call."""
    sig = parse_signature(signature) if isinstance(signature, str) else signature
    if len(args) != len(sig.inputs):
        raise ValueError(
            f"{sig.canonical} expects {len(sig.inputs)} arguments, got {len(args)}"
        )
    return encode_hex(sig.selector + encode(list(sig.inputs), list(args)))


def decode_result(signature: str | FunctionSignature, data: str) -> Any:
    """Decode ``eth_call`` output; a single output is returned unwrapped."""
    sig = parse_signature(signature) if isinstance(signature, str) else signature
    if not sig.outputs:
        return None
    values = decode(list(sig.outputs), decode_hex(data))
    if len(values) == 1:
        return values[0]
    return tuple(values)


def decode_revert(data: str | None) -> str | None:
    """Best-effort human reason for revert data.

    ``Error(string)`` yields the string; ``Panic(uint256)`` a named panic;
    unknown custom errors yield their selector.
    """
    if not data or not isinstance(data, str) or len(data) < 10:
        return None
    selector = data[:10].lower()
    payload = decode_hex(data)[4:]
    try:
        if selector == ERROR_STRING_SELECTOR:
            return decode(["string"], payload)[0]
        if selector == PANIC_SELECTOR:
            code = decode(["uint256"], payload)[0]
            return PANIC_REASONS.get(code, f"panic 0x{code:02x}")
    except DecodingError:
        return f"undecodable revert {selector}"
    return f"custom error {selector}"
