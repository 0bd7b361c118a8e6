"""Lending error taxonomy and classification of raw adapter failures.

Classification order:

1. An already-typed :class:`LendingError` passes through untouched.
2. Timeouts become ``NETWORK_ERROR`` with code ``TIMEOUT``.
3. Transport failures (aiohttp, OS connection errors) become ``NETWORK_ERROR``.
4. A structured revert reason or error code is looked up in the protocol's
   code table.
5. Legacy untyped messages fall through a substring pattern table.
6. Anything left is a ``CONTRACT_ERROR`` carrying whatever code was found.
"""
from __future__ import annotations

import asyncio
import enum
import re
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp


class ErrorKind(str, enum.Enum):
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    HEALTH_FACTOR_TOO_LOW = "health_factor_too_low"
    ASSET_NOT_SUPPORTED = "asset_not_supported"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    INVALID_AMOUNT = "invalid_amount"
    MARKET_FROZEN = "market_frozen"
    BORROWING_DISABLED = "borrowing_disabled"
    BORROW_CAP_EXCEEDED = "borrow_cap_exceeded"
    SUPPLY_CAP_EXCEEDED = "supply_cap_exceeded"
    PROTOCOL_REJECTION = "protocol_rejection"
    PRICE_ORACLE_ERROR = "price_oracle_error"
    MATH_ERROR = "math_error"
    TOKEN_ALLOWANCE_INSUFFICIENT = "token_allowance_insufficient"
    TOKEN_TRANSFER_FAILED = "token_transfer_failed"
    LIQUIDATION_INVALID = "liquidation_invalid"
    LIQUIDATION_EXCESSIVE = "liquidation_excessive"
    NETWORK_ERROR = "network_error"
    CONTRACT_ERROR = "contract_error"
    # Aggregate kinds raised only by the lending manager.
    ALL_PROTOCOLS_FAILED = "all_protocols_failed"
    PROTOCOL_NOT_REGISTERED = "protocol_not_registered"
    POSITION_NOT_FOUND = "position_not_found"
    AMBIGUOUS_PROTOCOL = "ambiguous_protocol"


class LendingError(Exception):
    """Typed failure carrying a kind, a readable message and an optional code."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        code: str | None = None,
        protocol: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code
        self.protocol = protocol

    def __repr__(self) -> str:
        return (
            f"LendingError(kind={self.kind.value!r}, message={self.message!r}, "
            f"code={self.code!r}, protocol={self.protocol!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LendingError):
            return NotImplemented
        return (self.kind, self.message, self.code, self.protocol) == (
            other.kind,
            other.message,
            other.code,
            other.protocol,
        )

    def __hash__(self) -> int:
        return hash((self.kind, self.message, self.code, self.protocol))


# ---------------------------------------------------------------------------
# Structured code tables
# ---------------------------------------------------------------------------

# A code table maps a structured revert code (as a decimal string) to an ErrorKind.
CodeTable = Mapping[str, ErrorKind]

# Aave V3 Errors.sol numeric codes.
POOL_ERROR_CODES: dict[str, ErrorKind] = {
    "26": ErrorKind.INVALID_AMOUNT,
    "27": ErrorKind.MARKET_FROZEN,  # reserve inactive
    "28": ErrorKind.MARKET_FROZEN,  # reserve frozen
    "29": ErrorKind.MARKET_FROZEN,  # reserve paused
    "30": ErrorKind.BORROWING_DISABLED,
    "32": ErrorKind.INSUFFICIENT_LIQUIDITY,
    "34": ErrorKind.INSUFFICIENT_COLLATERAL,
    "35": ErrorKind.HEALTH_FACTOR_TOO_LOW,
    "36": ErrorKind.INSUFFICIENT_COLLATERAL,
    "45": ErrorKind.LIQUIDATION_INVALID,
    "50": ErrorKind.BORROW_CAP_EXCEEDED,
    "51": ErrorKind.SUPPLY_CAP_EXCEEDED,
}

# Compound ComptrollerErrorReporter.Error values.
COMPTROLLER_ERROR_CODES: dict[str, ErrorKind] = {
    "3": ErrorKind.LIQUIDATION_INVALID,  # COMPTROLLER_MISMATCH
    "4": ErrorKind.INSUFFICIENT_COLLATERAL,  # INSUFFICIENT_SHORTFALL
    "5": ErrorKind.INSUFFICIENT_LIQUIDITY,
    "9": ErrorKind.ASSET_NOT_SUPPORTED,  # MARKET_NOT_LISTED
    "11": ErrorKind.MATH_ERROR,
    "13": ErrorKind.PRICE_ORACLE_ERROR,
    "17": ErrorKind.LIQUIDATION_EXCESSIVE,  # TOO_MUCH_REPAY
}


# ---------------------------------------------------------------------------
# Substring fallback table
# ---------------------------------------------------------------------------

_COMPTROLLER_CODE_RE = re.compile(r"error[:\s]*(\d+)", re.IGNORECASE)

_Matcher = Callable[[str], bool]


def _any(*needles: str) -> _Matcher:
    return lambda text: any(n.lower() in text for n in needles)


def _all(*needles: str) -> _Matcher:
    return lambda text: all(n.lower() in text for n in needles)


# Order matters: the first match wins.
_PATTERNS: tuple[tuple[_Matcher, ErrorKind], ...] = (
    (_any("market not listed"), ErrorKind.ASSET_NOT_SUPPORTED),
    (_any("not supported", "asset not found"), ErrorKind.ASSET_NOT_SUPPORTED),
    (_any("market not entered"), ErrorKind.INSUFFICIENT_COLLATERAL),
    (_any("insufficient cash"), ErrorKind.INSUFFICIENT_LIQUIDITY),
    (_any("borrow cap", "borrow_cap_exceeded"), ErrorKind.BORROW_CAP_EXCEEDED),
    (_any("supply cap", "supply_cap_exceeded"), ErrorKind.SUPPLY_CAP_EXCEEDED),
    (_any("frozen", "paused"), ErrorKind.MARKET_FROZEN),
    (_any("borrowing not enabled", "borrowing disabled"), ErrorKind.BORROWING_DISABLED),
    (_any("insufficient allowance", "exceeds allowance"), ErrorKind.TOKEN_ALLOWANCE_INSUFFICIENT),
    (_any("transfer failed", "transfer amount exceeds"), ErrorKind.TOKEN_TRANSFER_FAILED),
    (_all("liquidation", "invalid"), ErrorKind.LIQUIDATION_INVALID),
    (_all("liquidation", "too much"), ErrorKind.LIQUIDATION_EXCESSIVE),
    (_any("price", "oracle"), ErrorKind.PRICE_ORACLE_ERROR),
    (_any("math", "overflow", "underflow", "division by zero"), ErrorKind.MATH_ERROR),
    (_any("health factor", "shortfall"), ErrorKind.HEALTH_FACTOR_TOO_LOW),
    (_any("collateral", "insufficient balance"), ErrorKind.INSUFFICIENT_COLLATERAL),
    (_any("liquidity"), ErrorKind.INSUFFICIENT_LIQUIDITY),
    (_any("invalid amount", "amount must be"), ErrorKind.INVALID_AMOUNT),
    (_any("timeout", "timed out", "econnrefused", "network"), ErrorKind.NETWORK_ERROR),
)


def classify_message(message: str) -> tuple[ErrorKind, str | None]:
    """Best-effort classification of an untyped error message."""
    text = message.lower()

    if "comptroller" in text:
        match = _COMPTROLLER_CODE_RE.search(message)
        code = match.group(1) if match else None
        return ErrorKind.PROTOCOL_REJECTION, code

    for matcher, kind in _PATTERNS:
        if matcher(text):
            return kind, None
    return ErrorKind.CONTRACT_ERROR, None


def _structured_code(exc: BaseException) -> str | None:
    """Extract a protocol error code from an RPC/revert exception, if present."""
    reason = getattr(exc, "reason", None)
    if isinstance(reason, str) and reason.strip().isdigit():
        return reason.strip()
    code = getattr(exc, "protocol_code", None)
    if code is not None:
        return str(code)
    return None


def map_error(
    exc: BaseException,
    context: str = "",
    code_table: CodeTable | None = None,
    protocol: str | None = None,
    rejection_on_unknown_code: bool = False,
) -> LendingError:
    """Turn any exception raised inside an adapter into a :class:`LendingError`.

    Args:
        exc: The raw exception.
        context: Short operation label prefixed onto the message.
        code_table: Protocol-specific structured code lookup.
        protocol: Protocol name stamped onto the resulting error.
        rejection_on_unknown_code: Report structured codes missing from the
            table as ``PROTOCOL_REJECTION`` rather than ``CONTRACT_ERROR``.
    """
    if isinstance(exc, LendingError):
        if exc.protocol is None and protocol is not None:
            exc.protocol = protocol
        return exc

    detail = str(exc) or exc.__class__.__name__
    message = f"{context}: {detail}" if context else detail

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return LendingError(ErrorKind.NETWORK_ERROR, message, "TIMEOUT", protocol)

    if isinstance(exc, (aiohttp.ClientError, ConnectionError)):
        return LendingError(ErrorKind.NETWORK_ERROR, message, "NETWORK_ERROR", protocol)

    code = _structured_code(exc)
    if code is not None:
        if code_table is not None and code in code_table:
            return LendingError(code_table[code], message, code, protocol)
        if rejection_on_unknown_code:
            return LendingError(ErrorKind.PROTOCOL_REJECTION, message, code, protocol)

    kind, pattern_code = classify_message(detail)
    return LendingError(kind, message, pattern_code or code or _rpc_code(exc), protocol)


def _rpc_code(exc: BaseException) -> str | None:
    rpc_code: Any = getattr(exc, "code", None)
    return None if rpc_code is None else str(rpc_code)
