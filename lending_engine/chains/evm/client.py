"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Sequence

import aiohttp
import certifi
from eth_utils import to_checksum_address

from ...config import ChainConfig
from ...interfaces.chain import Signer
from ...models import TxReceipt
from .abi import decode_result, decode_revert, encode_call, parse_signature

logger = logging.getLogger(__name__)

# JSON-RPC error code used by geth-compatible nodes for execution reverts.
EXECUTION_REVERTED = 3

GAS_LIMIT_BUFFER_PCT = 120


class RpcError(RuntimeError):
    """Node-reported error for a request that reached an endpoint.

    Reverts are deterministic, so they are raised immediately instead of
    being retried on the next endpoint.
    """

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data
        self.reason = decode_revert(data) if isinstance(data, str) else None

    @property
    def is_revert(self) -> bool:
        return self.code == EXECUTION_REVERTED or "revert" in str(self).lower()

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}: {self.reason}" if self.reason else base


class AllEndpointsFailedError(ConnectionError):
    """Every configured endpoint failed at the transport level."""


class EvmClient:
    """EVM RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.confirmation_timeout = config.confirmation_timeout
        self.poll_interval = config.poll_interval
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            error = result["error"] or {}
                            raise RpcError(
                                str(error.get("message", error)),
                                code=error.get("code"),
                                data=error.get("data"),
                            )

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except RpcError as e:
                if e.is_revert:
                    raise
                last_error = e
                logger.warning("RPC endpoint %s returned error: %s", rpc_url, e)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
            if attempt < len(self.endpoints) - 1:
                logger.info("Trying next endpoint...")

        raise AllEndpointsFailedError(f"All RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # Contract reads
    # ------------------------------------------------------------------

    async def read(self, address: str, signature: str, args: Sequence[Any] = ()) -> Any:
        sig = parse_signature(signature)
        call = {"to": to_checksum_address(address), "data": encode_call(sig, args)}
        data = await self.rpc_call("eth_call", [call, "latest"])
        return decode_result(sig, data)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def submit(
        self,
        address: str,
        signature: str,
        args: Sequence[Any],
        signer: Signer,
        value: int = 0,
    ) -> TxReceipt:
        """Sign, broadcast and wait for one transaction.

        Gas estimation runs the call against current state, so a call that
        would revert fails here with an :class:`RpcError` before anything is
        broadcast.
        """
        sender = to_checksum_address(signer.address)
        call = {
            "from": sender,
            "to": to_checksum_address(address),
            "data": encode_call(signature, args),
            "value": hex(value),
        }

        nonce_hex, gas_hex, price_hex = await asyncio.gather(
            self.rpc_call("eth_getTransactionCount", [sender, "pending"]),
            self.rpc_call("eth_estimateGas", [call]),
            self.rpc_call("eth_gasPrice", []),
        )
        chain_id = self.chain_id or int(await self.rpc_call("eth_chainId", []), 16)

        tx = {
            "from": sender,
            "to": call["to"],
            "data": call["data"],
            "value": value,
            "nonce": int(nonce_hex, 16),
            "gas": int(gas_hex, 16) * GAS_LIMIT_BUFFER_PCT // 100,
            "gasPrice": int(price_hex, 16),
            "chainId": chain_id,
        }
        raw = await signer.sign_transaction(tx)
        tx_hash = await self.rpc_call("eth_sendRawTransaction", [raw])
        logger.info("Broadcast %s to %s: %s", signature.split("(")[0], address, tx_hash)

        receipt = await asyncio.wait_for(
            self._wait_for_receipt(tx_hash), timeout=self.confirmation_timeout
        )
        return TxReceipt(
            tx_ref=tx_hash,
            resource_cost=int(receipt.get("gasUsed", "0x0"), 16),
            status=int(receipt.get("status", "0x0"), 16) == 1,
            block_number=int(receipt["blockNumber"], 16) if receipt.get("blockNumber") else None,
        )

    async def _wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        while True:
            receipt = await self.rpc_call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            await asyncio.sleep(self.poll_interval)
