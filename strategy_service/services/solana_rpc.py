"""Thin async Solana JSON-RPC client.

Only the handful of methods the workers need: balances, signature history,
transaction lookup and send/confirm. Transport or RPC errors surface as
UpstreamUnavailable.
"""

import logging
from dataclasses import dataclass
from itertools import count

import aiohttp

from strategy_service.errors import UpstreamUnavailable
from strategy_service.utils.constants import SOL_DECIMALS, SOL_MINT, to_ui

logger = logging.getLogger(__name__)


@dataclass
class TokenBalance:
    amount: int  # smallest units
    decimals: int

    @property
    def ui_amount(self) -> float:
        return to_ui(self.amount, self.decimals)


class SolanaRpcClient:
    def __init__(self, rpc_url: str, session: aiohttp.ClientSession | None = None, timeout_seconds: float = 30.0):
        self.rpc_url = rpc_url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._ids = count(1)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _call(self, method: str, params: list | None = None):
        session = await self._ensure_session()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            async with session.post(self.rpc_url, json=payload) as response:
                if response.status != 200:
                    text = await response.text()
                    raise UpstreamUnavailable(f"RPC {method} HTTP {response.status}: {text[:200]}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"RPC {method} failed: {e}") from e

        if data.get("error"):
            raise UpstreamUnavailable(f"RPC {method} error: {data['error']}")
        return data.get("result")

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        result = await self._call("getBalance", [address, {"commitment": "confirmed"}])
        return int(result["value"])

    async def get_token_balance(self, owner: str, mint: str) -> TokenBalance:
        """Balance of ``mint`` summed over all of ``owner``'s token accounts.

        The native mint is answered from the lamport balance.
        """
        if mint == SOL_MINT:
            return TokenBalance(amount=await self.get_balance(owner), decimals=SOL_DECIMALS)

        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        amount = 0
        decimals = 0
        for account in result.get("value", []):
            info = account["account"]["data"]["parsed"]["info"]["tokenAmount"]
            amount += int(info["amount"])
            decimals = int(info["decimals"])
        return TokenBalance(amount=amount, decimals=decimals)

    async def get_transaction(self, signature: str) -> dict | None:
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def get_signatures_for_address(
        self, address: str, until: str | None = None, limit: int = 100
    ) -> list[dict]:
        """Newest-first signature history, stopping at ``until`` (exclusive)."""
        options: dict = {"limit": limit, "commitment": "confirmed"}
        if until:
            options["until"] = until
        return await self._call("getSignaturesForAddress", [address, options]) or []

    async def send_transaction(self, signed_tx_b64: str) -> str:
        return await self._call(
            "sendTransaction",
            [signed_tx_b64, {"encoding": "base64", "skipPreflight": False, "maxRetries": 2}],
        )

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict | None]:
        result = await self._call(
            "getSignatureStatuses", [signatures, {"searchTransactionHistory": False}]
        )
        return result.get("value", [])

    async def get_block_height(self) -> int:
        return int(await self._call("getBlockHeight", [{"commitment": "confirmed"}]))
