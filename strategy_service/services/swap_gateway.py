"""Swap execution through the Jupiter v6 aggregator.

Workers and the pair-trade executor depend only on the ``SwapGateway``
protocol; ``JupiterSwapGateway`` is the production implementation.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from strategy_service.engine.mirror import native_change, raw_token_deltas
from strategy_service.errors import ExecutionError, UpstreamUnavailable
from strategy_service.services.solana_rpc import SolanaRpcClient
from strategy_service.utils.constants import SOL_MINT

logger = logging.getLogger(__name__)


@dataclass
class TradingWallet:
    public_key: str
    secret_key: bytes = field(repr=False)

    def keypair(self) -> Keypair:
        return Keypair.from_bytes(self.secret_key)


@dataclass
class SwapQuote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    route: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class SwapResult:
    signature: str
    input_amount: int  # actually consumed, smallest units
    output_amount: int


class SwapGateway(Protocol):
    async def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> SwapQuote:
        ...

    async def execute(self, quote: SwapQuote, wallet: TradingWallet, fee_account: str | None = None) -> SwapResult:
        ...


class JupiterSwapGateway:
    """Quote, sign, send and confirm swaps.

    Each attempt requests a fresh swap transaction so every retry carries a
    new blockhash. Confirmation stops once the block height passes the
    transaction's ``lastValidBlockHeight``. The whole execute call is bounded
    by ``timeout_seconds``.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        api_url: str,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 90.0,
        confirm_poll_seconds: float = 2.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.rpc = rpc
        self.api_url = api_url.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.confirm_poll_seconds = confirm_poll_seconds
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()

    async def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> SwapQuote:
        if amount <= 0:
            raise ExecutionError(f"Invalid swap amount: {amount}")

        session = await self._ensure_session()
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        try:
            async with session.get(f"{self.api_url}/quote", params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise UpstreamUnavailable(f"Jupiter quote error {response.status}: {text[:200]}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Jupiter quote request failed: {e}") from e

        logger.info(
            f"Jupiter quote {input_mint[:8]}... -> {output_mint[:8]}...: "
            f"in={data.get('inAmount')} out={data.get('outAmount')}"
        )
        return SwapQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            slippage_bps=slippage_bps,
            route=data,
        )

    async def execute(self, quote: SwapQuote, wallet: TradingWallet, fee_account: str | None = None) -> SwapResult:
        try:
            return await asyncio.wait_for(
                self._execute_with_retries(quote, wallet, fee_account),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ExecutionError(f"Swap timed out after {self.timeout_seconds:.0f}s")

    async def _execute_with_retries(self, quote: SwapQuote, wallet: TradingWallet, fee_account: str | None) -> SwapResult:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                swap = await self._get_swap_transaction(quote, wallet.public_key, fee_account)
                signed = self._sign(swap["swapTransaction"], wallet)
                signature = await self.rpc.send_transaction(signed)
                logger.info(f"Swap sent (attempt {attempt}/{self.max_attempts}): {signature}")
                await self._confirm(signature, swap.get("lastValidBlockHeight"))
                input_amount, output_amount = await self._filled_amounts(signature, quote, wallet.public_key)
                return SwapResult(signature=signature, input_amount=input_amount, output_amount=output_amount)
            except (ExecutionError, UpstreamUnavailable) as e:
                last_error = e
                logger.warning(f"Swap attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_seconds)

        raise ExecutionError(f"Swap failed after {self.max_attempts} attempts: {last_error}")

    async def _get_swap_transaction(self, quote: SwapQuote, user_public_key: str, fee_account: str | None) -> dict:
        session = await self._ensure_session()
        payload = {
            "quoteResponse": quote.route,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        if fee_account:
            payload["feeAccount"] = fee_account
        try:
            async with session.post(f"{self.api_url}/swap", json=payload) as response:
                if response.status != 200:
                    text = await response.text()
                    raise UpstreamUnavailable(f"Jupiter swap error {response.status}: {text[:200]}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Jupiter swap request failed: {e}") from e

        if not data.get("swapTransaction"):
            raise ExecutionError("Jupiter returned no swap transaction")
        return data

    @staticmethod
    def _sign(swap_tx_b64: str, wallet: TradingWallet) -> str:
        try:
            raw = VersionedTransaction.from_bytes(base64.b64decode(swap_tx_b64))
            signed = VersionedTransaction(raw.message, [wallet.keypair()])
        except ValueError as e:
            raise ExecutionError(f"Failed to sign swap transaction: {e}") from e
        return base64.b64encode(bytes(signed)).decode()

    async def _confirm(self, signature: str, last_valid_block_height: int | None):
        while True:
            statuses = await self.rpc.get_signature_statuses([signature])
            status = statuses[0] if statuses else None
            if status:
                if status.get("err"):
                    raise ExecutionError(f"Transaction {signature} failed on-chain: {status['err']}")
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return
            if last_valid_block_height is not None:
                height = await self.rpc.get_block_height()
                if height > last_valid_block_height:
                    raise ExecutionError(f"Blockhash expired before {signature} confirmed")
            await asyncio.sleep(self.confirm_poll_seconds)

    async def _filled_amounts(self, signature: str, quote: SwapQuote, owner: str) -> tuple[int, int]:
        """Read consumed/received amounts from the confirmed transaction.

        Falls back to the quoted amounts when the transaction or a balance
        delta is unavailable. Native SOL deltas include fees and rent, so the
        input side for SOL always uses the quoted amount.
        """
        try:
            tx = await self.rpc.get_transaction(signature)
        except UpstreamUnavailable as e:
            logger.warning(f"Could not load {signature} for fill amounts: {e}")
            tx = None
        if not tx or not tx.get("meta"):
            return quote.in_amount, quote.out_amount

        deltas = raw_token_deltas(tx["meta"], owner)

        input_amount = quote.in_amount
        if quote.input_mint != SOL_MINT and deltas.get(quote.input_mint, 0) < 0:
            input_amount = min(-deltas[quote.input_mint], quote.in_amount)

        output_amount = quote.out_amount
        if quote.output_mint == SOL_MINT:
            native = native_change(tx, owner)
            fee = int(tx["meta"].get("fee", 0))
            if native is not None and native.lamport_change + fee > 0:
                output_amount = native.lamport_change + fee
        elif deltas.get(quote.output_mint, 0) > 0:
            output_amount = deltas[quote.output_mint]

        return input_amount, output_amount
