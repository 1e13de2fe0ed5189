"""Shared fixtures: in-memory database, fake Solana/Jupiter adapters, worker context."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.keypair import Keypair
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import strategy_service.models  # noqa: F401  registers tables
from strategy_service.config import Settings
from strategy_service.engine.workers.base import WorkerContext
from strategy_service.services.price_feed import PriceFeedService
from strategy_service.services.solana_rpc import TokenBalance
from strategy_service.services.swap_gateway import SwapQuote, SwapResult


class FakeSwapGateway:
    """Records quotes/executions. ``fill_ratio`` scales the consumed input."""

    def __init__(self, fill_ratio: float = 1.0, out_ratio: float = 1.0, error: Exception | None = None):
        self.fill_ratio = fill_ratio
        self.out_ratio = out_ratio
        self.error = error
        self.quotes: list[SwapQuote] = []
        self.executed: list[SwapQuote] = []

    async def quote(self, input_mint, output_mint, amount, slippage_bps):
        q = SwapQuote(input_mint, output_mint, amount, int(amount * self.out_ratio), slippage_bps)
        self.quotes.append(q)
        return q

    async def execute(self, quote, wallet, fee_account=None):
        if self.error is not None:
            raise self.error
        self.executed.append(quote)
        return SwapResult(
            signature=f"swap-sig-{len(self.executed)}",
            input_amount=int(quote.in_amount * self.fill_ratio),
            output_amount=quote.out_amount,
        )


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def new_wallet() -> tuple[str, bytes]:
    kp = Keypair()
    return str(kp.pubkey()), bytes(kp)


def new_address() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def wallet():
    return new_wallet()


@pytest.fixture
def rpc():
    client = MagicMock()
    client.get_balance = AsyncMock(return_value=10_000_000_000)  # 10 SOL
    client.get_token_balance = AsyncMock(return_value=TokenBalance(amount=0, decimals=6))
    client.get_transaction = AsyncMock(return_value=None)
    client.get_signatures_for_address = AsyncMock(return_value=[])
    return client


@pytest.fixture
def swap_gateway():
    return FakeSwapGateway()


@pytest.fixture
def scheduler():
    sched = MagicMock()
    sched.get_job.return_value = None
    return sched


@pytest.fixture
def price_feed():
    return PriceFeedService("https://hermes.test", {"sol": "0xabc"}, scheduler=None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite://",
        wallet_poll_seconds=1.0,
        price_trigger_cooldown_seconds=300.0,
        default_slippage_bps=100,
        fee_account=None,
    )


@pytest.fixture
def ctx(rpc, swap_gateway, price_feed, scheduler, clock, test_settings):
    return WorkerContext(
        rpc=rpc,
        swap_gateway=swap_gateway,
        price_feed=price_feed,
        scheduler=scheduler,
        activity_log=MagicMock(),
        settings=test_settings,
        clock=clock,
    )


@pytest.fixture
def fake_swap_gateway_cls():
    return FakeSwapGateway


@pytest.fixture
def make_wallet():
    return new_wallet


@pytest.fixture
def make_address():
    return new_address
