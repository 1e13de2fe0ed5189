"""Pyth Hermes price poller with explicit subscribe/unsubscribe fan-out.

The poll runs as a job on the shared AsyncIOScheduler. Each successful tick
is delivered to every subscriber in its own task; a slow or failing handler
never blocks the feed or other subscribers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from typing import Awaitable, Callable

import aiohttp
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from strategy_service.errors import UpstreamUnavailable
from strategy_service.utils.constants import MINT_SYMBOLS

logger = logging.getLogger(__name__)

PRICE_FEED_JOB_ID = "price_feed"

PriceHandler = Callable[[dict[str, float]], Awaitable[None]]


@dataclass(eq=False)
class Subscription:
    id: int
    handler: PriceHandler = field(repr=False)
    owner: str | None = None


class PriceFeedService:
    def __init__(
        self,
        hermes_url: str,
        feed_ids: dict[str, str],
        scheduler: AsyncIOScheduler | None = None,
        poll_seconds: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.hermes_url = hermes_url.rstrip("/")
        # symbol -> feed id without 0x prefix, as Hermes returns them
        self.feed_ids = {symbol: fid.lower().removeprefix("0x") for symbol, fid in feed_ids.items()}
        self.scheduler = scheduler
        self.poll_seconds = poll_seconds
        self._session = session
        self._owns_session = session is None
        self._prices: dict[str, float] = {}
        self._updated_at: datetime | None = None
        self._subscribers: dict[int, Subscription] = {}
        self._ids = count(1)
        self._tasks: set[asyncio.Task] = set()

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, handler: PriceHandler, owner: str | None = None) -> Subscription:
        sub = Subscription(id=next(self._ids), handler=handler, owner=owner)
        self._subscribers[sub.id] = sub
        logger.debug(f"Price subscriber {sub.id} added ({owner})")
        return sub

    def unsubscribe(self, sub: Subscription | None):
        if sub is not None and self._subscribers.pop(sub.id, None) is not None:
            logger.debug(f"Price subscriber {sub.id} removed ({sub.owner})")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # -- prices ------------------------------------------------------------

    def get_price(self, symbol: str) -> float | None:
        return self._prices.get(symbol.lower())

    def get_price_for_mint(self, mint: str) -> float | None:
        symbol = MINT_SYMBOLS.get(mint)
        return self.get_price(symbol) if symbol else None

    async def refresh(self):
        """Poll Hermes once and fan the prices out. Failures skip the tick."""
        try:
            prices = await self._fetch_prices()
        except UpstreamUnavailable as e:
            logger.warning(f"Price feed tick skipped: {e}")
            return
        if not prices:
            return

        self._prices.update(prices)
        self._updated_at = datetime.now(timezone.utc)
        snapshot = dict(self._prices)
        for sub in list(self._subscribers.values()):
            task = asyncio.create_task(self._deliver(sub, snapshot))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, sub: Subscription, prices: dict[str, float]):
        try:
            await sub.handler(prices)
        except Exception as e:
            logger.error(f"Price handler {sub.id} ({sub.owner}) failed: {e}", exc_info=True)

    async def _fetch_prices(self) -> dict[str, float]:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
            self._owns_session = True

        params = [("ids[]", fid) for fid in self.feed_ids.values()]
        try:
            async with self._session.get(f"{self.hermes_url}/v2/updates/price/latest", params=params) as response:
                if response.status != 200:
                    raise UpstreamUnavailable(f"Hermes HTTP {response.status}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Hermes request failed: {e}") from e

        by_feed = {fid: symbol for symbol, fid in self.feed_ids.items()}
        prices = {}
        for item in data.get("parsed", []):
            symbol = by_feed.get(item.get("id", "").lower().removeprefix("0x"))
            if symbol is None:
                continue
            price = item["price"]
            prices[symbol] = int(price["price"]) * (10 ** int(price["expo"]))
        return prices

    # -- lifecycle ---------------------------------------------------------

    def start(self):
        if self.scheduler is None:
            raise RuntimeError("PriceFeedService needs a scheduler to start polling")
        self.scheduler.add_job(
            self.refresh,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            id=PRICE_FEED_JOB_ID,
            name="Price feed",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )
        logger.info(f"Price feed polling every {self.poll_seconds}s for {sorted(self.feed_ids)}")

    async def stop(self):
        if self.scheduler is not None and self.scheduler.get_job(PRICE_FEED_JOB_ID):
            self.scheduler.remove_job(PRICE_FEED_JOB_ID)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        logger.info("Price feed stopped")

    def status(self) -> dict:
        return {
            "prices": dict(self._prices),
            "updated_at": self._updated_at.isoformat() if self._updated_at else None,
            "subscribers": self.subscriber_count,
        }
