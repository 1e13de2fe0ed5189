"""Client for the external undervaluation oracle, with a TTL cache.

Given a token pair, the oracle answers which side is currently undervalued.
Results are cached per ordered pair for ``cache_ttl_seconds``. Failures are
never cached.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

import aiohttp

from strategy_service.errors import UpstreamTimeout, UpstreamUnavailable, ValidationError
from strategy_service.utils.ttl_cache import BoundedTTLCache
from strategy_service.utils.validation import is_valid_mint

logger = logging.getLogger(__name__)

FALLBACK_REASONING = "Fallback response: External valuation service unavailable"
FALLBACK_CONFIDENCE = 0.5


@dataclass
class ValuationResult:
    recommended_token: str  # "A" or "B"
    reasoning: str
    confidence: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_fallback: bool = False

    def as_dict(self) -> dict:
        return {
            "recommendedToken": self.recommended_token,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
            "isFallback": self.is_fallback,
        }


class ValuationService:
    def __init__(
        self,
        api_url: str,
        timeout_seconds: float = 10.0,
        cache_ttl_seconds: float = 300.0,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._cache = BoundedTTLCache(capacity=None, ttl_seconds=cache_ttl_seconds, clock=clock)

    async def close(self):
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()

    async def get_undervalued_token(self, token_a_mint: str, token_b_mint: str) -> ValuationResult:
        if not is_valid_mint(token_a_mint) or not is_valid_mint(token_b_mint):
            raise ValidationError("Invalid token mint addresses")

        key = (token_a_mint, token_b_mint)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Valuation cache hit for {token_a_mint[:8]}/{token_b_mint[:8]}")
            return cached

        result = await self._request_valuation(token_a_mint, token_b_mint)
        self._cache.set(key, result)
        logger.info(
            f"Valuation {token_a_mint[:8]}/{token_b_mint[:8]}: {result.recommended_token} "
            f"(confidence {result.confidence:.2f})"
        )
        return result

    async def get_recommendation(self, token_a_mint: str, token_b_mint: str) -> ValuationResult:
        """Like get_undervalued_token, but degrades to a low-confidence default."""
        try:
            return await self.get_undervalued_token(token_a_mint, token_b_mint)
        except UpstreamUnavailable as e:
            logger.warning(f"Valuation unavailable, using fallback: {e}")
            return ValuationResult(
                recommended_token="A",
                reasoning=FALLBACK_REASONING,
                confidence=FALLBACK_CONFIDENCE,
                is_fallback=True,
            )

    async def _request_valuation(self, token_a_mint: str, token_b_mint: str) -> ValuationResult:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        try:
            async with self._session.post(
                self.api_url,
                json={"tokenA": token_a_mint, "tokenB": token_b_mint},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise UpstreamUnavailable("Valuation service unavailable")
                data = await response.json()
            return self._parse_valuation(data)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout("Valuation service timeout") from e
        except (aiohttp.ClientError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Valuation request for {token_a_mint[:8]}/{token_b_mint[:8]} failed: {e!r}")
            raise UpstreamUnavailable("Valuation service unavailable") from e

    @staticmethod
    def _parse_valuation(data: dict) -> ValuationResult:
        recommendation = str(data.get("recommendation", "")).upper()
        if recommendation not in ("A", "B"):
            raise ValueError(f"invalid recommendation {recommendation!r}")
        return ValuationResult(
            recommended_token=recommendation,
            reasoning=data.get("reasoning") or "",
            confidence=float(data.get("confidence", 0.0)),
        )

    def cache_status(self) -> dict:
        entries = []
        for key in self._cache:
            result = self._cache.get(key)
            if result is None:
                continue
            entries.append({
                "tokenA": key[0],
                "tokenB": key[1],
                "recommendedToken": result.recommended_token,
                "ageSeconds": round(self._cache.age_of(key) or 0.0, 1),
            })
        return {"size": len(entries), "ttlSeconds": self._cache.ttl_seconds, "entries": entries}

    def clear_cache(self):
        self._cache.clear()
