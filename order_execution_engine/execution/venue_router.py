"""Simulated venue quoting and swap execution."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional

from ..config import VenueConfig
from ..errors import VenueExecutionError
from .types import ExecutionOutcome, Quote, RoutingDecision, Venue

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_TX_HASH_ALPHABET = '123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz'
_TX_HASH_LENGTH = 88
_GAS_FEE = 0.000005


@dataclass(frozen=True)
class VenueProfile:
    """Pricing characteristics of one simulated venue."""

    venue: Venue
    price_low: float
    price_high: float
    fee: float
    liquidity_floor: float
    liquidity_spread: float


VENUE_PROFILES: Dict[Venue, VenueProfile] = {
    Venue.RAYDIUM: VenueProfile(Venue.RAYDIUM, 0.98, 1.02, 0.003, 1_000_000.0, 500_000.0),
    Venue.METEORA: VenueProfile(Venue.METEORA, 0.97, 1.03, 0.002, 800_000.0, 600_000.0),
}


def compare_quotes(quotes: Iterable[Quote]) -> Quote:
    """Return the quote with the largest estimated output.

    Equal outputs resolve to the venue declared first in :class:`Venue`.
    """
    ranked = list(quotes)
    if not ranked:
        raise ValueError('At least one quote is required')
    order = list(Venue)
    return max(ranked, key=lambda quote: (quote.estimated_output, -order.index(quote.venue)))


class VenueRouter:
    """Produces synthetic quotes for every venue and simulates fills."""

    def __init__(
        self,
        config: Optional[VenueConfig] = None,
        *,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or VenueConfig()
        self._rng = rng or random.Random(time.time())
        self._sleep = sleep

    @property
    def config(self) -> VenueConfig:
        return self._config

    @property
    def venues(self) -> tuple[Venue, ...]:
        return tuple(Venue)

    async def quote(self, venue: Venue, token_in: str, token_out: str, amount_in: float) -> Quote:
        profile = VENUE_PROFILES[venue]
        jitter = self._rng.uniform(0, self._config.quote_jitter_ms)
        await self._sleep((self._config.quote_delay_ms + jitter) / 1000)

        price = self._config.base_price * self._rng.uniform(profile.price_low, profile.price_high)
        liquidity = profile.liquidity_floor + self._rng.random() * profile.liquidity_spread
        effective_price = price * (1 - profile.fee)
        return Quote(
            venue=venue,
            price=price,
            fee=profile.fee,
            liquidity=liquidity,
            effective_price=effective_price,
            estimated_output=amount_in * effective_price,
        )

    async def get_best_quote(self, token_in: str, token_out: str, amount_in: float) -> RoutingDecision:
        quotes = await asyncio.gather(
            *(self.quote(venue, token_in, token_out, amount_in) for venue in self.venues)
        )
        best = compare_quotes(quotes)
        return RoutingDecision(best=best, quotes=tuple(quotes))

    def is_native(self, token: str) -> bool:
        return token.upper() == self._config.native_token

    async def execute(
        self,
        venue: Venue,
        token_in: str,
        token_out: str,
        amount_in: float,
        slippage: float,
        *,
        quoted_price: Optional[float] = None,
    ) -> ExecutionOutcome:
        delay_ms = self._config.execution_delay_ms + self._rng.random() * self._config.execution_jitter_ms
        await self._sleep(delay_ms / 1000)

        if self._rng.random() < self._config.failure_rate:
            raise VenueExecutionError(
                f'Mock execution failed on {venue.value}: Insufficient liquidity',
                {'venue': venue.value},
            )

        reference_price = quoted_price if quoted_price is not None else self._config.base_price
        slippage_effect = 1 - (slippage / 100) * self._rng.random()
        executed_price = reference_price * slippage_effect
        outcome = ExecutionOutcome(
            tx_hash=self._generate_tx_hash(),
            executed_price=executed_price,
            amount_out=amount_in * executed_price,
            gas_fee=_GAS_FEE,
        )

        if self.is_native(token_in) or self.is_native(token_out):
            logger.debug('[%s] wrapping/unwrapping %s for swap', venue.value, self._config.native_token)
            await self._sleep(self._config.wrap_delay_ms / 1000)

        return outcome

    def _generate_tx_hash(self) -> str:
        return ''.join(self._rng.choice(_TX_HASH_ALPHABET) for _ in range(_TX_HASH_LENGTH))


__all__ = ['VENUE_PROFILES', 'VenueProfile', 'VenueRouter', 'compare_quotes']
