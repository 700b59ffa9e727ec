"""Rules a relay program enforces on every ``relayPrice`` call.

The submitter checks a candidate against these rules before paying for a
transaction. Identical inputs fail deterministically on-chain, so a
violation is surfaced and never retried.

Rules, in the order the relay program applies them:

(a) the caller is an authorized relayer;
(b) the source chain and pool are enabled;
(c) at least ``min_relay_interval`` seconds passed since the last relay;
(d) the source block number is strictly greater than the last one;
(e) the source timestamp is at most ``max_future_skew`` seconds ahead;
(e') the source timestamp is at most ``max_price_age`` seconds old;
(f) the price moved less than ``max_deviation_bps`` from the last one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .PriceMath import deviation_bps
from .errors import (
    DeviationTooHigh,
    FutureTimestamp,
    NotAuthorizedRelayer,
    PoolNotEnabled,
    PriceTooOld,
    RelayRateLimited,
    StaleBlockNumber,
)

logger = logging.getLogger(__name__)

MAX_FUTURE_SKEW = 600
MAX_DEVIATION_BPS = 5000
DEFAULT_MIN_RELAY_INTERVAL = 60
DEFAULT_MAX_PRICE_AGE = 300


@dataclass(frozen=True)
class RelayParams:
    """Relay program parameters.

    :ivar min_relay_interval: Seconds between relays of one pool.
    :ivar max_price_age: Oldest accepted source timestamp, in seconds.
    :ivar max_future_skew: Newest accepted source timestamp ahead of now.
    :ivar max_deviation_bps: Largest accepted price move, in basis points.
    """

    min_relay_interval: int = DEFAULT_MIN_RELAY_INTERVAL
    max_price_age: int = DEFAULT_MAX_PRICE_AGE
    max_future_skew: int = MAX_FUTURE_SKEW
    max_deviation_bps: int = MAX_DEVIATION_BPS


@dataclass(frozen=True)
class RelayCandidate:
    chain_id: int
    pool: str
    sqrt_price_x96: int
    source_timestamp: int
    source_block_number: int


@dataclass(frozen=True)
class PoolRelayState:
    """What the relay program remembers about one (chain, pool).

    :ivar last_block_number: Last relayed source block, 0 if never relayed.
    :ivar last_relay_time: Destination time of the last relay.
    :ivar last_sqrt_price_x96: Last relayed sqrt price, 0 if none.
    """

    last_block_number: int = 0
    last_relay_time: float | None = None
    last_sqrt_price_x96: int = 0

    def merge(self, other: PoolRelayState | None) -> PoolRelayState:
        """Combine two views of the same pool, keeping the most advanced values."""
        if other is None:
            return self
        times = [t for t in (self.last_relay_time, other.last_relay_time) if t is not None]
        return PoolRelayState(
            last_block_number=max(self.last_block_number, other.last_block_number),
            last_relay_time=max(times) if times else None,
            last_sqrt_price_x96=other.last_sqrt_price_x96 or self.last_sqrt_price_x96,
        )


def clamp_timestamp(source_timestamp: int, destination_now: int, skew: int = MAX_FUTURE_SKEW) -> int:
    """Pull a source timestamp back to ``destination_now + skew`` when it is beyond it.

    Source chains that run ahead of the destination would otherwise be
    rejected for clock drift alone.

    :param source_timestamp: Candidate source timestamp.
    :param destination_now: Destination chain's latest block timestamp.
    :param skew: Allowed future skew in seconds.
    :returns: The timestamp to submit.
    """
    limit = destination_now + skew
    if source_timestamp > limit:
        logger.debug(f"Clamping source timestamp {source_timestamp} to {limit}")
        return limit
    return source_timestamp


def can_relay_at(state: PoolRelayState, now: float, params: RelayParams) -> bool:
    if state.last_relay_time is None:
        return True
    return now - state.last_relay_time >= params.min_relay_interval


def check_relay(
    candidate: RelayCandidate,
    state: PoolRelayState,
    now: float,
    params: RelayParams = RelayParams(),
    authorized: bool = True,
    enabled: bool = True,
) -> None:
    """Raise the violation the relay program would revert with, if any.

    :param candidate: Sample about to be relayed.
    :param state: Last known state of the pool.
    :param now: Destination chain time.
    :param params: Relay program parameters.
    :param authorized: Whether the caller is an authorized relayer.
    :param enabled: Whether the chain and pool are enabled.
    :raises RelayRuleViolation: On the first violated rule.
    """
    if not authorized:
        raise NotAuthorizedRelayer()
    if not enabled:
        raise PoolNotEnabled(f"chain {candidate.chain_id} pool {candidate.pool}")
    if not can_relay_at(state, now, params):
        wait = params.min_relay_interval - (now - state.last_relay_time)
        raise RelayRateLimited(f"{int(wait)}s until next relay")
    if candidate.source_block_number <= state.last_block_number:
        raise StaleBlockNumber(
            f"block {candidate.source_block_number} <= last {state.last_block_number}"
        )
    if candidate.source_timestamp > now + params.max_future_skew:
        raise FutureTimestamp(
            f"{candidate.source_timestamp} > {int(now)} + {params.max_future_skew}"
        )
    if candidate.source_timestamp < now - params.max_price_age:
        raise PriceTooOld(f"{int(now - candidate.source_timestamp)}s old")
    if state.last_sqrt_price_x96 > 0:
        deviation = deviation_bps(state.last_sqrt_price_x96, candidate.sqrt_price_x96)
        if deviation > params.max_deviation_bps:
            raise DeviationTooHigh(f"{deviation} bps > {params.max_deviation_bps} bps")


class RelayLedger:
    """Per-pool record of the relays this process submitted.

    Complements the on-chain state so repeated eligibility checks inside
    one interval stay negative even before the destination RPC reflects
    the last relay. Times are destination chain time.

    :ivar params: Rules used for pools whose relay program was never read.
    """

    def __init__(self, params: RelayParams = RelayParams()) -> None:
        self.params = params
        self._pools: dict[tuple[int, str], PoolRelayState] = {}
        self._params: dict[tuple[int, str], RelayParams] = {}

    @staticmethod
    def _key(chain_id: int, pool: str) -> tuple[int, str]:
        return chain_id, pool.lower()

    def state(self, chain_id: int, pool: str) -> PoolRelayState:
        return self._pools.get(self._key(chain_id, pool), PoolRelayState())

    def params_for(self, chain_id: int, pool: str) -> RelayParams:
        """Rules last reported by the pool's relay program."""
        return self._params.get(self._key(chain_id, pool), self.params)

    def can_relay(self, chain_id: int, pool: str, now: float) -> bool:
        return can_relay_at(self.state(chain_id, pool), now, self.params_for(chain_id, pool))

    def check(
        self,
        candidate: RelayCandidate,
        now: float,
        onchain: PoolRelayState | None = None,
        authorized: bool = True,
        enabled: bool = True,
        params: RelayParams | None = None,
    ) -> None:
        """Check a candidate against the ledger merged with the on-chain view.

        :param params: Rules read from the relay program; remembered for the pool.
        :raises RelayRuleViolation: On the first violated rule.
        """
        if params is not None:
            self._params[self._key(candidate.chain_id, candidate.pool)] = params
        state = self.state(candidate.chain_id, candidate.pool).merge(onchain)
        check_relay(
            candidate,
            state,
            now,
            self.params_for(candidate.chain_id, candidate.pool),
            authorized=authorized,
            enabled=enabled,
        )

    def record(self, candidate: RelayCandidate, now: float) -> None:
        """Remember a relay that was mined successfully."""
        key = self._key(candidate.chain_id, candidate.pool)
        self._pools[key] = replace(
            self._pools.get(key, PoolRelayState()),
            last_block_number=candidate.source_block_number,
            last_relay_time=now,
            last_sqrt_price_x96=candidate.sqrt_price_x96,
        )
