"""Unit tests for RelayRules."""

import pytest

from feedbot.src.PriceMath import Q96
from feedbot.src.RelayRules import (
    MAX_FUTURE_SKEW,
    PoolRelayState,
    RelayCandidate,
    RelayLedger,
    RelayParams,
    check_relay,
    clamp_timestamp,
)
from feedbot.src.errors import (
    DeviationTooHigh,
    FutureTimestamp,
    NotAuthorizedRelayer,
    PoolNotEnabled,
    PriceTooOld,
    RelayRateLimited,
    StaleBlockNumber,
)

NOW = 1_700_000_000
POOL = "0xAbC0000000000000000000000000000000000001"


def candidate(
    sqrt_price_x96: int = 10 * Q96, timestamp: int = NOW, block: int = 101
) -> RelayCandidate:
    return RelayCandidate(
        chain_id=42161,
        pool=POOL,
        sqrt_price_x96=sqrt_price_x96,
        source_timestamp=timestamp,
        source_block_number=block,
    )


def relayed_state(last_relay_time: float = NOW - 120) -> PoolRelayState:
    return PoolRelayState(
        last_block_number=100, last_relay_time=last_relay_time, last_sqrt_price_x96=10 * Q96
    )


class TestClampTimestamp:
    """Test the future skew clamp."""

    def test_within_skew_unchanged(self) -> None:
        """Timestamps at or below now + skew are kept."""
        assert clamp_timestamp(NOW + 100, NOW) == NOW + 100
        assert clamp_timestamp(NOW + MAX_FUTURE_SKEW, NOW) == NOW + MAX_FUTURE_SKEW

    def test_beyond_skew_clamped(self) -> None:
        """Timestamps beyond now + skew become exactly now + 600."""
        assert clamp_timestamp(NOW + 3600, NOW) == NOW + 600

    def test_clamped_timestamp_passes_check(self) -> None:
        """A clamped timestamp satisfies the future timestamp rule."""
        ts = clamp_timestamp(NOW + 3600, NOW)
        check_relay(candidate(timestamp=ts), relayed_state(), NOW)


class TestCheckRelay:
    """Test each relay rule."""

    def test_valid_candidate(self) -> None:
        """A fresh, newer, close price passes."""
        check_relay(candidate(), relayed_state(), NOW)

    def test_first_relay(self) -> None:
        """A pool never relayed has no interval or deviation limit."""
        check_relay(candidate(sqrt_price_x96=1000 * Q96), PoolRelayState(), NOW)

    def test_not_authorized(self) -> None:
        """Unauthorized relayers are rejected first."""
        with pytest.raises(NotAuthorizedRelayer):
            check_relay(candidate(), relayed_state(), NOW, authorized=False, enabled=False)

    def test_pool_not_enabled(self) -> None:
        """Disabled pools are rejected."""
        with pytest.raises(PoolNotEnabled):
            check_relay(candidate(), relayed_state(), NOW, enabled=False)

    def test_rate_limited(self) -> None:
        """A relay inside the minimum interval is rejected."""
        with pytest.raises(RelayRateLimited, match="Too soon"):
            check_relay(candidate(), relayed_state(last_relay_time=NOW - 30), NOW)

    def test_same_block_rejected(self) -> None:
        """The same block number cannot be relayed twice."""
        with pytest.raises(StaleBlockNumber):
            check_relay(candidate(block=100), relayed_state(), NOW)

    def test_older_block_rejected(self) -> None:
        """Block numbers must strictly increase."""
        with pytest.raises(StaleBlockNumber):
            check_relay(candidate(block=99), relayed_state(), NOW)

    def test_future_timestamp_rejected(self) -> None:
        """One second beyond the skew is rejected."""
        with pytest.raises(FutureTimestamp):
            check_relay(candidate(timestamp=NOW + MAX_FUTURE_SKEW + 1), relayed_state(), NOW)

    def test_old_price_rejected(self) -> None:
        """Samples older than the max price age are rejected."""
        with pytest.raises(PriceTooOld):
            check_relay(candidate(timestamp=NOW - 301), relayed_state(), NOW)

    def test_deviation_21_percent_accepted(self) -> None:
        """sqrt x1.1 is a 21% price move, within 50%."""
        check_relay(candidate(sqrt_price_x96=11 * Q96), relayed_state(), NOW)

    def test_deviation_300_percent_rejected(self) -> None:
        """sqrt x2 is a 300% price move."""
        with pytest.raises(DeviationTooHigh, match="30000 bps"):
            check_relay(candidate(sqrt_price_x96=20 * Q96), relayed_state(), NOW)

    def test_custom_params(self) -> None:
        """Tighter deviation bounds apply."""
        params = RelayParams(max_deviation_bps=1000)
        with pytest.raises(DeviationTooHigh):
            check_relay(candidate(sqrt_price_x96=11 * Q96), relayed_state(), NOW, params)


class TestRelayLedger:
    """Test the per-process relay ledger."""

    def test_record_then_same_block_rejected(self) -> None:
        """Relaying the same block twice fails even after the interval."""
        ledger = RelayLedger()
        ledger.record(candidate(block=200), NOW)

        with pytest.raises(StaleBlockNumber):
            ledger.check(candidate(block=200, timestamp=NOW + 61), NOW + 61)

    def test_eligibility_window(self) -> None:
        """60s interval: ineligible twice within 60s, eligible after 61s."""
        ledger = RelayLedger(RelayParams(min_relay_interval=60, max_price_age=300))
        assert ledger.can_relay(42161, POOL, NOW)

        ledger.record(candidate(), NOW)
        assert not ledger.can_relay(42161, POOL, NOW + 10)
        assert not ledger.can_relay(42161, POOL, NOW + 59)
        assert ledger.can_relay(42161, POOL, NOW + 61)

    def test_pool_key_case_insensitive(self) -> None:
        """Pool addresses are compared case-insensitively."""
        ledger = RelayLedger()
        ledger.record(candidate(), NOW)
        assert not ledger.can_relay(42161, POOL.lower(), NOW + 1)
        assert ledger.can_relay(8453, POOL, NOW + 1)

    def test_onchain_state_ahead_of_ledger(self) -> None:
        """On-chain block numbers newer than the ledger's are honoured."""
        ledger = RelayLedger()
        onchain = PoolRelayState(last_block_number=500, last_relay_time=NOW - 120)
        with pytest.raises(StaleBlockNumber):
            ledger.check(candidate(block=400), NOW, onchain=onchain)

    def test_ledger_ahead_of_onchain_state(self) -> None:
        """A relay the RPC has not reflected yet still rate limits."""
        ledger = RelayLedger()
        ledger.record(candidate(block=101), NOW)
        with pytest.raises(RelayRateLimited):
            ledger.check(candidate(block=102), NOW + 5, onchain=relayed_state())

    def test_program_params_kept_per_pool(self) -> None:
        """Parameters passed to check apply to that pool's later checks."""
        ledger = RelayLedger()
        wide = RelayParams(min_relay_interval=120, max_deviation_bps=40_000)

        ledger.check(candidate(sqrt_price_x96=20 * Q96), NOW, onchain=relayed_state(), params=wide)
        ledger.record(candidate(), NOW)

        assert ledger.params_for(42161, POOL) == wide
        assert ledger.params_for(8453, POOL) == RelayParams()
        assert not ledger.can_relay(42161, POOL, NOW + 90)
        assert ledger.can_relay(42161, POOL, NOW + 120)


class TestPoolRelayStateMerge:
    """Test merging ledger and on-chain views."""

    def test_merge_keeps_latest(self) -> None:
        """Max block and relay time win; the other's price is preferred."""
        a = PoolRelayState(last_block_number=10, last_relay_time=100.0, last_sqrt_price_x96=1)
        b = PoolRelayState(last_block_number=5, last_relay_time=200.0, last_sqrt_price_x96=2)
        merged = a.merge(b)
        assert merged.last_block_number == 10
        assert merged.last_relay_time == 200.0
        assert merged.last_sqrt_price_x96 == 2

    def test_merge_none(self) -> None:
        """Merging nothing returns the same state."""
        state = relayed_state()
        assert state.merge(None) is state
