"""UpdateSubmitter: every write to the destination chain.

- ``update_native``: ``updateFromNativePool()`` on the feed.
- ``submit_relay``: ``relayPrice(...)`` on the relay program, after the
  timestamp clamp and a local check of the relay rules.
- ``submit_proof``: ``updateFromProof(proof)`` on the feed.

Writes are never retried; a revert surfaces the program's reason verbatim.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .ChainAdapter import ChainAdapters, ensure_gas_below
from .ContractUtility import CUSTOM_FEED, PRICE_RELAY
from .Feed import Feed
from .ProofAssembler import AttestationProof
from .RelayRules import PoolRelayState, RelayCandidate, RelayLedger, RelayParams, clamp_timestamp
from .readers import PriceSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedReadback:
    """The feed's public counters after an update.

    :ivar latest_value: Current feed value (6 decimals).
    :ivar last_update_timestamp: Time of the last accepted update.
    :ivar update_count: Number of accepted updates.
    """

    latest_value: int
    last_update_timestamp: int
    update_count: int


@dataclass(frozen=True)
class SubmitResult:
    tx_hash: str
    readback: FeedReadback | None = None


class UpdateSubmitter:
    """Sends updates to destination programs.

    :ivar adapters: Chain adapters.
    :ivar ledger: Relays submitted by this process.
    :ivar max_gas_price_gwei: Destination gas ceiling, None to disable.
    """

    def __init__(
        self,
        adapters: ChainAdapters,
        ledger: RelayLedger | None = None,
        max_gas_price_gwei: float | None = None,
    ) -> None:
        self.adapters = adapters
        self.ledger = ledger or RelayLedger()
        self.max_gas_price_gwei = max_gas_price_gwei

    async def read_back(self, feed: Feed) -> FeedReadback:
        """Read ``latestValue``, ``lastUpdateTimestamp`` and ``updateCount``."""
        destination = self.adapters.destination
        latest_value, last_update, update_count = await asyncio.gather(
            destination.read_contract(feed.feed_address, CUSTOM_FEED, "latestValue"),
            destination.read_contract(feed.feed_address, CUSTOM_FEED, "lastUpdateTimestamp"),
            destination.read_contract(feed.feed_address, CUSTOM_FEED, "updateCount"),
        )
        return FeedReadback(latest_value, last_update, update_count)

    async def update_native(self, feed: Feed) -> SubmitResult:
        """Have the feed read its pool directly.

        :raises GasPriceTooHigh: If the destination is above the gas ceiling.
        :raises OnChainRejection: If the feed rejects the update.
        """
        destination = self.adapters.destination
        await ensure_gas_below(destination, self.max_gas_price_gwei)

        tx_hash = await destination.write_contract(
            feed.feed_address, CUSTOM_FEED, "updateFromNativePool"
        )
        await destination.wait_for_receipt(tx_hash)
        return SubmitResult(tx_hash, await self.read_back(feed))

    async def _relay_params(self, feed: Feed) -> RelayParams:
        """Rate limit, freshness and deviation bound of the feed's relay program."""
        destination = self.adapters.destination
        relay = feed.relay_address
        min_interval, max_age, max_deviation = await asyncio.gather(
            destination.read_contract(relay, PRICE_RELAY, "minRelayInterval"),
            destination.read_contract(relay, PRICE_RELAY, "maxPriceAge"),
            destination.read_contract(relay, PRICE_RELAY, "MAX_DEVIATION_BPS"),
        )
        return RelayParams(
            min_relay_interval=int(min_interval),
            max_price_age=int(max_age),
            max_deviation_bps=int(max_deviation),
        )

    async def _relay_state(self, feed: Feed) -> tuple[PoolRelayState, bool, bool]:
        destination = self.adapters.destination
        relay = feed.relay_address
        config, last_relay_time, authorized, enabled = await asyncio.gather(
            destination.read_contract(
                relay, PRICE_RELAY, "getPoolConfig", feed.chain_id, feed.pool_address
            ),
            destination.read_contract(
                relay, PRICE_RELAY, "lastRelayTime", feed.chain_id, feed.pool_address
            ),
            destination.read_contract(relay, PRICE_RELAY, "authorizedRelayers", destination.address),
            destination.read_contract(
                relay, PRICE_RELAY, "enabledPools", feed.chain_id, feed.pool_address
            ),
        )
        # PoolConfig is (token0, token1, lastBlockNumber, lastSqrtPriceX96)
        state = PoolRelayState(
            last_block_number=config[2],
            last_relay_time=last_relay_time or None,
            last_sqrt_price_x96=config[3],
        )
        return state, bool(authorized), bool(enabled)

    async def submit_relay(self, feed: Feed, sample: PriceSample) -> SubmitResult:
        """Relay a source sample to the relay program.

        :param feed: Relay feed.
        :param sample: Fresh source sample.
        :returns: Relay transaction, which is attested next.
        :raises RelayRuleViolation: If the relay program would reject the call.
        :raises GasPriceTooHigh: If the destination is above the gas ceiling.
        :raises OnChainRejection: If the relay reverts anyway.
        """
        destination = self.adapters.destination
        block = await destination.get_block()
        timestamp = clamp_timestamp(sample.source_timestamp, block.timestamp)
        if timestamp != sample.source_timestamp:
            logger.info(
                f"{feed.alias}: source clock ahead of destination, "
                f"timestamp clamped {sample.source_timestamp} -> {timestamp}"
            )

        candidate = RelayCandidate(
            chain_id=feed.chain_id,
            pool=feed.pool_address,
            sqrt_price_x96=sample.sqrt_price_x96,
            source_timestamp=timestamp,
            source_block_number=sample.source_block_number,
        )
        params = await self._relay_params(feed)
        onchain, authorized, enabled = await self._relay_state(feed)
        self.ledger.check(
            candidate,
            block.timestamp,
            onchain=onchain,
            authorized=authorized,
            enabled=enabled,
            params=params,
        )

        await ensure_gas_below(destination, self.max_gas_price_gwei)
        tx_hash = await destination.write_contract(
            feed.relay_address,
            PRICE_RELAY,
            "relayPrice",
            feed.chain_id,
            feed.pool_address,
            sample.sqrt_price_x96,
            sample.tick,
            sample.liquidity,
            sample.token0,
            sample.token1,
            timestamp,
            sample.source_block_number,
        )
        receipt = await destination.wait_for_receipt(tx_hash)
        # The relay program rate-limits on its own block time.
        mined = await destination.get_block(receipt.block_number)
        self.ledger.record(candidate, mined.timestamp)
        logger.info(f"{feed.alias}: relayed block {sample.source_block_number}, tx {tx_hash}")
        return SubmitResult(tx_hash)

    async def submit_proof(self, feed: Feed, proof: AttestationProof) -> SubmitResult:
        """Hand a verified proof to the feed.

        :raises GasPriceTooHigh: If the destination is above the gas ceiling.
        :raises OnChainRejection: With the feed's revert reason.
        """
        destination = self.adapters.destination
        await ensure_gas_below(destination, self.max_gas_price_gwei)

        tx_hash = await destination.write_contract(
            feed.feed_address, CUSTOM_FEED, "updateFromProof", proof.to_contract_arg()
        )
        await destination.wait_for_receipt(tx_hash)
        return SubmitResult(tx_hash, await self.read_back(feed))
