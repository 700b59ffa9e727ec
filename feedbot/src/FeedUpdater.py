"""FeedUpdater: drive one feed through its full update flow.

Flows per topology::

    native  read pool -> updateFromNativePool -> read back
    direct  recordPrice on source -> confirmations -> attest capture tx
            -> updateFromProof -> read back
    relay   read source pool -> relayPrice on destination -> attest relay tx
            -> updateFromProof -> read back

Only the attestation phase is retried. It reuses the capture or relay
transaction, so no second source write is ever sent.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from .AttestationClient import AttestationClient
from .BotStats import EventLog
from .ChainAdapter import ChainAdapters
from .Feed import Feed, FeedCategory
from .PriceMath import format_price
from .ProofAssembler import AttestationProof
from .RelayRules import RelayLedger
from .RetryPolicy import Clock, SystemClock
from .UpdateSubmitter import SubmitResult, UpdateSubmitter
from .chains import required_confirmations
from .errors import FeedBotError, GasPriceTooHigh
from .readers import BaseReader, PriceSample, get_reader

logger = logging.getLogger(__name__)

# Pause after the attested transaction is mined so the verifier indexes it.
SLOW_INGESTION_BUFFER = 300.0
FAST_INGESTION_BUFFER = 5.0


class UpdateStep(str, Enum):
    CHECK = "check"
    READ = "read"
    RECORD = "record"
    RELAY = "relay"
    INGEST = "ingest"
    PREPARE = "prepare"
    REQUEST = "request"
    FINALIZE = "finalize"
    RETRIEVE = "retrieve"
    DECODE = "decode"
    SUBMIT = "submit"
    DONE = "done"


@dataclass
class FeedUpdateResult:
    """Outcome of one update flow.

    :ivar success: Whether the feed accepted an update.
    :ivar skipped: Whether the flow stopped early without failing.
    :ivar error: Failure or skip reason.
    :ivar step: Step the flow reached.
    :ivar tx_hash: Final destination transaction.
    :ivar price: New feed value, formatted with 6 decimals.
    :ivar duration: Seconds the flow took.
    :ivar attestation_attempts: Attestation attempts made.
    """

    feed_id: str
    feed_alias: str
    success: bool
    skipped: bool = False
    error: str | None = None
    step: str | None = None
    tx_hash: str | None = None
    price: str | None = None
    duration: float = 0.0
    attestation_attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class _Progress:
    def __init__(self) -> None:
        self.step = UpdateStep.CHECK
        self.attestation_attempts = 0

    def __call__(self, step: str | UpdateStep) -> None:
        self.step = UpdateStep(step)


class FeedUpdater:
    """Runs update flows for all three topologies.

    :ivar readers: Reader per feed category.
    :ivar attestation: Attestation client on the destination network.
    :ivar submitter: Destination writer.
    :ivar event_log: Structured log shared with the scheduler.
    """

    def __init__(
        self,
        adapters: ChainAdapters,
        attestation: AttestationClient,
        submitter: UpdateSubmitter,
        event_log: EventLog,
        clock: Clock | None = None,
        ledger: RelayLedger | None = None,
        readers: dict[FeedCategory, BaseReader] | None = None,
        native_interval: float = 300,
        max_gas_price_gwei: float | None = None,
        max_attestation_retries: int = 2,
        attestation_retry_delay: float = 10,
    ) -> None:
        self.adapters = adapters
        self.attestation = attestation
        self.submitter = submitter
        self.event_log = event_log
        self.clock = clock or SystemClock()
        self.max_attestation_retries = max_attestation_retries
        self.attestation_retry_delay = attestation_retry_delay

        if readers is None:
            ledger = ledger or submitter.ledger
            readers = {
                category: get_reader(
                    category,
                    adapters,
                    clock=self.clock,
                    ledger=ledger,
                    native_interval=native_interval,
                    max_gas_price_gwei=max_gas_price_gwei,
                )
                for category in FeedCategory
            }
        self.readers = readers

    def reader_for(self, feed: Feed) -> BaseReader:
        return self.readers[feed.category]

    async def is_eligible(self, feed: Feed) -> bool:
        return await self.reader_for(feed).is_eligible(feed)

    async def update(self, feed: Feed) -> FeedUpdateResult:
        """Run the feed's flow end to end.

        Failures of the bot's own taxonomy are turned into a failed result;
        a gas price above the ceiling is reported as a skip.

        :param feed: Feed to update.
        :returns: Outcome of the flow.
        """
        started = self.clock.time()
        progress = _Progress()
        self.event_log.info(
            f"Updating {feed.alias} ({feed.source_chain.name} -> chain {self.adapters.destination_chain_id})",
            feed=feed.alias,
            category=feed.category.value,
        )

        try:
            if feed.category is FeedCategory.NATIVE:
                result = await self._update_native(feed, progress)
            elif feed.category is FeedCategory.DIRECT:
                result = await self._update_direct(feed, progress)
            else:
                result = await self._update_relay(feed, progress)
        except GasPriceTooHigh as e:
            self.event_log.warn(f"{feed.alias}: {e}, skipping", feed=feed.alias, step=progress.step.value)
            result = self._result(feed, progress, success=False, skipped=True, error=str(e))
        except FeedBotError as e:
            self.event_log.error(
                f"Failed to update {feed.alias} at {progress.step.value}: {e}",
                feed=feed.alias,
                step=progress.step.value,
            )
            result = self._result(feed, progress, success=False, error=str(e))

        result.duration = self.clock.time() - started
        if result.success:
            self.event_log.info(
                f"{feed.alias} updated in {int(result.duration)}s (value {result.price})",
                feed=feed.alias,
                tx=result.tx_hash,
            )
        return result

    def _result(self, feed: Feed, progress: _Progress, **kwargs: Any) -> FeedUpdateResult:
        return FeedUpdateResult(
            feed_id=feed.id,
            feed_alias=feed.alias,
            step=progress.step.value,
            attestation_attempts=progress.attestation_attempts,
            **kwargs,
        )

    def _success(self, feed: Feed, progress: _Progress, submitted: SubmitResult) -> FeedUpdateResult:
        progress(UpdateStep.DONE)
        price = None
        if submitted.readback is not None:
            price = format_price(submitted.readback.latest_value)
        return self._result(feed, progress, success=True, tx_hash=submitted.tx_hash, price=price)

    def _log_sample(self, feed: Feed, sample: PriceSample) -> None:
        self.event_log.info(
            f"{feed.alias}: source price {format_price(sample.price(feed))} "
            f"at block {sample.source_block_number}",
            feed=feed.alias,
            tx=sample.tx_hash,
        )

    async def _update_native(self, feed: Feed, progress: _Progress) -> FeedUpdateResult:
        progress(UpdateStep.READ)
        sample = await self.reader_for(feed).read(feed)
        if sample is None:
            return self._result(feed, progress, success=False, skipped=True, error="Pool is locked")
        self._log_sample(feed, sample)

        progress(UpdateStep.SUBMIT)
        submitted = await self.submitter.update_native(feed)
        return self._success(feed, progress, submitted)

    async def _update_direct(self, feed: Feed, progress: _Progress) -> FeedUpdateResult:
        progress(UpdateStep.RECORD)
        sample = await self.reader_for(feed).read(feed)
        if sample is None or sample.tx_hash is None:
            return self._result(feed, progress, success=False, skipped=True, error="No capture made")
        self._log_sample(feed, sample)

        confirmations = required_confirmations(feed.chain_id)
        await self._ingestion_buffer(progress, confirmations)
        proof = await self._attest(feed, progress, feed.chain_id, sample.tx_hash, confirmations)

        progress(UpdateStep.SUBMIT)
        submitted = await self.submitter.submit_proof(feed, proof)
        return self._success(feed, progress, submitted)

    async def _update_relay(self, feed: Feed, progress: _Progress) -> FeedUpdateResult:
        progress(UpdateStep.READ)
        sample = await self.reader_for(feed).read(feed)
        if sample is None:
            return self._result(feed, progress, success=False, skipped=True, error="Pool is locked")
        self._log_sample(feed, sample)

        progress(UpdateStep.RELAY)
        relayed = await self.submitter.submit_relay(feed, sample)
        self.event_log.info(f"{feed.alias}: relayed", feed=feed.alias, tx=relayed.tx_hash)

        # The relay transaction lives on the destination chain.
        destination_chain_id = self.adapters.destination_chain_id
        await self._ingestion_buffer(progress, 1)
        proof = await self._attest(feed, progress, destination_chain_id, relayed.tx_hash, 1)

        progress(UpdateStep.SUBMIT)
        submitted = await self.submitter.submit_proof(feed, proof)
        return self._success(feed, progress, submitted)

    async def _ingestion_buffer(self, progress: _Progress, confirmations: int) -> None:
        progress(UpdateStep.INGEST)
        delay = SLOW_INGESTION_BUFFER if confirmations > 1 else FAST_INGESTION_BUFFER
        await self.clock.sleep(delay)

    async def _attest(
        self,
        feed: Feed,
        progress: _Progress,
        chain_id: int,
        tx_hash: str,
        confirmations: int,
    ) -> AttestationProof:
        """Obtain a proof, re-running only the attestation phase on recoverable errors."""
        attempts = self.max_attestation_retries + 1
        for attempt in range(1, attempts + 1):
            progress.attestation_attempts = attempt
            try:
                return await self.attestation.get_proof(
                    chain_id, tx_hash, confirmations, progress=progress
                )
            except FeedBotError as e:
                if not e.retry_attestation or attempt >= attempts:
                    raise
                self.event_log.warn(
                    f"{feed.alias}: attestation failed at {progress.step.value} "
                    f"(attempt {attempt}/{attempts}): {e}; retrying",
                    feed=feed.alias,
                    tx=tx_hash,
                )
                await self.clock.sleep(self.attestation_retry_delay)
        raise AssertionError("unreachable")
