"""Relay reader: read the source pool off-chain for relaying.

No transaction is sent on the source chain. Eligibility follows the relay
program's ``canRelay`` and this process's own relay ledger, whichever is
stricter. The ledger is kept in destination chain time.
"""

import logging
from typing import Any

from ..ChainAdapter import ChainAdapters
from ..ContractUtility import PRICE_RELAY
from ..Feed import Feed, FeedCategory
from ..RelayRules import RelayLedger
from ..RetryPolicy import Clock
from .base import BaseReader, PriceSample, read_pool, register_reader

logger = logging.getLogger(__name__)


@register_reader
class RelayFetchReader(BaseReader):
    """Reader for relay feeds.

    :ivar ledger: Relays submitted by this process.
    """

    category = FeedCategory.RELAY

    def __init__(
        self,
        adapters: ChainAdapters,
        clock: Clock | None = None,
        ledger: RelayLedger | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(adapters, clock=clock, **kwargs)
        self.ledger = ledger or RelayLedger()

    async def check_eligible(self, feed: Feed) -> bool:
        destination = self.adapters.destination
        block = await destination.get_block()
        if not self.ledger.can_relay(feed.chain_id, feed.pool_address, block.timestamp):
            logger.debug(f"{feed.alias}: relayed too recently by this process")
            return False
        return bool(
            await destination.read_contract(
                feed.relay_address, PRICE_RELAY, "canRelay", feed.chain_id, feed.pool_address
            )
        )

    async def read(self, feed: Feed) -> PriceSample | None:
        source = self.adapters.get(feed.chain_id)
        sample = await read_pool(source, feed.chain_id, feed.pool_address)
        if sample is not None:
            logger.info(
                f"{feed.alias}: fetched price from block {sample.source_block_number} "
                f"on chain {feed.chain_id}"
            )
        return sample
