"""Record reader: snapshot the pool with a capture transaction on the source chain.

The capture transaction is what the data connector later attests, so the
sample carries its hash.
"""

import logging
from typing import Any

from ..ChainAdapter import ChainAdapters, ensure_gas_below
from ..ContractUtility import PRICE_RECORDER
from ..Feed import Feed, FeedCategory
from ..RetryPolicy import Clock
from ..chains import required_confirmations
from ..errors import OnChainRejection
from .base import BaseReader, PriceSample, register_reader

logger = logging.getLogger(__name__)


@register_reader
class RecordReader(BaseReader):
    """Reader for direct feeds.

    :ivar max_gas_price_gwei: Gas ceiling for the capture transaction.
    """

    category = FeedCategory.DIRECT

    def __init__(
        self,
        adapters: ChainAdapters,
        clock: Clock | None = None,
        max_gas_price_gwei: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(adapters, clock=clock, **kwargs)
        self.max_gas_price_gwei = max_gas_price_gwei

    async def check_eligible(self, feed: Feed) -> bool:
        source = self.adapters.get(feed.chain_id)
        return bool(
            await source.read_contract(
                feed.recorder_address, PRICE_RECORDER, "canUpdate", feed.pool_address
            )
        )

    async def read(self, feed: Feed) -> PriceSample | None:
        """Send ``recordPrice(pool)`` and wait for the source chain to confirm it.

        :raises GasPriceTooHigh: If the source chain is above the gas ceiling.
        :raises OnChainRejection: If the capture reverts or emits no event.
        """
        source = self.adapters.get(feed.chain_id)
        await ensure_gas_below(source, self.max_gas_price_gwei)

        tx_hash = await source.write_contract(
            feed.recorder_address, PRICE_RECORDER, "recordPrice", feed.pool_address
        )
        logger.info(f"{feed.alias}: recorded price on chain {feed.chain_id}, tx {tx_hash}")

        confirmations = required_confirmations(feed.chain_id)
        if confirmations > 1:
            logger.info(f"{feed.alias}: waiting for {confirmations} confirmations")
        receipt = await source.wait_for_receipt(tx_hash, confirmations=confirmations)

        events = source.decode_events(receipt, feed.recorder_address, PRICE_RECORDER, "PriceRecorded")
        if not events:
            raise OnChainRejection("capture emitted no PriceRecorded event", tx_hash)
        event = events[-1]

        return PriceSample(
            chain_id=feed.chain_id,
            pool=feed.pool_address,
            sqrt_price_x96=event["sqrtPriceX96"],
            tick=event["tick"],
            liquidity=event["liquidity"],
            token0=event["token0"],
            token1=event["token1"],
            source_timestamp=event["timestamp"],
            source_block_number=event["blockNumber"],
            tx_hash=tx_hash,
        )
