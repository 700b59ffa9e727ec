"""Native reader: the pool lives on the destination chain.

The feed contract reads the pool itself in ``updateFromNativePool``, so
no attestation is involved. The sample read here is informational.
"""

import logging
from typing import Any

from ..ChainAdapter import ChainAdapters
from ..ContractUtility import CUSTOM_FEED
from ..Feed import Feed, FeedCategory
from ..RetryPolicy import Clock
from .base import BaseReader, PriceSample, read_pool, register_reader

logger = logging.getLogger(__name__)

DEFAULT_NATIVE_INTERVAL = 300


@register_reader
class NativeReader(BaseReader):
    """Reader for feeds whose pool is on the destination chain.

    :ivar native_interval: Seconds between two native updates of one feed.
    """

    category = FeedCategory.NATIVE

    def __init__(
        self,
        adapters: ChainAdapters,
        clock: Clock | None = None,
        native_interval: float = DEFAULT_NATIVE_INTERVAL,
        **kwargs: Any,
    ) -> None:
        super().__init__(adapters, clock=clock, **kwargs)
        self.native_interval = native_interval

    async def check_eligible(self, feed: Feed) -> bool:
        last_update = await self.adapters.destination.read_contract(
            feed.feed_address, CUSTOM_FEED, "lastUpdateTimestamp"
        )
        if not last_update:
            return True
        elapsed = self.clock.time() - last_update
        if elapsed < self.native_interval:
            logger.debug(
                f"{feed.alias}: {int(elapsed)}s since last native update "
                f"(interval {int(self.native_interval)}s)"
            )
            return False
        return True

    async def read(self, feed: Feed) -> PriceSample | None:
        destination = self.adapters.destination
        return await read_pool(destination, destination.chain_id, feed.pool_address)
