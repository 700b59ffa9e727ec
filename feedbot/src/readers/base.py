"""Base reader interface and the reader registry.

A reader knows, for one feed topology, whether a feed may be updated now
and how to obtain a fresh price sample for it. Readers are registered by
the feed category they serve.

.. code-block:: python

    @register_reader
    class MyReader(BaseReader):
        category = FeedCategory.NATIVE

        async def check_eligible(self, feed: Feed) -> bool:
            ...

        async def read(self, feed: Feed) -> PriceSample | None:
            ...
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from ..ChainAdapter import ChainAdapter, ChainAdapters
from ..ContractUtility import UNISWAP_V3_POOL
from ..Feed import Feed, FeedCategory
from ..PriceMath import sqrt_price_x96_to_price
from ..RetryPolicy import Clock, SystemClock
from ..errors import FeedBotError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceSample:
    """Normalized pool observation.

    :ivar chain_id: Chain the pool lives on.
    :ivar pool: Pool address.
    :ivar sqrt_price_x96: Pool sqrt price at 2^96 scale.
    :ivar tick: Pool tick.
    :ivar liquidity: In-range liquidity.
    :ivar token0: Pool token0 address.
    :ivar token1: Pool token1 address.
    :ivar source_timestamp: Timestamp of the observed block.
    :ivar source_block_number: Number of the observed block.
    :ivar tx_hash: Capture transaction, for the record path.
    """

    chain_id: int
    pool: str
    sqrt_price_x96: int
    tick: int
    liquidity: int
    token0: str
    token1: str
    source_timestamp: int
    source_block_number: int
    tx_hash: str | None = None

    def price(self, feed: Feed) -> int:
        """Feed value implied by this sample, with 6 decimals."""
        return sqrt_price_x96_to_price(
            self.sqrt_price_x96,
            feed.token0.decimals,
            feed.token1.decimals,
            feed.invert_price,
        )


class BaseReader(ABC):
    """Abstract base class for price source readers.

    :cvar category: Feed category this reader serves.
    :ivar adapters: Chain adapters shared by the bot.
    :ivar clock: Clock used for interval checks.
    """

    category: ClassVar[FeedCategory]

    def __init__(self, adapters: ChainAdapters, clock: Clock | None = None, **kwargs: Any) -> None:
        self.adapters = adapters
        self.clock = clock or SystemClock()

    async def is_eligible(self, feed: Feed) -> bool:
        """Whether the feed may be updated now.

        Read failures count as "not eligible"; the next tick checks again.
        """
        try:
            return await self.check_eligible(feed)
        except FeedBotError as e:
            logger.debug(f"Eligibility check for {feed.alias} failed: {e}")
            return False

    @abstractmethod
    async def check_eligible(self, feed: Feed) -> bool:
        """Eligibility check that may raise on read failures."""
        pass

    @abstractmethod
    async def read(self, feed: Feed) -> PriceSample | None:
        """Produce a price sample, or None when the pool cannot be read safely."""
        pass


async def read_pool(adapter: ChainAdapter, chain_id: int, pool: str) -> PriceSample | None:
    """Read a Uniswap V3 style pool at the chain head.

    The block is read first so the sample's block number never runs ahead
    of the state it describes.

    :param adapter: Adapter for the pool's chain.
    :param chain_id: Pool chain id.
    :param pool: Pool address.
    :returns: Sample, or None while the pool is locked mid-swap.
    """
    block = await adapter.get_block()
    slot0, liquidity, token0, token1 = await asyncio.gather(
        adapter.read_contract(pool, UNISWAP_V3_POOL, "slot0"),
        adapter.read_contract(pool, UNISWAP_V3_POOL, "liquidity"),
        adapter.read_contract(pool, UNISWAP_V3_POOL, "token0"),
        adapter.read_contract(pool, UNISWAP_V3_POOL, "token1"),
    )
    sqrt_price_x96, tick = slot0[0], slot0[1]
    unlocked = slot0[6]
    if not unlocked:
        logger.warning(f"Pool {pool} on chain {chain_id} is locked; skipping sample")
        return None
    return PriceSample(
        chain_id=chain_id,
        pool=pool,
        sqrt_price_x96=sqrt_price_x96,
        tick=tick,
        liquidity=liquidity,
        token0=token0,
        token1=token1,
        source_timestamp=block.timestamp,
        source_block_number=block.number,
    )


# Registry of available readers (populated by subclass imports)
READER_REGISTRY: dict[FeedCategory, type[BaseReader]] = {}


def register_reader(cls: type[BaseReader]) -> type[BaseReader]:
    """Decorator to register a reader class.

    :param cls: Reader class to register.
    :returns: The same class (unmodified).
    :raises ValueError: If the class has no category or it is already taken.
    """
    category = getattr(cls, "category", None)
    if category is None:
        raise ValueError(f"Reader {cls.__name__} must define a 'category' attribute")
    if category in READER_REGISTRY:
        raise ValueError(f"Reader for '{category.value}' already registered")
    READER_REGISTRY[category] = cls
    return cls


def get_reader(category: FeedCategory, adapters: ChainAdapters, **kwargs: Any) -> BaseReader:
    """Create a reader instance for a feed category.

    :param category: Feed category.
    :param adapters: Chain adapters.
    :param kwargs: Reader-specific options.
    :returns: Reader instance.
    :raises ValueError: If no reader serves the category.
    """
    if category not in READER_REGISTRY:
        available = ", ".join(c.value for c in READER_REGISTRY)
        raise ValueError(f"No reader for '{category.value}'. Available: {available}")
    return READER_REGISTRY[category](adapters, **kwargs)
