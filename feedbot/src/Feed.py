"""Feed: the logical oracle the bot keeps up to date.

Feeds are created by an external deployment flow and stored in a feed
store (see FeedStore). The bot only reads them. A feed follows one of
three topologies, chosen by its source chain category:

- ``native``: the pool lives on the destination chain; the feed contract
  reads it directly.
- ``direct``: a capture program on the source chain snapshots the pool,
  and the capture transaction is attested.
- ``relay``: the pool is read off-chain and relayed to a relay program on
  the destination chain; the relay transaction is attested.

.. code-block:: python

    >>> feed = Feed.from_dict({"id": "1", "alias": "WETH_USDC", ...})
    >>> feed.category
    <FeedCategory.RELAY: 'relay'>
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from web3 import Web3

from .chains import get_chain, is_relay_chain
from .errors import ConfigError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class FeedCategory(str, Enum):
    NATIVE = "native"
    DIRECT = "direct"
    RELAY = "relay"


@dataclass(frozen=True)
class Token:
    """A pool token.

    :ivar address: Token contract address.
    :ivar symbol: Ticker symbol.
    :ivar decimals: ERC-20 decimals.
    """

    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class SourceChain:
    chain_id: int
    name: str
    category: FeedCategory


@dataclass(frozen=True)
class Feed:
    """A configured price feed.

    :ivar id: Store identifier.
    :ivar alias: Short display name used in logs.
    :ivar source_chain: Chain the pool lives on.
    :ivar pool_address: Pool address on the source chain.
    :ivar feed_address: Destination feed contract address.
    :ivar recorder_address: Capture program on the source chain (direct).
    :ivar relay_address: Relay program on the destination chain (relay).
    :ivar token0: First pool token.
    :ivar token1: Second pool token.
    :ivar invert_price: Report token0 per token1 instead of token1 per token0.
    """

    id: str
    alias: str
    source_chain: SourceChain
    pool_address: str
    feed_address: str
    token0: Token
    token1: Token
    invert_price: bool = False
    recorder_address: str | None = None
    relay_address: str | None = None
    deployed_at: str | None = None
    deployed_by: str | None = None
    archived_at: str | None = None

    def __post_init__(self) -> None:
        has_recorder = self.recorder_address is not None
        has_relay = self.relay_address is not None
        if self.category is FeedCategory.NATIVE:
            return
        if has_recorder == has_relay:
            raise ConfigError(
                f"Feed {self.alias}: exactly one of capture-program or "
                f"relay-program address must be set for a {self.category.value} feed"
            )
        if self.category is FeedCategory.DIRECT and not has_recorder:
            raise ConfigError(f"Feed {self.alias}: direct feed needs a capture-program address")
        if self.category is FeedCategory.RELAY and not has_relay:
            raise ConfigError(f"Feed {self.alias}: relay feed needs a relay-program address")

    @property
    def category(self) -> FeedCategory:
        return self.source_chain.category

    @property
    def chain_id(self) -> int:
        return self.source_chain.chain_id

    @property
    def is_archived(self) -> bool:
        return bool(self.archived_at)

    def __str__(self) -> str:
        return f"{self.alias} ({self.source_chain.name}, {self.category.value})"

    @classmethod
    def from_dict(cls, data: dict[str, Any], destination_chain_id: int = 14) -> Feed:
        """Build a feed from a feed store record.

        Accepts the store's camelCase layout, including legacy records that
        only carry ``poolAddress`` and no ``sourceChain``.

        :param data: Feed record.
        :param destination_chain_id: Chain id of the destination network.
        :returns: Parsed feed.
        :raises ConfigError: If a required field is missing or invalid.
        """
        alias = data.get("alias") or data.get("id") or "?"
        try:
            chain_data = data.get("sourceChain") or {}
            chain_id = int(chain_data.get("id") or destination_chain_id)
            recorder = _address_or_none(data.get("priceRecorderAddress"))
            relay = _address_or_none(data.get("priceRelayAddress"))
            category = _infer_category(
                chain_data.get("category"), chain_id, destination_chain_id, recorder, relay
            )
            chain_info = get_chain(chain_id)
            source_chain = SourceChain(
                chain_id=chain_id,
                name=chain_data.get("name") or (chain_info.name if chain_info else str(chain_id)),
                category=category,
            )
            pool = data.get("sourcePoolAddress") or data.get("poolAddress")
            if not pool:
                raise ConfigError(f"Feed {alias}: missing pool address")

            return cls(
                id=str(data["id"]),
                alias=str(data["alias"]),
                source_chain=source_chain,
                pool_address=Web3.to_checksum_address(pool),
                feed_address=Web3.to_checksum_address(data["customFeedAddress"]),
                token0=_parse_token(data["token0"]),
                token1=_parse_token(data["token1"]),
                invert_price=bool(data.get("invertPrice", False)),
                recorder_address=recorder,
                relay_address=relay,
                deployed_at=data.get("deployedAt"),
                deployed_by=data.get("deployedBy"),
                archived_at=data.get("archivedAt"),
            )
        except KeyError as e:
            raise ConfigError(f"Feed {alias}: missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Feed {alias}: invalid field: {e}") from e


def _address_or_none(value: Any) -> str | None:
    if not value or str(value).lower() == ZERO_ADDRESS:
        return None
    return Web3.to_checksum_address(value)


def _parse_token(data: dict[str, Any]) -> Token:
    return Token(
        address=str(data.get("address") or ZERO_ADDRESS),
        symbol=str(data.get("symbol") or ""),
        decimals=int(data["decimals"]),
    )


def _infer_category(
    declared: str | None,
    chain_id: int,
    destination_chain_id: int,
    recorder: str | None,
    relay: str | None,
) -> FeedCategory:
    # The store only knows "direct" and "relay"; a direct feed on the
    # destination chain without a capture program reads its pool natively.
    if declared == FeedCategory.RELAY.value or relay or is_relay_chain(chain_id):
        return FeedCategory.RELAY
    if declared == FeedCategory.NATIVE.value:
        return FeedCategory.NATIVE
    if recorder:
        return FeedCategory.DIRECT
    if chain_id == destination_chain_id:
        return FeedCategory.NATIVE
    return FeedCategory.DIRECT
