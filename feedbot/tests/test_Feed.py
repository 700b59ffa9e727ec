"""Unit tests for Feed."""

import pytest

from feedbot.src.Feed import Feed, FeedCategory
from feedbot.src.errors import ConfigError
from feedbot.tests.fakes import FEED, POOL, RECORDER, RELAY, feed_record


class TestCategory:
    """Test topology inference from store records."""

    def test_destination_chain_is_native(self) -> None:
        """A pool on the destination chain without a capture program is native."""
        feed = Feed.from_dict(feed_record(chain_id=14), destination_chain_id=14)
        assert feed.category is FeedCategory.NATIVE

    def test_recorder_makes_direct(self) -> None:
        """A capture program makes the feed direct."""
        feed = Feed.from_dict(
            feed_record(chain_id=1, priceRecorderAddress=RECORDER), destination_chain_id=14
        )
        assert feed.category is FeedCategory.DIRECT
        assert feed.recorder_address == RECORDER
        assert feed.chain_id == 1

    def test_relay_chain_makes_relay(self) -> None:
        """Relay chains are relayed."""
        feed = Feed.from_dict(
            feed_record(chain_id=42161, category="relay", priceRelayAddress=RELAY),
            destination_chain_id=14,
        )
        assert feed.category is FeedCategory.RELAY
        assert feed.relay_address == RELAY

    def test_declared_native(self) -> None:
        """An explicit native category is honoured."""
        feed = Feed.from_dict(feed_record(chain_id=14, category="native"))
        assert feed.category is FeedCategory.NATIVE

    def test_zero_address_means_unset(self) -> None:
        """A zero capture-program address counts as absent."""
        feed = Feed.from_dict(
            feed_record(chain_id=14, priceRecorderAddress="0x" + "00" * 20),
            destination_chain_id=14,
        )
        assert feed.category is FeedCategory.NATIVE
        assert feed.recorder_address is None


class TestParsing:
    """Test record parsing."""

    def test_fields(self) -> None:
        """Addresses are checksummed and tokens parsed."""
        feed = Feed.from_dict(feed_record(invertPrice=True, deployedBy="0xabc"))
        assert feed.id == "feed-1"
        assert feed.alias == "WETH_USDC"
        assert feed.pool_address == POOL
        assert feed.feed_address == FEED
        assert feed.token0.symbol == "WETH"
        assert feed.token1.decimals == 18
        assert feed.invert_price
        assert feed.deployed_by == "0xabc"
        assert str(feed) == "WETH_USDC (chain 14, native)"

    def test_legacy_pool_address(self) -> None:
        """Legacy records carry poolAddress and no sourceChain."""
        record = feed_record()
        del record["sourcePoolAddress"]
        del record["sourceChain"]
        record["poolAddress"] = POOL

        feed = Feed.from_dict(record, destination_chain_id=14)

        assert feed.pool_address == POOL
        assert feed.chain_id == 14
        assert feed.source_chain.name == "Flare"
        assert feed.category is FeedCategory.NATIVE

    def test_archived(self) -> None:
        """archivedAt marks the feed as archived."""
        assert not Feed.from_dict(feed_record()).is_archived
        assert Feed.from_dict(feed_record(archivedAt="2024-01-01T00:00:00Z")).is_archived


class TestInvalidRecords:
    """Test rejection of invalid records."""

    def test_missing_feed_address(self) -> None:
        """A record without a feed address is rejected."""
        record = feed_record()
        del record["customFeedAddress"]
        with pytest.raises(ConfigError, match="missing field"):
            Feed.from_dict(record)

    def test_missing_pool(self) -> None:
        """A record without any pool address is rejected."""
        record = feed_record()
        del record["sourcePoolAddress"]
        with pytest.raises(ConfigError, match="missing pool address"):
            Feed.from_dict(record)

    def test_invalid_address(self) -> None:
        """Malformed addresses are rejected."""
        with pytest.raises(ConfigError):
            Feed.from_dict(feed_record(customFeedAddress="not-an-address"))

    def test_invalid_decimals(self) -> None:
        """Token decimals must be integers."""
        record = feed_record()
        record["token0"] = {"address": POOL, "symbol": "X", "decimals": "eighteen"}
        with pytest.raises(ConfigError, match="invalid field"):
            Feed.from_dict(record)

    def test_both_programs(self) -> None:
        """A feed cannot have both a capture and a relay program."""
        with pytest.raises(ConfigError, match="exactly one"):
            Feed.from_dict(
                feed_record(chain_id=1, priceRecorderAddress=RECORDER, priceRelayAddress=RELAY)
            )

    def test_direct_without_recorder(self) -> None:
        """A direct feed off the destination chain needs a capture program."""
        with pytest.raises(ConfigError, match="exactly one"):
            Feed.from_dict(feed_record(chain_id=1), destination_chain_id=14)
