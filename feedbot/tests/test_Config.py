"""Unit tests for Config."""

import pytest

from feedbot.src.Config import BotConfig, parse_feed_ids
from feedbot.src.errors import ConfigError

PRIVATE_KEY = "0x" + "11" * 32


class TestValidate:
    """Test configuration validation."""

    def test_defaults_are_valid(self) -> None:
        """A private key is the only required value."""
        assert BotConfig(private_key=PRIVATE_KEY).validate() == []

    def test_missing_private_key(self) -> None:
        """The signing key is required."""
        assert "DEPLOYER_PRIVATE_KEY is required" in BotConfig().validate()

    def test_every_error_is_reported(self) -> None:
        """check() lists all problems at once."""
        config = BotConfig(
            network="mainnet",
            feed_store_path=None,
            check_interval=0,
            min_balance=0.1,
            critical_balance=1.0,
        )
        with pytest.raises(ConfigError) as exc_info:
            config.check()

        message = str(exc_info.value)
        assert "DEPLOYER_PRIVATE_KEY" in message
        assert "Unknown network mainnet" in message
        assert "FEED_STORE_URL or FEED_STORE_PATH" in message
        assert "check_interval" in message
        assert "critical_balance" in message

    def test_gas_ceiling(self) -> None:
        """The gas ceiling may be disabled but not zero."""
        assert BotConfig(private_key=PRIVATE_KEY, max_gas_price_gwei=None).validate() == []
        assert BotConfig(private_key=PRIVATE_KEY, max_gas_price_gwei=0).validate() == [
            "max_gas_price_gwei must be positive"
        ]


class TestNetwork:
    """Test destination network properties."""

    def test_flare(self) -> None:
        config = BotConfig()
        assert config.destination_chain_id == 14
        assert config.native_symbol == "FLR"

    def test_coston2(self) -> None:
        config = BotConfig(network="coston2")
        assert config.destination_chain_id == 114
        assert config.native_symbol == "C2FLR"


class TestAccount:
    """Test signing account derivation."""

    def test_account(self) -> None:
        """The account is derived from the private key."""
        account = BotConfig(private_key=PRIVATE_KEY).account()
        assert account.address.startswith("0x")
        assert len(account.address) == 42

    def test_missing_key(self) -> None:
        with pytest.raises(ConfigError):
            BotConfig().account()

    def test_malformed_key(self) -> None:
        """A malformed key is a configuration error, not a crash."""
        with pytest.raises(ConfigError, match="Invalid private key"):
            BotConfig(private_key="0x1234").account()


class TestParseFeedIds:
    """Test the comma-separated feed selection."""

    def test_parse(self) -> None:
        assert parse_feed_ids(" a, b ,,c ") == ["a", "b", "c"]

    def test_empty(self) -> None:
        assert parse_feed_ids(None) == []
        assert parse_feed_ids("") == []
