"""Bot configuration.

Values come from the CLI, whose defaults come from environment variables
(``.env`` is loaded first by ``main``). ``BotConfig.check`` is run before
the scheduler starts; any error keeps the bot out of the running state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .chains import DEFAULT_VERIFIER_API_KEY, DESTINATION_NETWORKS
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class BotConfig:
    """Runtime configuration of the feed bot.

    :ivar private_key: Signing key used for every transaction.
    :ivar network: Destination network name ("flare" or "coston2").
    :ivar feed_store_url: Dashboard URL serving ``/api/feeds``.
    :ivar feed_store_path: Local feed store JSON file, used when no URL is set.
    :ivar check_interval: Seconds between scheduler ticks.
    :ivar native_update_interval: Seconds between native updates of one feed.
    :ivar max_attestation_retries: Extra attestation attempts per flow.
    :ivar attestation_retry_delay: Seconds between attestation attempts.
    :ivar max_gas_price_gwei: Writes are skipped above this gas price.
    :ivar min_balance: Warn when the wallet holds less.
    :ivar critical_balance: Stop when the wallet holds less.
    :ivar balance_check_every: Ticks between balance checks.
    :ivar max_consecutive_failures: Failed flows in a row before the bot enters error.
    :ivar stats_interval: Seconds between statistics summaries.
    :ivar selected_feed_ids: Only run these feeds when non-empty.
    :ivar verifier_api_key: Verifier API key.
    """

    private_key: str | None = None
    network: str = "flare"
    feed_store_url: str | None = None
    feed_store_path: str | None = "data/feeds.json"
    check_interval: float = 60
    native_update_interval: float = 300
    max_attestation_retries: int = 2
    attestation_retry_delay: float = 10
    max_gas_price_gwei: float | None = 100
    min_balance: float = 1.0
    critical_balance: float = 0.1
    balance_check_every: int = 10
    max_consecutive_failures: int = 10
    stats_interval: float = 3600
    selected_feed_ids: list[str] = field(default_factory=list)
    verifier_api_key: str = DEFAULT_VERIFIER_API_KEY

    @property
    def destination_chain_id(self) -> int:
        return int(DESTINATION_NETWORKS[self.network]["chain_id"])

    @property
    def native_symbol(self) -> str:
        return str(DESTINATION_NETWORKS[self.network]["symbol"])

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []
        if not self.private_key:
            errors.append("DEPLOYER_PRIVATE_KEY is required")
        if self.network not in DESTINATION_NETWORKS:
            errors.append(
                f"Unknown network {self.network}. Available: {', '.join(sorted(DESTINATION_NETWORKS))}"
            )
        if not self.feed_store_url and not self.feed_store_path:
            errors.append("Either FEED_STORE_URL or FEED_STORE_PATH must be set")
        if self.check_interval < 1:
            errors.append("check_interval must be at least 1 second")
        if self.native_update_interval < 0:
            errors.append("native_update_interval must not be negative")
        if self.max_attestation_retries < 0:
            errors.append("max_attestation_retries must not be negative")
        if self.max_gas_price_gwei is not None and self.max_gas_price_gwei <= 0:
            errors.append("max_gas_price_gwei must be positive")
        if self.critical_balance > self.min_balance:
            errors.append("critical_balance must not exceed min_balance")
        if self.balance_check_every < 1:
            errors.append("balance_check_every must be at least 1")
        if self.max_consecutive_failures < 1:
            errors.append("max_consecutive_failures must be at least 1")
        return errors

    def check(self) -> None:
        """Raise ConfigError listing every validation error."""
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))

    def account(self) -> LocalAccount:
        """Signing account derived from the private key.

        :raises ConfigError: If the key is missing or malformed.
        """
        if not self.private_key:
            raise ConfigError("DEPLOYER_PRIVATE_KEY is required")
        try:
            return Account.from_key(self.private_key)
        except Exception as e:  # eth_keys raises its own ValidationError
            raise ConfigError(f"Invalid private key: {e}") from e


def parse_feed_ids(value: str | None) -> list[str]:
    """Parse a comma-separated list of feed ids."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
