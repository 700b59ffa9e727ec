"""ContractUtility: contract ABI loading."""

import json
from functools import lru_cache
from pathlib import Path

ABI_DIR = Path(__file__).parent / "abi"

PRICE_RECORDER = "PriceRecorder"
PRICE_RELAY = "PriceRelay"
CUSTOM_FEED = "PoolPriceCustomFeed"
UNISWAP_V3_POOL = "UniswapV3Pool"
FDC_HUB = "FdcHub"
# FdcHub.json also carries the fee configuration's getRequestFee().
FEE_CONFIG = "FdcHub"
RELAY = "Relay"


class ContractUtility:
    """Loads the ABIs the bot talks to from the bundled ``abi`` folder."""

    @staticmethod
    @lru_cache(maxsize=None)
    def get_contract(contract_name: str) -> list:
        """Fetch the ABI of a contract.

        :param contract_name: Name of the contract (e.g., "PriceRelay").
        :returns: ABI as a list of entries.
        :raises FileNotFoundError: If no ABI is bundled for the contract.
        """
        output_path = (ABI_DIR / f"{contract_name}.json").resolve()

        with open(output_path, "r") as file:
            return json.load(file)
