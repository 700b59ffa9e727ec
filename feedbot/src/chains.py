"""Supported chains and attestation network constants.

Direct chains are attested natively by the data connector (a capture
transaction on the chain itself is attested). Relay chains are read
off-chain and relayed to the destination network, where the relay
transaction is attested instead.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# "EVMTransaction" as a bytes32 hex string.
EVM_TRANSACTION_ATTESTATION_TYPE = (
    "0x45564d5472616e73616374696f6e000000000000000000000000000000000000"
)
# Numeric attestation type used by the relay's isFinalized().
EVM_TRANSACTION_TYPE_ID = 200

# Flare's public verifier key.
DEFAULT_VERIFIER_API_KEY = "00000000-0000-0000-0000-000000000000"

# Destination networks (where the feeds and the attestation hub live).
DESTINATION_NETWORKS: dict[str, dict[str, str | int]] = {
    "flare": {
        "chain_id": 14,
        "rpc_url": "https://flare-api.flare.network/ext/bc/C/rpc",
        "verifier_base_url": "https://fdc-verifiers-mainnet.flare.network/verifier",
        "da_layer_url": "https://flr-data-availability.flare.network",
        "fdc_hub": "0xc25c749DC27Efb1864Cb3DADa8845B7687eB2d44",
        "relay": "0x57a4c3676d08Aa5d15410b5A6A80fBcEF72f3F45",
        "symbol": "FLR",
    },
    "coston2": {
        "chain_id": 114,
        "rpc_url": "https://coston2-api.flare.network/ext/bc/C/rpc",
        "verifier_base_url": "https://fdc-verifiers-testnet.flare.network/verifier",
        "da_layer_url": "https://ctn2-data-availability.flare.network",
        "fdc_hub": "0x48aC463d7975828989331F4De43341627b9c5f1D",
        "relay": "0x97702e350CaEda540935d92aAf213307e9069784",
        "symbol": "C2FLR",
    },
}


@dataclass(frozen=True)
class ChainInfo:
    """Static description of a supported chain.

    :ivar chain_id: EVM chain id.
    :ivar name: Human readable name.
    :ivar category: "direct" or "relay".
    :ivar rpc_url: Default public RPC endpoint.
    :ivar source_id: Attestation source id (direct chains only).
    :ivar verifier_path: Verifier URL path segment (direct chains only).
    :ivar symbol: Native currency symbol.
    """

    chain_id: int
    name: str
    category: str
    rpc_url: str
    source_id: str | None = None
    verifier_path: str | None = None
    symbol: str = "ETH"


SUPPORTED_CHAINS: dict[int, ChainInfo] = {
    c.chain_id: c
    for c in [
        # Direct chains
        ChainInfo(
            14, "Flare", "direct", "https://flare-api.flare.network/ext/bc/C/rpc",
            "0x464c520000000000000000000000000000000000000000000000000000000000",
            "flr", "FLR",
        ),
        ChainInfo(
            114, "Coston2", "direct", "https://coston2-api.flare.network/ext/bc/C/rpc",
            "0x7465737443324652000000000000000000000000000000000000000000000000",
            "c2flr", "C2FLR",
        ),
        ChainInfo(
            1, "Ethereum", "direct", "https://eth.llamarpc.com",
            "0x4554480000000000000000000000000000000000000000000000000000000000",
            "eth",
        ),
        ChainInfo(
            11155111, "Sepolia", "direct", "https://ethereum-sepolia-rpc.publicnode.com",
            "0x7465737445544800000000000000000000000000000000000000000000000000",
            "sepolia",
        ),
        # Relay chains
        ChainInfo(42161, "Arbitrum", "relay", "https://arb1.arbitrum.io/rpc"),
        ChainInfo(8453, "Base", "relay", "https://mainnet.base.org"),
        ChainInfo(10, "Optimism", "relay", "https://mainnet.optimism.io"),
        ChainInfo(137, "Polygon", "relay", "https://polygon-rpc.com", symbol="MATIC"),
        ChainInfo(43114, "Avalanche", "relay", "https://api.avax.network/ext/bc/C/rpc", symbol="AVAX"),
        ChainInfo(56, "BNB Chain", "relay", "https://bsc-dataseed.binance.org", symbol="BNB"),
        ChainInfo(250, "Fantom", "relay", "https://rpc.ftm.tools", symbol="FTM"),
        ChainInfo(324, "zkSync Era", "relay", "https://mainnet.era.zksync.io"),
        ChainInfo(59144, "Linea", "relay", "https://rpc.linea.build"),
        ChainInfo(534352, "Scroll", "relay", "https://rpc.scroll.io"),
        ChainInfo(5000, "Mantle", "relay", "https://rpc.mantle.xyz", symbol="MNT"),
        ChainInfo(81457, "Blast", "relay", "https://rpc.blast.io"),
        ChainInfo(100, "Gnosis", "relay", "https://rpc.gnosischain.com", symbol="XDAI"),
        ChainInfo(42220, "Celo", "relay", "https://forno.celo.org", symbol="CELO"),
        ChainInfo(1101, "Polygon zkEVM", "relay", "https://zkevm-rpc.com"),
        ChainInfo(34443, "Mode", "relay", "https://mainnet.mode.network"),
        ChainInfo(7777777, "Zora", "relay", "https://rpc.zora.energy"),
    ]
}


def get_chain(chain_id: int) -> ChainInfo | None:
    return SUPPORTED_CHAINS.get(chain_id)


def is_relay_chain(chain_id: int) -> bool:
    chain = SUPPORTED_CHAINS.get(chain_id)
    return chain is not None and chain.category == "relay"


def get_rpc_url(chain_id: int, destination_chain_id: int | None = None) -> str | None:
    """Resolve the RPC endpoint for a chain.

    ``RPC_URL_<CHAIN_ID>`` overrides everything; the destination chain also
    honours ``FLARE_RPC_URL``.

    :param chain_id: Chain to resolve.
    :param destination_chain_id: Chain id of the destination network.
    :returns: RPC URL or None if the chain is unknown.
    """
    override = os.environ.get(f"RPC_URL_{chain_id}")
    if override:
        return override
    if chain_id == destination_chain_id and os.environ.get("FLARE_RPC_URL"):
        return os.environ["FLARE_RPC_URL"]
    chain = SUPPORTED_CHAINS.get(chain_id)
    return chain.rpc_url if chain else None


def required_confirmations(chain_id: int) -> int:
    """Confirmations the verifier should require for a source transaction."""
    if chain_id == 1:
        return 12
    if chain_id == 11155111:
        return 6
    return 1
