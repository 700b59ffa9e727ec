"""Unit tests for chains."""

import os
from unittest.mock import patch

from feedbot.src.chains import get_chain, get_rpc_url, is_relay_chain, required_confirmations


class TestRegistry:
    """Test the supported chain table."""

    def test_direct_chains_have_verifier_paths(self) -> None:
        """Directly attested chains carry a source id and verifier path."""
        for chain_id in (14, 114, 1, 11155111):
            chain = get_chain(chain_id)
            assert chain.category == "direct"
            assert chain.source_id.startswith("0x")
            assert chain.verifier_path

    def test_relay_chains(self) -> None:
        assert is_relay_chain(42161)
        assert is_relay_chain(8453)
        assert not is_relay_chain(1)
        assert not is_relay_chain(999999)

    def test_confirmations(self) -> None:
        """Ethereum mainnet captures need 12 confirmations, others one."""
        assert required_confirmations(1) == 12
        assert required_confirmations(14) == 1
        assert required_confirmations(42161) == 1


class TestRpcUrl:
    """Test RPC endpoint resolution."""

    def test_default(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            assert get_rpc_url(42161) == "https://arb1.arbitrum.io/rpc"
            assert get_rpc_url(999999) is None

    def test_per_chain_override(self) -> None:
        """RPC_URL_<CHAIN_ID> wins over everything."""
        env = {"RPC_URL_14": "http://node:9650", "FLARE_RPC_URL": "http://other"}
        with patch.dict(os.environ, env, clear=True):
            assert get_rpc_url(14, destination_chain_id=14) == "http://node:9650"

    def test_destination_override(self) -> None:
        """FLARE_RPC_URL only applies to the destination chain."""
        with patch.dict(os.environ, {"FLARE_RPC_URL": "http://flare"}, clear=True):
            assert get_rpc_url(14, destination_chain_id=14) == "http://flare"
            assert get_rpc_url(1, destination_chain_id=14) == "https://eth.llamarpc.com"
