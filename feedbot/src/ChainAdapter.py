"""ChainAdapter: per-chain client used by readers, submitters and the attestation client.

The adapter is the only place that talks JSON-RPC. It exposes the four
operations the rest of the bot needs (read a contract, write a contract,
wait for a receipt, read a block) plus gas price and wallet balance for
the operational guards.

.. code-block:: python

    >>> adapter = Web3ChainAdapter(14, "https://flare-api.flare.network/ext/bc/C/rpc", account)
    >>> await adapter.read_contract(relay, PRICE_RELAY, "canRelay", 42161, pool)
    True
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception
from web3.logs import DISCARD
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.types import TxParams

from .ContractUtility import ContractUtility
from .RetryPolicy import Clock, PollPolicy, SystemClock
from .chains import get_chain, get_rpc_url
from .errors import (
    ConfigError,
    ConfirmationTimeout,
    GasPriceTooHigh,
    OnChainRejection,
    RpcError,
)

logger = logging.getLogger(__name__)

# Receipts are polled every few seconds for up to five minutes.
DEFAULT_RECEIPT_POLICY = PollPolicy(max_wait=300, delay=3)
# Confirmations on slow source chains are counted every block (~12s).
DEFAULT_CONFIRMATION_POLICY = PollPolicy(max_wait=900, delay=12)

_REVERT_PREFIX = "execution reverted: "


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


@dataclass(frozen=True)
class TxReceipt:
    """A mined transaction.

    :ivar tx_hash: 0x-prefixed transaction hash.
    :ivar block_number: Block that included the transaction.
    :ivar status: 1 on success, 0 on revert.
    :ivar gas_used: Gas consumed.
    :ivar logs: Raw logs emitted by the transaction.
    """

    tx_hash: str
    block_number: int
    status: int
    gas_used: int = 0
    logs: tuple[Any, ...] = ()


def revert_reason(error: ContractLogicError) -> str:
    """Extract the program's revert reason from a web3 error."""
    message = getattr(error, "message", None) or str(error)
    if message.startswith(_REVERT_PREFIX):
        return message[len(_REVERT_PREFIX):]
    return message


class ChainAdapter(ABC):
    """Abstract client for one EVM chain.

    :ivar chain_id: Chain this adapter is bound to.
    """

    chain_id: int

    @property
    @abstractmethod
    def address(self) -> str:
        """Address of the signing account."""
        pass

    @abstractmethod
    async def read_contract(self, address: str, abi_name: str, function: str, *args: Any) -> Any:
        """Call a view function.

        :param address: Contract address.
        :param abi_name: Name of the bundled ABI.
        :param function: Function name.
        :returns: Decoded return value.
        :raises OnChainRejection: If the call reverts.
        :raises RpcError: On RPC failure.
        """
        pass

    @abstractmethod
    async def write_contract(
        self, address: str, abi_name: str, function: str, *args: Any, value: int = 0
    ) -> str:
        """Sign and send a transaction.

        :param address: Contract address.
        :param abi_name: Name of the bundled ABI.
        :param function: Function name.
        :param value: Native value to attach, in wei.
        :returns: Transaction hash.
        :raises OnChainRejection: If the transaction would revert.
        :raises RpcError: On RPC failure.
        """
        pass

    @abstractmethod
    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, policy: PollPolicy | None = None
    ) -> TxReceipt:
        """Wait until a transaction is mined and has enough confirmations.

        :param tx_hash: Transaction hash.
        :param confirmations: Number of blocks, including the inclusion block.
        :param policy: Wait budget.
        :returns: The mined receipt.
        :raises OnChainRejection: If the transaction reverted.
        :raises ConfirmationTimeout: If the deadline passes first.
        """
        pass

    @abstractmethod
    def decode_events(
        self, receipt: TxReceipt, address: str, abi_name: str, event: str
    ) -> list[dict[str, Any]]:
        """Decode the receipt's logs of ``event`` emitted by ``address``.

        :returns: Event arguments, in log order.
        """
        pass

    @abstractmethod
    async def get_block(self, number: int | None = None) -> BlockInfo:
        """Read a block, the latest one when ``number`` is None."""
        pass

    @abstractmethod
    async def gas_price_gwei(self) -> float:
        pass

    @abstractmethod
    async def balance(self) -> float:
        """Native balance of the signing account, in whole units."""
        pass


class Web3ChainAdapter(ChainAdapter):
    """ChainAdapter backed by an AsyncWeb3 HTTP provider.

    Transactions are signed locally by the account through web3's
    sign-and-send middleware.

    :ivar w3: AsyncWeb3 instance for this chain.
    :ivar clock: Clock used by receipt waits.
    """

    def __init__(
        self,
        chain_id: int,
        rpc_url: str,
        account: LocalAccount,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the adapter.

        :param chain_id: Chain id the RPC serves.
        :param rpc_url: JSON-RPC endpoint.
        :param account: Signing account.
        :param clock: Optional clock for receipt waits.
        """
        self.chain_id = chain_id
        self.rpc_url = rpc_url
        self.account = account
        self.clock = clock or SystemClock()

        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
        self.w3.eth.default_account = account.address

    @property
    def address(self) -> str:
        return self.account.address

    def _contract(self, address: str, abi_name: str):
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=ContractUtility.get_contract(abi_name),
        )

    async def read_contract(self, address: str, abi_name: str, function: str, *args: Any) -> Any:
        contract = self._contract(address, abi_name)
        try:
            return await contract.functions[function](*args).call()
        except ContractLogicError as e:
            raise OnChainRejection(revert_reason(e)) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: {function}() call failed: {e}") from e

    async def write_contract(
        self, address: str, abi_name: str, function: str, *args: Any, value: int = 0
    ) -> str:
        contract = self._contract(address, abi_name)
        tx: TxParams = {"from": self.account.address}
        if value:
            tx["value"] = value
        try:
            tx_hash = await contract.functions[function](*args).transact(tx)
        except ContractLogicError as e:
            raise OnChainRejection(revert_reason(e)) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: {function}() send failed: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.debug(f"chain {self.chain_id}: sent {function}() tx {tx_hex}")
        return tx_hex

    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, policy: PollPolicy | None = None
    ) -> TxReceipt:
        if policy is None:
            policy = DEFAULT_RECEIPT_POLICY if confirmations <= 1 else DEFAULT_CONFIRMATION_POLICY
        deadline = policy.start(self.clock)
        attempt = 0
        seen = 0
        last_status = "pending"

        while True:
            attempt += 1
            # RPC errors are polled through until the deadline.
            try:
                receipt = await self._get_receipt(tx_hash)
                if receipt is None:
                    last_status = "pending"
                else:
                    if receipt.status == 0:
                        raise OnChainRejection("transaction failed", tx_hash)
                    if confirmations <= 1:
                        return receipt
                    latest = await self._block_number()
                    seen = max(seen, latest - receipt.block_number + 1)
                    if seen >= confirmations:
                        return receipt
                    last_status = f"{seen}/{confirmations} confirmations"
                    logger.debug(f"{tx_hash}: {last_status}")
            except RpcError as e:
                last_status = str(e)
                logger.warning(f"{tx_hash}: {e}, still waiting")

            if deadline.expired:
                raise ConfirmationTimeout(
                    tx_hash, seen, confirmations, deadline.elapsed, last_status
                )
            await deadline.sleep(policy.next_delay(attempt))

    async def _get_receipt(self, tx_hash: str) -> TxReceipt | None:
        try:
            raw = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: receipt lookup failed: {e}") from e
        return TxReceipt(
            tx_hash=tx_hash,
            block_number=raw["blockNumber"],
            status=raw["status"],
            gas_used=raw.get("gasUsed", 0),
            logs=tuple(raw.get("logs", ())),
        )

    def decode_events(
        self, receipt: TxReceipt, address: str, abi_name: str, event: str
    ) -> list[dict[str, Any]]:
        contract = self._contract(address, abi_name)
        emitter = contract.address.lower()
        logs = [log for log in receipt.logs if str(log["address"]).lower() == emitter]
        processed = contract.events[event]().process_receipt({"logs": logs}, errors=DISCARD)
        return [dict(entry["args"]) for entry in processed]

    async def _block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: block number failed: {e}") from e

    async def get_block(self, number: int | None = None) -> BlockInfo:
        try:
            block = await self.w3.eth.get_block("latest" if number is None else number)
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: get_block failed: {e}") from e
        return BlockInfo(number=block["number"], timestamp=block["timestamp"])

    async def gas_price_gwei(self) -> float:
        try:
            wei = await self.w3.eth.gas_price
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: gas price failed: {e}") from e
        return float(Web3.from_wei(wei, "gwei"))

    async def balance(self) -> float:
        try:
            wei = await self.w3.eth.get_balance(self.account.address)
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise RpcError(f"chain {self.chain_id}: balance failed: {e}") from e
        return float(Web3.from_wei(wei, "ether"))


async def ensure_gas_below(adapter: ChainAdapter, ceiling_gwei: float | None) -> float:
    """Raise GasPriceTooHigh when the chain's gas price is above the ceiling.

    :param adapter: Chain about to receive a transaction.
    :param ceiling_gwei: Ceiling in gwei, None to disable the check.
    :returns: Current gas price in gwei.
    """
    gas_price = await adapter.gas_price_gwei()
    if ceiling_gwei is not None and gas_price > ceiling_gwei:
        raise GasPriceTooHigh(adapter.chain_id, gas_price, ceiling_gwei)
    return gas_price


class ChainAdapters:
    """Lazily built adapters, one per chain, sharing one signing account.

    :ivar destination_chain_id: Chain where feeds, relays and the hub live.
    """

    def __init__(
        self,
        account: LocalAccount,
        destination_chain_id: int,
        clock: Clock | None = None,
    ) -> None:
        self.account = account
        self.destination_chain_id = destination_chain_id
        self.clock = clock
        self._adapters: dict[int, ChainAdapter] = {}

    @property
    def destination(self) -> ChainAdapter:
        return self.get(self.destination_chain_id)

    def get(self, chain_id: int) -> ChainAdapter:
        """Return the adapter for a chain, creating it on first use.

        :param chain_id: Chain to connect to.
        :returns: Adapter for the chain.
        :raises ConfigError: If no RPC endpoint is known for the chain.
        """
        adapter = self._adapters.get(chain_id)
        if adapter is None:
            rpc_url = get_rpc_url(chain_id, self.destination_chain_id)
            if rpc_url is None:
                raise ConfigError(f"No RPC URL for chain {chain_id}; set RPC_URL_{chain_id}")
            adapter = Web3ChainAdapter(chain_id, rpc_url, self.account, clock=self.clock)
            chain = get_chain(chain_id)
            logger.info(f"Connected adapter for {chain.name if chain else chain_id} at {rpc_url}")
            self._adapters[chain_id] = adapter
        return adapter

    def add(self, adapter: ChainAdapter) -> None:
        """Register a pre-built adapter (used by tests and custom setups)."""
        self._adapters[adapter.chain_id] = adapter
