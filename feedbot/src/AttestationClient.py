"""AttestationClient: obtain a data-connector proof for one transaction.

Stages of one request::

    prepare   poll the verifier until it returns an encoded request
    request   send the encoded request to the hub, paying the fee
    round     map the request's block timestamp to a voting round
    finalize  poll the relay until the round is finalized
    retrieve  fetch response and merkle proof from the DA layer
    decode    build a validated AttestationProof

Every wait is bounded by a PollPolicy and measured with an injectable
clock. Exhausting a budget raises AttestationTimeout naming the attempts
made and the last status seen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from web3 import Web3

from .ChainAdapter import ChainAdapter
from .ContractUtility import FDC_HUB, FEE_CONFIG, RELAY
from .HttpClient import HttpClient
from .ProofAssembler import AttestationProof, assemble_proof
from .RetryPolicy import Clock, PollPolicy, SystemClock
from .chains import (
    DEFAULT_VERIFIER_API_KEY,
    DESTINATION_NETWORKS,
    EVM_TRANSACTION_ATTESTATION_TYPE,
    EVM_TRANSACTION_TYPE_ID,
    get_chain,
)
from .errors import (
    AttestationTimeout,
    ConfigError,
    OnChainRejection,
    RpcError,
    TransientError,
)

logger = logging.getLogger(__name__)

# Fee paid when the fee configuration cannot be read: 1 native unit.
FALLBACK_FEE_WEI = 10**18

DEFAULT_FINALIZE_POLICY = PollPolicy(max_wait=300, delay=10)
DEFAULT_RETRIEVE_POLICY = PollPolicy(max_wait=120, delay=10)
DEFAULT_DA_SYNC_DELAY = 30.0

# Ethereum mainnet verifiers can lag 10-25 minutes behind the chain head.
SLOW_PREPARE_POLICY = PollPolicy(max_wait=30 * 60, delay=30)
FAST_PREPARE_POLICY = PollPolicy(max_wait=5 * 60, delay=10)
SLOW_PREPARE_CHAINS = {1}


def prepare_policy(chain_id: int) -> PollPolicy:
    """Verifier readiness budget for transactions on ``chain_id``."""
    return SLOW_PREPARE_POLICY if chain_id in SLOW_PREPARE_CHAINS else FAST_PREPARE_POLICY


class RequestStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass
class AttestationRequest:
    """An in-flight attestation request.

    :ivar chain_id: Chain the attested transaction lives on.
    :ivar tx_hash: Attested transaction.
    :ivar required_confirmations: Confirmations the verifier must see.
    :ivar encoded_request: ABI-encoded request returned by the verifier.
    :ivar voting_round_id: Round the request was submitted in.
    :ivar request_tx_hash: Hub transaction that paid for the request.
    :ivar status: Lifecycle status.
    """

    chain_id: int
    tx_hash: str
    required_confirmations: int
    encoded_request: str | None = None
    voting_round_id: int | None = None
    request_tx_hash: str | None = None
    status: RequestStatus = RequestStatus.PENDING


@dataclass(frozen=True)
class AttestationEndpoints:
    """Where the attestation network of a destination chain lives."""

    verifier_base_url: str
    da_layer_url: str
    fdc_hub: str
    relay: str

    @classmethod
    def for_network(cls, network: str) -> AttestationEndpoints:
        """Endpoints of a known destination network.

        :param network: "flare" or "coston2".
        :raises ConfigError: For an unknown network.
        """
        config = DESTINATION_NETWORKS.get(network)
        if config is None:
            raise ConfigError(
                f"Unknown network {network}. Available: {sorted(DESTINATION_NETWORKS)}"
            )
        return cls(
            verifier_base_url=str(config["verifier_base_url"]),
            da_layer_url=str(config["da_layer_url"]),
            fdc_hub=str(config["fdc_hub"]),
            relay=str(config["relay"]),
        )


class AttestationClient(HttpClient):
    """Drives attestation requests against the verifier, hub, relay and DA layer.

    :ivar destination: Adapter for the chain hosting the hub and relay.
    :ivar endpoints: Verifier, DA layer and contract addresses.
    :ivar api_key: Verifier API key.
    :ivar clock: Clock used by every wait.
    """

    def __init__(
        self,
        destination: ChainAdapter,
        endpoints: AttestationEndpoints,
        api_key: str = DEFAULT_VERIFIER_API_KEY,
        clock: Clock | None = None,
        finalize_policy: PollPolicy = DEFAULT_FINALIZE_POLICY,
        retrieve_policy: PollPolicy = DEFAULT_RETRIEVE_POLICY,
        da_sync_delay: float = DEFAULT_DA_SYNC_DELAY,
        fallback_fee_wei: int = FALLBACK_FEE_WEI,
        prepare_policy_for: Callable[[int], PollPolicy] = prepare_policy,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.destination = destination
        self.endpoints = endpoints
        self.api_key = api_key
        self.clock = clock or SystemClock()
        self.finalize_policy = finalize_policy
        self.retrieve_policy = retrieve_policy
        self.da_sync_delay = da_sync_delay
        self.fallback_fee_wei = fallback_fee_wei
        self.prepare_policy_for = prepare_policy_for

    async def get_proof(
        self,
        chain_id: int,
        tx_hash: str,
        required_confirmations: int = 1,
        progress: Callable[[str], None] | None = None,
    ) -> AttestationProof:
        """Run every stage for one transaction.

        :param chain_id: Chain the transaction lives on.
        :param tx_hash: Transaction to attest.
        :param required_confirmations: Confirmations the verifier must see.
        :param progress: Called with the name of each stage as it starts.
        :returns: Validated proof.
        :raises AttestationTimeout: If any wait exhausts its budget.
        :raises ProofDecodeError: If the DA response is incomplete.
        """
        request = AttestationRequest(chain_id, tx_hash, required_confirmations)

        def step(name: str) -> None:
            if progress is not None:
                progress(name)

        step("prepare")
        await self.prepare(request)
        step("request")
        await self.submit(request)
        step("finalize")
        await self.wait_for_finalization(request)
        step("retrieve")
        raw = await self.retrieve_proof(request)
        step("decode")
        return assemble_proof(
            raw,
            expected_tx_hash=tx_hash,
            expected_round=request.voting_round_id,
            expected_attestation_type=EVM_TRANSACTION_ATTESTATION_TYPE,
        )

    def _prepare_url(self, chain_id: int) -> tuple[str, str]:
        chain = get_chain(chain_id)
        if chain is None or chain.source_id is None or chain.verifier_path is None:
            raise ConfigError(f"Chain {chain_id} cannot be attested directly")
        url = (
            f"{self.endpoints.verifier_base_url}/{chain.verifier_path}"
            "/EVMTransaction/prepareRequest"
        )
        return url, chain.source_id

    async def prepare(self, request: AttestationRequest) -> str:
        """Poll the verifier until it returns ``abiEncodedRequest``.

        Nothing is paid while polling, so slow verifiers only cost time.

        :param request: Request to prepare; updated in place.
        :returns: The encoded request.
        :raises HttpError: On a non-2xx verifier response.
        :raises AttestationTimeout: When the readiness budget is exhausted.
        """
        url, source_id = self._prepare_url(request.chain_id)
        body = {
            "attestationType": EVM_TRANSACTION_ATTESTATION_TYPE,
            "sourceId": source_id,
            "requestBody": {
                "transactionHash": request.tx_hash,
                "requiredConfirmations": str(request.required_confirmations),
                "provideInput": False,
                "listEvents": True,
                "logIndices": [],
            },
        }
        headers = {"X-API-KEY": self.api_key}
        policy = self.prepare_policy_for(request.chain_id)
        deadline = policy.start(self.clock)
        attempt = 0
        last_status: str | None = None

        while True:
            attempt += 1
            response = await self._post(url, json=body, headers=headers)
            data = _json_body(response)
            encoded = data.get("abiEncodedRequest")
            if encoded:
                request.encoded_request = encoded
                request.status = RequestStatus.READY
                logger.debug(f"Verifier ready for {request.tx_hash} after {attempt} attempts")
                return encoded

            last_status = data.get("status") or last_status
            if last_status and str(last_status).upper().startswith("INVALID"):
                request.status = RequestStatus.INVALID

            if deadline.expired:
                request.status = RequestStatus.EXPIRED
                raise AttestationTimeout(
                    "Verifier prepareRequest", attempt, deadline.elapsed, last_status
                )

            waited = int(deadline.elapsed)
            delay = policy.next_delay(attempt)
            logger.warning(
                f"Verifier not ready (status: {last_status or 'unknown'}). "
                f"Waited {waited // 60}m {waited % 60}s. Retrying in {int(delay)}s..."
            )
            await deadline.sleep(delay)

    async def request_fee(self, encoded_request: bytes) -> int:
        """Look up the hub's fee for a request, falling back to a fixed fee.

        :param encoded_request: Encoded request bytes.
        :returns: Fee in wei.
        """
        try:
            fee_config = await self.destination.read_contract(
                self.endpoints.fdc_hub, FDC_HUB, "fdcRequestFeeConfigurations"
            )
            return await self.destination.read_contract(
                fee_config, FEE_CONFIG, "getRequestFee", encoded_request
            )
        except (RpcError, OnChainRejection) as e:
            logger.warning(
                f"Fee lookup failed ({e}); using fallback fee "
                f"{Web3.from_wei(self.fallback_fee_wei, 'ether')}"
            )
            return self.fallback_fee_wei

    async def submit(self, request: AttestationRequest) -> int:
        """Pay for the request on the hub and resolve its voting round.

        :param request: Prepared request; updated in place.
        :returns: Voting round id.
        :raises OnChainRejection: If the hub rejects the request.
        """
        if request.encoded_request is None:
            raise ValueError("Request must be prepared before it is submitted")
        encoded = Web3.to_bytes(hexstr=request.encoded_request)
        fee = await self.request_fee(encoded)

        tx_hash = await self.destination.write_contract(
            self.endpoints.fdc_hub, FDC_HUB, "requestAttestation", encoded, value=fee
        )
        receipt = await self.destination.wait_for_receipt(tx_hash)
        block = await self.destination.get_block(receipt.block_number)
        round_id = await self.destination.read_contract(
            self.endpoints.relay, RELAY, "getVotingRoundId", block.timestamp
        )

        request.request_tx_hash = tx_hash
        request.voting_round_id = int(round_id)
        logger.info(
            f"Attestation requested for {request.tx_hash} "
            f"(fee {Web3.from_wei(fee, 'ether')}, round {request.voting_round_id}, tx {tx_hash})"
        )
        return request.voting_round_id

    async def wait_for_finalization(self, request: AttestationRequest) -> None:
        """Poll ``isFinalized`` until the round closes, then let the DA layer sync.

        :param request: Submitted request.
        :raises AttestationTimeout: If the round does not finalize in time.
        """
        round_id = request.voting_round_id
        deadline = self.finalize_policy.start(self.clock)
        attempt = 0
        last_status = "not finalized"

        while True:
            attempt += 1
            try:
                finalized = await self.destination.read_contract(
                    self.endpoints.relay, RELAY, "isFinalized", EVM_TRANSACTION_TYPE_ID, round_id
                )
                last_status = "finalized" if finalized else "not finalized"
            except RpcError as e:
                finalized = False
                last_status = str(e)
                logger.debug(f"isFinalized({round_id}) failed: {e}")

            if finalized:
                logger.info(f"Round {round_id} finalized after {int(deadline.elapsed)}s")
                break
            if deadline.expired:
                request.status = RequestStatus.EXPIRED
                raise AttestationTimeout(
                    f"Finalization of round {round_id}", attempt, deadline.elapsed, last_status
                )
            await deadline.sleep(self.finalize_policy.next_delay(attempt))

        if self.da_sync_delay > 0:
            await self.clock.sleep(self.da_sync_delay)

    async def retrieve_proof(self, request: AttestationRequest) -> dict[str, Any]:
        """Fetch the raw response and merkle proof from the DA layer.

        Transient failures, including non-2xx responses while the DA layer
        catches up, are retried within the retrieval budget.

        :param request: Finalized request.
        :returns: JSON body with ``response_hex`` and ``proof``.
        :raises AttestationTimeout: If no proof arrives in time.
        """
        url = f"{self.endpoints.da_layer_url}/api/v1/fdc/proof-by-request-round-raw"
        body = {
            "votingRoundId": request.voting_round_id,
            "requestBytes": request.encoded_request,
        }
        deadline = self.retrieve_policy.start(self.clock)
        attempt = 0
        last_status: str | None = None

        while True:
            attempt += 1
            try:
                response = await self._post(url, json=body)
                data = _json_body(response)
                if data.get("response_hex"):
                    return data
                last_status = "empty response"
            except TransientError as e:
                last_status = str(e)
                logger.debug(f"DA layer retrieval attempt {attempt} failed: {e}")

            if deadline.expired:
                raise AttestationTimeout("Proof retrieval", attempt, deadline.elapsed, last_status)
            await deadline.sleep(self.retrieve_policy.next_delay(attempt))


def _json_body(response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        logger.debug(f"Non-JSON body: {response.text[:200]}")
        return {}
    return data if isinstance(data, dict) else {}
