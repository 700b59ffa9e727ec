"""Decode a data-availability proof into the struct the feed's verifier expects.

The DA layer returns the ABI-encoded ``IEVMTransaction.Response`` as
``response_hex`` plus the merkle path as ``proof``. The feed contract's
``updateFromProof`` takes ``(merkleProof, data)`` where ``data`` is that
response, so every field must round-trip exactly.

.. code-block:: python

    >>> proof = assemble_proof(da_response, expected_tx_hash=tx_hash, expected_round=round_id)
    >>> await submitter.submit_proof(feed, proof)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from .errors import MalformedProofField, MissingProofField

EVENT_TUPLE_TYPE = "(uint32,address,bytes32[],bytes,bool)"
REQUEST_BODY_TUPLE_TYPE = "(bytes32,uint16,bool,bool,uint32[])"
RESPONSE_BODY_TUPLE_TYPE = (
    f"(uint64,uint64,address,bool,address,uint256,bytes,uint8,{EVENT_TUPLE_TYPE}[])"
)
RESPONSE_TUPLE_TYPE = (
    f"(bytes32,bytes32,uint64,uint64,{REQUEST_BODY_TUPLE_TYPE},{RESPONSE_BODY_TUPLE_TYPE})"
)


@dataclass(frozen=True)
class ProofEvent:
    log_index: int
    emitter_address: str
    topics: tuple[bytes, ...]
    data: bytes
    removed: bool

    def to_tuple(self) -> tuple:
        return (self.log_index, self.emitter_address, list(self.topics), self.data, self.removed)


@dataclass(frozen=True)
class RequestBody:
    """The request the verifier attested.

    :ivar transaction_hash: Attested transaction.
    :ivar required_confirmations: Confirmations the verifier waited for.
    :ivar provide_input: Whether calldata is included in the response.
    :ivar list_events: Whether events are included in the response.
    :ivar log_indices: Selected log indices, empty for all.
    """

    transaction_hash: bytes
    required_confirmations: int
    provide_input: bool
    list_events: bool
    log_indices: tuple[int, ...]

    def to_tuple(self) -> tuple:
        return (
            self.transaction_hash,
            self.required_confirmations,
            self.provide_input,
            self.list_events,
            list(self.log_indices),
        )


@dataclass(frozen=True)
class ResponseBody:
    block_number: int
    timestamp: int
    source_address: str
    is_deployment: bool
    receiving_address: str
    value: int
    input: bytes
    status: int
    events: tuple[ProofEvent, ...]

    def to_tuple(self) -> tuple:
        return (
            self.block_number,
            self.timestamp,
            self.source_address,
            self.is_deployment,
            self.receiving_address,
            self.value,
            self.input,
            self.status,
            [event.to_tuple() for event in self.events],
        )


@dataclass(frozen=True)
class AttestationResponse:
    attestation_type: bytes
    source_id: bytes
    voting_round: int
    lowest_used_timestamp: int
    request_body: RequestBody
    response_body: ResponseBody

    def to_tuple(self) -> tuple:
        return (
            self.attestation_type,
            self.source_id,
            self.voting_round,
            self.lowest_used_timestamp,
            self.request_body.to_tuple(),
            self.response_body.to_tuple(),
        )


@dataclass(frozen=True)
class AttestationProof:
    """Merkle proof plus the attested response.

    :ivar merkle_proof: Path from the response leaf to the round's root.
    :ivar data: The decoded response.
    """

    merkle_proof: tuple[bytes, ...]
    data: AttestationResponse

    def to_contract_arg(self) -> tuple:
        """Build the ``IEVMTransaction.Proof`` argument for ``updateFromProof``."""
        return (list(self.merkle_proof), self.data.to_tuple())


def _require(raw: dict[str, Any], field: str) -> Any:
    value = raw.get(field)
    if value is None:
        raise MissingProofField(field)
    return value


def _hex_to_bytes(value: Any, field: str, length: int | None = None) -> bytes:
    if isinstance(value, bytes):
        result = value
    elif isinstance(value, str):
        try:
            result = Web3.to_bytes(hexstr=value)
        except ValueError as e:
            raise MalformedProofField(field, f"not hex: {e}") from e
    else:
        raise MalformedProofField(field, f"expected hex string, got {type(value).__name__}")
    if length is not None and len(result) != length:
        raise MalformedProofField(field, f"expected {length} bytes, got {len(result)}")
    return result


def _checksum(value: str, field: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except ValueError as e:
        raise MalformedProofField(field, str(e)) from e


def decode_response(response_hex: Any) -> AttestationResponse:
    """Decode an ABI-encoded ``IEVMTransaction.Response``.

    :param response_hex: Hex string (or bytes) from the DA layer.
    :returns: Typed response.
    :raises MalformedProofField: If the payload does not decode.
    """
    payload = _hex_to_bytes(response_hex, "response_hex")
    if not payload:
        raise MissingProofField("response_hex")
    try:
        (raw,) = decode([RESPONSE_TUPLE_TYPE], payload)
    except DecodingError as e:
        raise MalformedProofField("response_hex", str(e)) from e

    attestation_type, source_id, voting_round, lowest_used, request, response = raw
    tx_hash, confirmations, provide_input, list_events, log_indices = request
    (
        block_number,
        timestamp,
        source_address,
        is_deployment,
        receiving_address,
        value,
        calldata,
        status,
        events,
    ) = response

    return AttestationResponse(
        attestation_type=attestation_type,
        source_id=source_id,
        voting_round=voting_round,
        lowest_used_timestamp=lowest_used,
        request_body=RequestBody(
            transaction_hash=tx_hash,
            required_confirmations=confirmations,
            provide_input=provide_input,
            list_events=list_events,
            log_indices=tuple(log_indices),
        ),
        response_body=ResponseBody(
            block_number=block_number,
            timestamp=timestamp,
            source_address=_checksum(source_address, "responseBody.sourceAddress"),
            is_deployment=is_deployment,
            receiving_address=_checksum(receiving_address, "responseBody.receivingAddress"),
            value=value,
            input=calldata,
            status=status,
            events=tuple(
                ProofEvent(
                    log_index=log_index,
                    emitter_address=_checksum(emitter, f"responseBody.events[{i}].emitterAddress"),
                    topics=tuple(topics),
                    data=data,
                    removed=removed,
                )
                for i, (log_index, emitter, topics, data, removed) in enumerate(events)
            ),
        ),
    )


def assemble_proof(
    raw: dict[str, Any],
    expected_tx_hash: str | None = None,
    expected_round: int | None = None,
    expected_attestation_type: str | None = None,
) -> AttestationProof:
    """Build a validated proof from a DA layer response.

    :param raw: JSON body with ``response_hex`` and ``proof``.
    :param expected_tx_hash: Transaction the proof must attest.
    :param expected_round: Voting round the proof must belong to.
    :param expected_attestation_type: bytes32 hex of the attestation type.
    :returns: Proof ready for ``updateFromProof``.
    :raises MissingProofField: If a required field is absent.
    :raises MalformedProofField: If a field fails validation.
    """
    data = decode_response(_require(raw, "response_hex"))
    merkle = _require(raw, "proof")
    if not isinstance(merkle, list):
        raise MalformedProofField("proof", f"expected list, got {type(merkle).__name__}")
    merkle_proof = tuple(
        _hex_to_bytes(node, f"proof[{i}]", length=32) for i, node in enumerate(merkle)
    )

    if expected_attestation_type is not None:
        expected = _hex_to_bytes(expected_attestation_type, "attestationType", length=32)
        if data.attestation_type != expected:
            raise MalformedProofField(
                "attestationType", f"expected {expected.hex()}, got {data.attestation_type.hex()}"
            )
    if not any(data.source_id):
        raise MissingProofField("sourceId")
    if expected_round is not None and data.voting_round != expected_round:
        raise MalformedProofField(
            "votingRound", f"expected {expected_round}, got {data.voting_round}"
        )
    if expected_tx_hash is not None:
        expected_hash = _hex_to_bytes(expected_tx_hash, "requestBody.transactionHash", length=32)
        if data.request_body.transaction_hash != expected_hash:
            raise MalformedProofField(
                "requestBody.transactionHash",
                f"expected {expected_hash.hex()}, got {data.request_body.transaction_hash.hex()}",
            )
    if data.response_body.status != 1:
        raise MalformedProofField(
            "responseBody.status", f"attested transaction failed (status {data.response_body.status})"
        )
    if data.request_body.list_events and not data.response_body.events:
        raise MissingProofField("responseBody.events")

    return AttestationProof(merkle_proof=merkle_proof, data=data)
