"""Unit tests for AttestationClient."""

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from feedbot.src.AttestationClient import (
    FALLBACK_FEE_WEI,
    AttestationClient,
    AttestationEndpoints,
    AttestationRequest,
    RequestStatus,
    prepare_policy,
)
from feedbot.src.RetryPolicy import PollPolicy
from feedbot.src.errors import (
    AttestationTimeout,
    ConfigError,
    HttpError,
    OnChainRejection,
    RpcError,
)
from feedbot.tests.fakes import TX_HASH, FakeAdapter, FakeClock, raw_proof

ENCODED_REQUEST = "0x" + "00" * 31 + "01"
FEE_CONFIG = "0x7777777777777777777777777777777777777777"


def destination(**reads: Any) -> FakeAdapter:
    defaults: dict[str, Any] = {
        "fdcRequestFeeConfigurations": FEE_CONFIG,
        "getRequestFee": 123,
        "getVotingRoundId": 1234,
        "isFinalized": True,
    }
    defaults.update(reads)
    return FakeAdapter(14, reads=defaults)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    adapter: FakeAdapter | None = None,
    clock: FakeClock | None = None,
    **kwargs: Any,
) -> AttestationClient:
    return AttestationClient(
        adapter or destination(),
        AttestationEndpoints.for_network("flare"),
        api_key="test-key",
        clock=clock or FakeClock(),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def verifier_responses(*bodies: dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    """Handler replaying verifier bodies in order, the last one forever."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=bodies[min(len(calls), len(bodies)) - 1])

    handler.calls = calls  # type: ignore[attr-defined]
    return handler


class TestPreparePolicy:
    """Test verifier readiness budgets per chain."""

    def test_ethereum_is_slow(self) -> None:
        """Ethereum mainnet waits 30 minutes, polling every 30s."""
        assert prepare_policy(1) == PollPolicy(max_wait=1800, delay=30)

    def test_other_chains_are_fast(self) -> None:
        """Other chains wait 5 minutes, polling every 10s."""
        assert prepare_policy(14) == PollPolicy(max_wait=300, delay=10)
        assert prepare_policy(11155111) == PollPolicy(max_wait=300, delay=10)


class TestPrepare:
    """Test verifier polling."""

    def test_ready_after_retries(self) -> None:
        """Not-ready answers are polled until the encoded request arrives."""
        handler = verifier_responses(
            {"status": "NOT_FOUND"}, {"status": "NOT_FOUND"}, {"abiEncodedRequest": ENCODED_REQUEST}
        )
        clock = FakeClock()
        client = make_client(handler, clock=clock)
        request = AttestationRequest(14, TX_HASH, 1)

        encoded = asyncio.run(client.prepare(request))

        assert encoded == ENCODED_REQUEST
        assert request.status is RequestStatus.READY
        assert len(handler.calls) == 3
        assert clock.sleeps == [10, 10]

    def test_request_body_and_headers(self) -> None:
        """The verifier gets the EVMTransaction request with the API key."""
        handler = verifier_responses({"abiEncodedRequest": ENCODED_REQUEST})
        client = make_client(handler)

        asyncio.run(client.prepare(AttestationRequest(1, TX_HASH, 12)))

        sent = handler.calls[0]
        body = json.loads(sent.content)
        assert sent.url.path.endswith("/eth/EVMTransaction/prepareRequest")
        assert sent.headers["X-API-KEY"] == "test-key"
        assert body["sourceId"].startswith("0x455448")
        assert body["requestBody"] == {
            "transactionHash": TX_HASH,
            "requiredConfirmations": "12",
            "provideInput": False,
            "listEvents": True,
            "logIndices": [],
        }

    def test_bounded_polling_names_attempts_and_status(self) -> None:
        """Exhausting the budget reports attempts, waited time and last status."""
        handler = verifier_responses({"status": "INVALID: transaction not found"})
        client = make_client(handler, prepare_policy_for=lambda chain_id: PollPolicy(30, 10))
        request = AttestationRequest(14, TX_HASH, 1)

        with pytest.raises(AttestationTimeout) as exc_info:
            asyncio.run(client.prepare(request))

        error = exc_info.value
        assert error.attempts == 4
        assert error.waited == 30
        assert error.last_status == "INVALID: transaction not found"
        assert "4 attempts" in str(error)
        assert "INVALID" in str(error)
        assert request.status is RequestStatus.EXPIRED

    def test_non_2xx_surfaces_immediately(self) -> None:
        """A verifier error response is not polled."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        client = make_client(handler)
        with pytest.raises(HttpError) as exc_info:
            asyncio.run(client.prepare(AttestationRequest(14, TX_HASH, 1)))

        assert exc_info.value.status_code == 503
        assert len(calls) == 1

    def test_relay_chain_cannot_be_attested(self) -> None:
        """Relay chains have no verifier."""
        client = make_client(verifier_responses({}))
        with pytest.raises(ConfigError):
            asyncio.run(client.prepare(AttestationRequest(42161, TX_HASH, 1)))


class TestRequestFee:
    """Test fee lookup."""

    def test_fee_from_configuration(self) -> None:
        """The fee comes from the fee configuration contract."""
        client = make_client(verifier_responses({}))
        assert asyncio.run(client.request_fee(b"\x01")) == 123

    def test_fallback_on_rpc_error(self) -> None:
        """An unreadable fee configuration falls back to 1 native unit."""
        adapter = destination(fdcRequestFeeConfigurations=RpcError("boom"))
        client = make_client(verifier_responses({}), adapter=adapter)
        assert asyncio.run(client.request_fee(b"\x01")) == FALLBACK_FEE_WEI

    def test_fallback_on_revert(self) -> None:
        """A reverting fee lookup also falls back."""
        adapter = destination(getRequestFee=OnChainRejection("no fee"))
        client = make_client(verifier_responses({}), adapter=adapter)
        assert asyncio.run(client.request_fee(b"\x01")) == FALLBACK_FEE_WEI


class TestSubmit:
    """Test the hub request and voting round lookup."""

    def test_submit_pays_fee_and_resolves_round(self) -> None:
        """requestAttestation carries the fee; the round comes from the relay."""
        adapter = destination()
        client = make_client(verifier_responses({}), adapter=adapter)
        request = AttestationRequest(14, TX_HASH, 1, encoded_request=ENCODED_REQUEST)

        round_id = asyncio.run(client.submit(request))

        assert round_id == 1234
        assert request.voting_round_id == 1234
        [(_, function, args, value)] = adapter.writes
        assert function == "requestAttestation"
        assert args == (bytes.fromhex(ENCODED_REQUEST[2:]),)
        assert value == 123

    def test_submit_requires_prepare(self) -> None:
        """Unprepared requests cannot be submitted."""
        client = make_client(verifier_responses({}))
        with pytest.raises(ValueError):
            asyncio.run(client.submit(AttestationRequest(14, TX_HASH, 1)))


class TestFinalization:
    """Test finalization polling."""

    def test_waits_then_syncs(self) -> None:
        """Polls until finalized, then sleeps the DA sync delay."""
        answers = iter([False, False, True])
        adapter = destination(isFinalized=lambda type_id, round_id: next(answers))
        clock = FakeClock()
        client = make_client(verifier_responses({}), adapter=adapter, clock=clock)
        request = AttestationRequest(14, TX_HASH, 1, voting_round_id=1234)

        asyncio.run(client.wait_for_finalization(request))

        assert clock.sleeps == [10, 10, 30]

    def test_timeout(self) -> None:
        """A round that never finalizes exhausts the budget."""
        adapter = destination(isFinalized=False)
        client = make_client(
            verifier_responses({}),
            adapter=adapter,
            finalize_policy=PollPolicy(max_wait=20, delay=10),
        )
        request = AttestationRequest(14, TX_HASH, 1, voting_round_id=1234)

        with pytest.raises(AttestationTimeout, match="round 1234") as exc_info:
            asyncio.run(client.wait_for_finalization(request))
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_status == "not finalized"


class TestRetrieveProof:
    """Test DA layer retrieval."""

    def test_retries_transient_errors(self) -> None:
        """5xx answers while the DA layer syncs are retried."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            if len(calls) < 3:
                return httpx.Response(500, text="not yet")
            return httpx.Response(200, json=raw_proof())

        client = make_client(handler)
        request = AttestationRequest(
            14, TX_HASH, 1, encoded_request=ENCODED_REQUEST, voting_round_id=1234
        )

        data = asyncio.run(client.retrieve_proof(request))

        assert data["response_hex"] == raw_proof()["response_hex"]
        assert calls[0] == {"votingRoundId": 1234, "requestBytes": ENCODED_REQUEST}
        assert len(calls) == 3

    def test_gives_up_after_budget(self) -> None:
        """Retrieval is bounded."""
        client = make_client(
            lambda request: httpx.Response(500, text="down"),
            retrieve_policy=PollPolicy(max_wait=20, delay=10),
        )
        request = AttestationRequest(
            14, TX_HASH, 1, encoded_request=ENCODED_REQUEST, voting_round_id=1234
        )
        with pytest.raises(AttestationTimeout, match="Proof retrieval"):
            asyncio.run(client.retrieve_proof(request))


class TestGetProof:
    """Test the full attestation round trip."""

    def test_full_flow(self) -> None:
        """Every stage runs in order and yields a validated proof."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("prepareRequest"):
                return httpx.Response(200, json={"abiEncodedRequest": ENCODED_REQUEST})
            return httpx.Response(200, json=raw_proof(voting_round=1234))

        steps = []
        adapter = destination()
        client = make_client(handler, adapter=adapter)

        proof = asyncio.run(client.get_proof(14, TX_HASH, progress=steps.append))

        assert steps == ["prepare", "request", "finalize", "retrieve", "decode"]
        assert proof.data.voting_round == 1234
        assert proof.data.request_body.transaction_hash == bytes.fromhex(TX_HASH[2:])
        assert len(adapter.written("requestAttestation")) == 1
