"""Exception hierarchy shared by every feedbot component.

The classes map onto how a failure is handled:

- ``TransientError``: network/RPC hiccup. Retried only by the attestation
  polling loops; writes are never retried.
- ``AttestationNotReady`` / ``AttestationTimeout``: the external verifier
  has not ingested the transaction yet, or gave up waiting for it.
- ``OnChainRejection``: a destination program reverted. The revert reason
  is kept verbatim and the attempt is never retried.
- ``ProofDecodeError``: the attestation response is incomplete. Only the
  attestation phase needs to be re-run.
- ``ConfigError``: fatal at start; the scheduler never enters running.
"""


class FeedBotError(Exception):
    """Base exception for feedbot errors."""

    #: Whether re-running only the attestation phase could succeed.
    retry_attestation = False


class ConfigError(FeedBotError):
    """Raised when configuration or feed metadata is invalid."""

    pass


class TransientError(FeedBotError):
    """Raised on a recoverable network or RPC failure."""

    retry_attestation = True


class RpcError(TransientError):
    """Raised when a JSON-RPC call to a chain fails."""

    pass


class HttpError(TransientError):
    """Raised when an external HTTP service responds with a non-2xx status.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class AttestationNotReady(FeedBotError):
    """Raised when the verifier has not produced an encoded request yet."""

    retry_attestation = True


class AttestationTimeout(FeedBotError):
    """Raised when a polling budget is exhausted.

    :ivar attempts: Number of attempts made.
    :ivar waited: Seconds spent waiting.
    :ivar last_status: Last status reported by the remote service.
    """

    retry_attestation = True

    def __init__(self, stage: str, attempts: int, waited: float, last_status: str | None):
        self.stage = stage
        self.attempts = attempts
        self.waited = waited
        self.last_status = last_status or "unknown"
        super().__init__(
            f"{stage} gave up after {attempts} attempts (~{int(waited)}s). "
            f"Last status: {self.last_status}."
        )


class OnChainRejection(FeedBotError):
    """Raised when a transaction reverts on-chain.

    :ivar reason: Revert reason as reported by the program.
    :ivar tx_hash: Hash of the reverted transaction, if it was mined.
    """

    def __init__(self, reason: str, tx_hash: str | None = None):
        self.reason = reason
        self.tx_hash = tx_hash
        message = f"Transaction reverted: {reason}"
        if tx_hash:
            message += f" (tx {tx_hash})"
        super().__init__(message)


class ConfirmationTimeout(FeedBotError):
    """Raised when a transaction is not confirmed before its deadline.

    :ivar tx_hash: Hash of the pending transaction.
    :ivar confirmations: Confirmations seen when the wait gave up.
    :ivar last_status: What the last poll saw, including RPC errors.
    """

    def __init__(
        self,
        tx_hash: str,
        confirmations: int,
        required: int,
        waited: float,
        last_status: str | None = None,
    ):
        self.tx_hash = tx_hash
        self.confirmations = confirmations
        self.required = required
        self.last_status = last_status
        message = (
            f"Transaction {tx_hash} had {confirmations}/{required} confirmations "
            f"after ~{int(waited)}s"
        )
        if last_status:
            message += f". Last status: {last_status}"
        super().__init__(message)


class GasPriceTooHigh(FeedBotError):
    """Raised when the chain's gas price is above the configured ceiling."""

    def __init__(self, chain_id: int, gas_price_gwei: float, ceiling_gwei: float):
        self.chain_id = chain_id
        self.gas_price_gwei = gas_price_gwei
        self.ceiling_gwei = ceiling_gwei
        super().__init__(
            f"Gas too high on chain {chain_id} "
            f"({gas_price_gwei:.2f} gwei > {ceiling_gwei:.2f} gwei)"
        )


class PriceConversionError(FeedBotError):
    """Raised when a sqrt price cannot be converted to a feed value."""

    pass


class ProofDecodeError(FeedBotError):
    """Raised when an attestation response cannot be decoded."""

    retry_attestation = True


class MissingProofField(ProofDecodeError):
    """Raised when a field the verifier contract expects is absent."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Proof is missing field '{field}'")


class MalformedProofField(ProofDecodeError):
    """Raised when a proof field has the wrong type or range."""

    def __init__(self, field: str, detail: str):
        self.field = field
        self.detail = detail
        super().__init__(f"Proof field '{field}' is malformed: {detail}")


class RelayRuleViolation(FeedBotError):
    """Raised when a relay candidate would be rejected by the relay program.

    Subclasses carry the same reason string the program reverts with.
    """

    reason = "Relay rejected"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"{self.reason}: {detail}" if detail else self.reason)


class NotAuthorizedRelayer(RelayRuleViolation):
    reason = "Not authorized relayer"


class PoolNotEnabled(RelayRuleViolation):
    reason = "Pool not enabled"


class RelayRateLimited(RelayRuleViolation):
    reason = "Too soon"


class StaleBlockNumber(RelayRuleViolation):
    reason = "Stale block number"


class FutureTimestamp(RelayRuleViolation):
    reason = "Future timestamp"


class PriceTooOld(RelayRuleViolation):
    reason = "Price too old"


class DeviationTooHigh(RelayRuleViolation):
    reason = "Price deviation too high"
