from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any

from ._entities import AccountId, CryptoHash, ParseError
from ._http_provider import HTTPError
from ._keys import PublicKey
from ._provider import InvalidResponse, NoResponse, ProviderError, RPCError, Unreachable
from ._rpc_types import FinalExecutionOutcome


class ErrorClass(Enum):
    """How a failed request should be handled."""

    TRANSIENT = "transient"
    """The same request may succeed if repeated after a delay."""

    CORRECTABLE = "correctable"
    """The error carries a corrected value the caller can use to build a new request."""

    TERMINAL = "terminal"
    """Repeating the request will not help."""


class ConfigurationError(Exception):
    """Raised when the client is missing something it needs (e.g. a signer)."""


class SigningError(Exception):
    """Raised when a signer fails to produce a signature."""


@dataclass
class TimeoutExceeded(Exception):
    """Raised when a request keeps failing with transient errors for all the allowed attempts."""

    attempts: int
    """The number of attempts made."""

    error: ProviderError
    """The error from the last attempt."""

    def __str__(self) -> str:
        return f"Request failed after {self.attempts} attempts, last error: {self.error}"


class RpcProtocolError(Exception):
    """
    An error reported by the node in a structured way.
    The raw payload is available as :py:attr:`error`.
    """

    error: RPCError
    """The error payload as returned by the node."""

    def __init__(self, error: RPCError):
        super().__init__(error)
        self.error = error

    @property
    def cause_name(self) -> None | str:
        return self.error.cause_name

    def __str__(self) -> str:
        return str(self.error)


class AccountNotFound(RpcProtocolError):
    """The requested account does not exist."""

    def __init__(self, error: RPCError, account_id: None | AccountId):
        super().__init__(error)
        self.account_id = account_id


class AccessKeyNotFound(RpcProtocolError):
    """The requested access key does not exist."""

    def __init__(
        self, error: RPCError, account_id: None | AccountId, public_key: None | PublicKey
    ):
        super().__init__(error)
        self.account_id = account_id
        self.public_key = public_key


class InvalidAccount(RpcProtocolError):
    """The requested account ID is not valid."""


class UnknownBlock(RpcProtocolError):
    """The requested block is not known to the node (or was garbage collected)."""


class UnknownTransaction(RpcProtocolError):
    """The node does not know about the requested transaction."""


class ContractNotDeployed(RpcProtocolError):
    """The account has no contract deployed."""


class ContractExecutionError(RpcProtocolError):
    """A view call failed during the contract execution."""


class InvalidTransaction(RpcProtocolError):
    """The transaction was rejected before execution."""

    @property
    def details(self) -> Any:
        """The ``InvalidTxError`` payload (an object or a unit variant name), if present."""
        return _invalid_tx_payload(self.error)


class InvalidNonce(InvalidTransaction):
    """
    The transaction nonce is not greater than the access key nonce.
    Carries the actual access key nonce, so the transaction can be rebuilt.
    """

    def __init__(self, error: RPCError, tx_nonce: int, ak_nonce: int):
        super().__init__(error)
        self.tx_nonce = tx_nonce
        self.ak_nonce = ak_nonce

    def __str__(self) -> str:
        return f"Invalid nonce: transaction nonce {self.tx_nonce}, access key nonce {self.ak_nonce}"


class RequestTimeout(RpcProtocolError):
    """
    The node timed out waiting for the requested condition.
    If this was a transaction submission, it may still be executed.
    """

    @property
    def transaction_hash(self) -> None | CryptoHash:
        value = self.error.cause_info.get("transaction_hash")
        if isinstance(value, str):
            try:
                return CryptoHash.from_base58(value)
            except ParseError:
                return None
        return None


class TransactionFailed(Exception):
    """Raised when a transaction was executed, but the execution failed."""

    outcome: FinalExecutionOutcome
    """The full execution outcome."""

    action_index: None | int
    """The index of the failed action, if the failure was an action failure."""

    def __init__(self, outcome: FinalExecutionOutcome):
        super().__init__(outcome)
        self.outcome = outcome
        self.action_index = outcome.failed_action_index

    def __str__(self) -> str:
        where = f" (action #{self.action_index})" if self.action_index is not None else ""
        return f"Transaction failed{where}: {self.outcome.failure}"


# Node-side causes worth retrying.
_TRANSIENT_CAUSES = frozenset(
    [
        "TIMEOUT_ERROR",
        "UNAVAILABLE_SHARD",
        "NO_SYNCED_BLOCKS",
        "NOT_SYNCED_YET",
        "INTERNAL_ERROR",
    ]
)

# `InvalidTxError` variants that mean "try again later".
_TRANSIENT_TX_ERRORS = frozenset(["ShardCongested", "ShardStuck"])


def _invalid_tx_payload(error: RPCError) -> Any:
    # The error can be found in `data` or `cause.info`,
    # either wrapped in `TxExecutionError` or not.
    # Unit variants (e.g. `Expired`) are plain strings.
    for source in (error.data, error.cause_info):
        if not isinstance(source, Mapping):
            continue
        wrapped = source.get("TxExecutionError")
        if isinstance(wrapped, Mapping):
            source = wrapped  # noqa: PLW2901
        if "InvalidTxError" in source:
            return source["InvalidTxError"]
    return None


def _invalid_tx_error(error: RPCError) -> None | Mapping[str, Any]:
    payload = _invalid_tx_payload(error)
    return payload if isinstance(payload, Mapping) else None


def _invalid_nonce(error: RPCError) -> None | tuple[int, int]:
    invalid_tx = _invalid_tx_error(error)
    if invalid_tx is None:
        return None
    invalid_nonce = invalid_tx.get("InvalidNonce")
    if not isinstance(invalid_nonce, Mapping):
        return None
    tx_nonce = invalid_nonce.get("tx_nonce")
    ak_nonce = invalid_nonce.get("ak_nonce")
    if not isinstance(tx_nonce, int) or not isinstance(ak_nonce, int):
        return None
    return tx_nonce, ak_nonce


def classify(error: Exception) -> ErrorClass:
    """Returns how the given error (normally a :py:class:`ProviderError`) should be handled."""
    if isinstance(error, ProviderError):
        error = error.error

    if isinstance(error, Unreachable | NoResponse | InvalidResponse):
        return ErrorClass.TRANSIENT

    if isinstance(error, HTTPError):
        status = error.status
        if status in (HTTPStatus.REQUEST_TIMEOUT, HTTPStatus.TOO_MANY_REQUESTS) or (
            HTTPStatus.INTERNAL_SERVER_ERROR <= status < 600  # noqa: PLR2004
        ):
            return ErrorClass.TRANSIENT
        return ErrorClass.TERMINAL

    if isinstance(error, RPCError):
        if error.cause_name in _TRANSIENT_CAUSES:
            return ErrorClass.TRANSIENT
        if _invalid_nonce(error) is not None:
            return ErrorClass.CORRECTABLE
        invalid_tx = _invalid_tx_error(error)
        if invalid_tx is not None and _TRANSIENT_TX_ERRORS.intersection(invalid_tx):
            return ErrorClass.TRANSIENT
        return ErrorClass.TERMINAL

    return ErrorClass.TERMINAL


def known_not_executed(error: Exception) -> bool:
    """
    Returns ``True`` if the failed request is known to not have been acted upon,
    so it is safe to send it again even if it was a transaction submission.
    """
    if isinstance(error, ProviderError):
        error = error.error

    if isinstance(error, Unreachable):
        return True

    if isinstance(error, HTTPError):
        return error.status in (HTTPStatus.TOO_MANY_REQUESTS, HTTPStatus.SERVICE_UNAVAILABLE)

    if isinstance(error, RPCError):
        if error.cause_name in ("UNAVAILABLE_SHARD", "NO_SYNCED_BLOCKS", "NOT_SYNCED_YET"):
            return True
        invalid_tx = _invalid_tx_error(error)
        return invalid_tx is not None and bool(_TRANSIENT_TX_ERRORS.intersection(invalid_tx))

    return False


def _account_id(value: Any) -> None | AccountId:
    if not isinstance(value, str):
        return None
    try:
        return AccountId(value)
    except ParseError:
        return None


def _public_key(value: Any) -> None | PublicKey:
    if not isinstance(value, str):
        return None
    try:
        return PublicKey.from_string(value)
    except ParseError:
        return None


def to_remote_error(error: RPCError) -> RpcProtocolError:  # noqa: PLR0911
    """Converts a node error payload into a typed exception."""
    cause = error.cause_name
    info = error.cause_info

    if cause == "UNKNOWN_ACCOUNT":
        return AccountNotFound(error, _account_id(info.get("requested_account_id")))
    if cause == "INVALID_ACCOUNT":
        return InvalidAccount(error)
    if cause == "UNKNOWN_ACCESS_KEY":
        return AccessKeyNotFound(
            error,
            _account_id(info.get("requested_account_id")),
            _public_key(info.get("public_key")),
        )
    if cause == "UNKNOWN_BLOCK":
        return UnknownBlock(error)
    if cause == "UNKNOWN_TRANSACTION":
        return UnknownTransaction(error)
    if cause == "NO_CONTRACT_CODE":
        return ContractNotDeployed(error)
    if cause == "CONTRACT_EXECUTION_ERROR":
        return ContractExecutionError(error)
    if cause == "TIMEOUT_ERROR":
        return RequestTimeout(error)

    nonces = _invalid_nonce(error)
    if nonces is not None:
        tx_nonce, ak_nonce = nonces
        return InvalidNonce(error, tx_nonce=tx_nonce, ak_nonce=ak_nonce)
    if cause == "INVALID_TRANSACTION" or _invalid_tx_payload(error) is not None:
        return InvalidTransaction(error)

    # Older nodes report a missing account only as a message in `data`.
    if isinstance(error.data, str) and error.data.startswith("account ") and (
        "does not exist" in error.data
    ):
        return AccountNotFound(error, _account_id(error.data.split()[1]))

    return RpcProtocolError(error)
