"""The state machine driving a single transaction submission."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum

import anyio

from ._actions import Action
from ._client_rpc import BadResponseFormat, ClientSessionRPC
from ._codec import EncodingError
from ._entities import AccountId, CryptoHash, Finality, TxExecutionStatus
from ._errors import (
    ErrorClass,
    InvalidNonce,
    RequestTimeout,
    RpcProtocolError,
    SigningError,
    TimeoutExceeded,
    UnknownTransaction,
    classify,
)
from ._provider import ProviderError
from ._rpc_types import AccessKeyView, BlockInfo, FinalExecutionOutcome
from ._signer import ClaimedKey, Signer
from ._transaction import SignedTransaction, Transaction, encode_transaction, hash_transaction

logger = logging.getLogger(__name__)

MAX_NONCE_RECOVERIES = 3
"""How many times a transaction is rebuilt after an invalid nonce error."""

MAX_RESUBMISSIONS = 3
"""How many times a signed transaction unknown to the node is submitted again."""


class PipelineStage(Enum):
    """The states of a transaction submission."""

    RESOLVING = "resolving"
    """Claiming a signer key, fetching its nonce and a recent block hash."""

    BUILDING = "building"
    """Assembling the unsigned transaction."""

    HASHING = "hashing"
    """Encoding the transaction and hashing the encoding."""

    SIGNING = "signing"
    """Signing the hash."""

    SUBMITTING = "submitting"
    """Sending the signed transaction to the node."""

    RECOVERING = "recovering"
    """Preparing to rebuild the transaction with a corrected nonce."""

    WAITING = "waiting"
    """Obtaining the outcome at the requested level."""

    SUCCESS = "success"
    """The transaction was accepted, and did not fail at the requested level."""

    FAILURE = "failure"
    """The transaction was executed and failed."""

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.SUCCESS, PipelineStage.FAILURE)


@dataclass
class PipelineError(Exception):
    """Raised when a transaction submission could not be completed on the client side."""

    stage: PipelineStage
    """The stage at which the error occurred."""

    error: Exception
    """The specific error."""

    def __str__(self) -> str:
        return f"Transaction pipeline failed while {self.stage.value}: {self.error}"


# Errors that end the pipeline and are reported with the stage they happened in.
_CLIENT_ERRORS = (
    RpcProtocolError,
    ProviderError,
    TimeoutExceeded,
    BadResponseFormat,
    SigningError,
    EncodingError,
)


def _is_ambiguous(error: Exception) -> bool:
    # A submission failure after which the transaction may still get executed.
    if isinstance(error, RequestTimeout):
        return True
    if isinstance(error, ProviderError):
        return classify(error) == ErrorClass.TRANSIENT
    if isinstance(error, RpcProtocolError):
        return classify(error.error) == ErrorClass.TRANSIENT
    return False


class TransactionPipeline:
    """
    Submits one transaction, going through the states in :py:class:`PipelineStage`.

    The stages visited are recorded in :py:attr:`history`,
    and every signed transaction produced in :py:attr:`attempts`.
    """

    def __init__(  # noqa: PLR0913
        self,
        rpc: ClientSessionRPC,
        signer: Signer,
        receiver_id: AccountId,
        actions: Sequence[Action],
        *,
        wait_until: TxExecutionStatus = TxExecutionStatus.EXECUTED_OPTIMISTIC,
        max_nonce_recoveries: int = MAX_NONCE_RECOVERIES,
        max_resubmissions: int = MAX_RESUBMISSIONS,
        priority_fee: None | int = None,
    ):
        if not actions:
            raise EncodingError("A transaction must contain at least one action")

        self._rpc = rpc
        self._signer = signer
        self._receiver_id = receiver_id
        self._actions = tuple(actions)
        self._wait_until = wait_until
        self._max_nonce_recoveries = max_nonce_recoveries
        self._max_resubmissions = max_resubmissions
        self._priority_fee = priority_fee

        self.history: list[PipelineStage] = []
        self.attempts: list[SignedTransaction] = []

        self._key: None | ClaimedKey = None
        self._nonce = 0
        self._block_hash: None | CryptoHash = None
        self._transaction: None | Transaction = None
        self._tx_hash: None | CryptoHash = None
        self._signed: None | SignedTransaction = None
        self._outcome: None | FinalExecutionOutcome = None
        self._unconfirmed_error: None | Exception = None
        self._recoveries = 0
        self._resubmissions = 0

        self._handlers: dict[PipelineStage, Callable[[], Awaitable[PipelineStage]]] = {
            PipelineStage.RESOLVING: self._resolve,
            PipelineStage.BUILDING: self._build,
            PipelineStage.HASHING: self._hash,
            PipelineStage.SIGNING: self._sign,
            PipelineStage.SUBMITTING: self._submit,
            PipelineStage.RECOVERING: self._recover,
            PipelineStage.WAITING: self._wait,
        }

    @property
    def stage(self) -> None | PipelineStage:
        """The current stage (``None`` if the pipeline has not started)."""
        return self.history[-1] if self.history else None

    @property
    def transaction_hash(self) -> None | CryptoHash:
        """The hash of the last signed transaction."""
        return self._tx_hash

    async def run(self) -> FinalExecutionOutcome:
        """
        Runs the pipeline to completion and returns the outcome.
        Client-side failures are raised as :py:class:`PipelineError`.
        """
        if self.history:
            raise RuntimeError("A pipeline can only be run once")

        stage = PipelineStage.RESOLVING
        while not stage.is_terminal:
            self._enter(stage)
            try:
                stage = await self._handlers[stage]()
            except _CLIENT_ERRORS as exc:
                logger.debug("Transaction pipeline failed at %s: %s", stage.value, exc)
                raise PipelineError(stage, exc) from exc
        self._enter(stage)

        assert self._outcome is not None  # noqa: S101
        return self._outcome

    def _enter(self, stage: PipelineStage) -> None:
        logger.debug("Transaction pipeline: %s", stage.value)
        self.history.append(stage)

    async def _resolve(self) -> PipelineStage:
        # The key must be claimed before any I/O,
        # so that concurrent pipelines with a rotating signer get different keys.
        key = self._signer.claim_key()
        self._key = key

        access_key: None | AccessKeyView = None
        block: None | BlockInfo = None
        errors: list[Exception] = []

        async def fetch_access_key() -> None:
            nonlocal access_key
            try:
                access_key = await self._rpc.view_access_key(
                    self._signer.account_id, key.public_key, Finality.OPTIMISTIC
                )
            except _CLIENT_ERRORS as exc:
                errors.append(exc)

        async def fetch_block() -> None:
            nonlocal block
            try:
                block = await self._rpc.block(Finality.FINAL)
            except _CLIENT_ERRORS as exc:
                errors.append(exc)

        async with anyio.create_task_group() as task_group:
            task_group.start_soon(fetch_access_key)
            task_group.start_soon(fetch_block)

        if errors:
            raise errors[0]
        assert access_key is not None  # noqa: S101
        assert block is not None  # noqa: S101

        self._nonce = access_key.nonce + 1
        self._block_hash = block.header.hash
        return PipelineStage.BUILDING

    async def _build(self) -> PipelineStage:
        assert self._key is not None  # noqa: S101
        assert self._block_hash is not None  # noqa: S101
        self._transaction = Transaction(
            signer_id=self._signer.account_id,
            public_key=self._key.public_key,
            nonce=self._nonce,
            receiver_id=self._receiver_id,
            block_hash=self._block_hash,
            actions=self._actions,
            priority_fee=self._priority_fee,
        )
        return PipelineStage.HASHING

    async def _hash(self) -> PipelineStage:
        assert self._transaction is not None  # noqa: S101
        self._tx_hash = hash_transaction(encode_transaction(self._transaction))
        return PipelineStage.SIGNING

    async def _sign(self) -> PipelineStage:
        assert self._key is not None  # noqa: S101
        assert self._transaction is not None  # noqa: S101
        assert self._tx_hash is not None  # noqa: S101
        signature = await self._key.sign(bytes(self._tx_hash))
        self._signed = SignedTransaction(self._transaction, signature)
        self.attempts.append(self._signed)
        self._resubmissions = 0
        return PipelineStage.SUBMITTING

    async def _submit(self) -> PipelineStage:
        assert self._signed is not None  # noqa: S101
        try:
            self._outcome = await self._rpc.send_tx(self._signed, self._wait_until)
        except InvalidNonce as exc:
            if self._resubmissions > 0:
                # The earlier, unconfirmed submission of this very transaction
                # may be the one that used up the nonce.
                self._unconfirmed_error = exc
                return PipelineStage.WAITING
            if self._recoveries >= self._max_nonce_recoveries:
                raise
            self._nonce = exc.ak_nonce + 1
            return PipelineStage.RECOVERING
        except _CLIENT_ERRORS as exc:
            if not _is_ambiguous(exc):
                raise
            logger.warning(
                "Submission of %s is unconfirmed (%s), checking its status", self._tx_hash, exc
            )
            self._unconfirmed_error = exc
            return PipelineStage.WAITING

        self._unconfirmed_error = None
        return PipelineStage.WAITING

    async def _recover(self) -> PipelineStage:
        self._recoveries += 1
        logger.warning(
            "Invalid nonce for %s, rebuilding with nonce %d (recovery %d of %d)",
            self._signer.account_id,
            self._nonce,
            self._recoveries,
            self._max_nonce_recoveries,
        )
        return PipelineStage.BUILDING

    async def _wait(self) -> PipelineStage:
        if self._unconfirmed_error is not None:
            assert self._tx_hash is not None  # noqa: S101
            try:
                self._outcome = await self._rpc.tx_status(
                    self._tx_hash, self._signer.account_id, self._wait_until
                )
            except UnknownTransaction:
                # The node never received it, the same signed transaction can be sent again.
                if self._resubmissions >= self._max_resubmissions:
                    raise self._unconfirmed_error from None
                self._resubmissions += 1
                return PipelineStage.SUBMITTING
            self._unconfirmed_error = None

        assert self._outcome is not None  # noqa: S101
        if self._outcome.is_failure:
            return PipelineStage.FAILURE
        return PipelineStage.SUCCESS
