import base64
import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, TypeVar

import anyio
from compages import StructuringError

from ._config import RetryConfig
from ._entities import AccountId, BlockReference, CryptoHash, Finality, TxExecutionStatus
from ._errors import (
    ErrorClass,
    TimeoutExceeded,
    classify,
    known_not_executed,
    to_remote_error,
)
from ._keys import PublicKey
from ._provider import RPC_JSON, ErrorCause, ProviderError, ProviderSession, RawJSON, RPCError
from ._rpc_types import (
    AccessKeyList,
    AccessKeyView,
    AccountView,
    BlockInfo,
    FinalExecutionOutcome,
    GasPrice,
    NodeStatus,
    ViewResult,
)
from ._serialization import structure
from ._transaction import SignedTransaction

logger = logging.getLogger(__name__)


class BadResponseFormat(Exception):
    """Raised if the RPC provider returned an unexpectedly formatted response."""


@contextmanager
def convert_errors(method_name: str) -> Iterator[None]:
    try:
        yield
    except StructuringError as exc:
        raise BadResponseFormat(f"{method_name}: {exc}") from exc


def block_reference_params(block: BlockReference) -> dict[str, RPC_JSON]:
    """Returns the RPC parameters identifying the given block."""
    if isinstance(block, Finality):
        return {"finality": block.value}
    if isinstance(block, CryptoHash):
        return {"block_id": str(block)}
    if isinstance(block, int) and not isinstance(block, bool):
        return {"block_id": block}
    raise TypeError(f"Unsupported block reference: {block!r}")


RetType = TypeVar("RetType")


class ClientSessionRPC:
    """
    The hub for methods which directly correspond to RPC calls.

    Transient failures are retried according to the retry configuration;
    if all the attempts fail, :py:class:`TimeoutExceeded` is raised.
    Node-side errors are raised as :py:class:`RpcProtocolError` subclasses
    (most notably :py:class:`InvalidNonce`, which is not retried here).
    Other provider errors are raised as :py:class:`ProviderError`,
    and malformed responses as :py:class:`BadResponseFormat`.
    """

    def __init__(self, provider_session: ProviderSession, retry: None | RetryConfig = None):
        self._provider_session = provider_session
        self._retry = retry or RetryConfig()

    @property
    def retry(self) -> RetryConfig:
        return self._retry

    async def _request(
        self, method: str, params: RPC_JSON, *, resubmit_ambiguous: bool = True
    ) -> RPC_JSON:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._provider_session.rpc(method, params)
            except ProviderError as exc:
                error_class = classify(exc)
                # A request that may have been acted upon (e.g. a timed out transaction
                # submission) is only repeated if the caller allowed it.
                retryable = error_class == ErrorClass.TRANSIENT and (
                    resubmit_ambiguous or known_not_executed(exc)
                )
                if not retryable:
                    if isinstance(exc.error, RPCError):
                        raise to_remote_error(exc.error) from exc
                    raise

                if attempt >= self._retry.max_retries:
                    logger.warning("`%s` failed after %d attempts: %s", method, attempt, exc)
                    raise TimeoutExceeded(attempt, exc) from exc

                delay = self._retry.delay(attempt - 1)
                logger.warning(
                    "`%s` failed (attempt %d of %d), retrying in %.2fs: %s",
                    method,
                    attempt,
                    self._retry.max_retries,
                    delay,
                    exc,
                )
                await anyio.sleep(delay)

    async def _call(
        self,
        method: str,
        ret_type: type[RetType],
        params: RPC_JSON,
        *,
        resubmit_ambiguous: bool = True,
    ) -> RetType:
        result = await self._request(method, params, resubmit_ambiguous=resubmit_ambiguous)
        with convert_errors(method):
            return structure(ret_type, result)

    async def _query(self, ret_type: type[RetType], params: dict[str, RPC_JSON]) -> RetType:
        return await self._call("query", ret_type, params)

    async def view_account(
        self, account_id: AccountId, block: BlockReference = Finality.FINAL
    ) -> AccountView:
        """Returns the account state."""
        return await self._query(
            AccountView,
            {
                "request_type": "view_account",
                "account_id": str(account_id),
                **block_reference_params(block),
            },
        )

    async def view_access_key(
        self,
        account_id: AccountId,
        public_key: PublicKey,
        block: BlockReference = Finality.OPTIMISTIC,
    ) -> AccessKeyView:
        """Returns the access key state (most importantly, its nonce)."""
        return await self._query(
            AccessKeyView,
            {
                "request_type": "view_access_key",
                "account_id": str(account_id),
                "public_key": str(public_key),
                **block_reference_params(block),
            },
        )

    async def view_access_key_list(
        self, account_id: AccountId, block: BlockReference = Finality.FINAL
    ) -> AccessKeyList:
        """Returns all the access keys of an account."""
        return await self._query(
            AccessKeyList,
            {
                "request_type": "view_access_key_list",
                "account_id": str(account_id),
                **block_reference_params(block),
            },
        )

    async def call_function(
        self,
        account_id: AccountId,
        method_name: str,
        args: bytes = b"",
        block: BlockReference = Finality.OPTIMISTIC,
    ) -> ViewResult:
        """Calls a read-only contract method."""
        params: dict[str, RPC_JSON] = {
            "request_type": "call_function",
            "account_id": str(account_id),
            "method_name": method_name,
            "args_base64": base64.b64encode(args).decode(),
            **block_reference_params(block),
        }
        result = await self._request("query", params)

        # Contract failures come as a successful response with an `error` field.
        if isinstance(result, Mapping) and isinstance(result.get("error"), str):
            message = result["error"]
            cause_name = (
                "NO_CONTRACT_CODE" if "CodeDoesNotExist" in message else "CONTRACT_EXECUTION_ERROR"
            )
            info: dict[str, Any] = {
                "contract_id": str(account_id),
                "method_name": method_name,
                "vm_error": message,
            }
            raise to_remote_error(
                RPCError(
                    code=-32000,
                    message=message,
                    name="HANDLER_ERROR",
                    cause=ErrorCause(name=cause_name, info=RawJSON(info)),
                )
            )

        with convert_errors("query"):
            return structure(ViewResult, result)

    async def block(self, block: BlockReference = Finality.FINAL) -> BlockInfo:
        """Returns the block information."""
        return await self._call("block", BlockInfo, block_reference_params(block))

    async def status(self) -> NodeStatus:
        """Returns the node status."""
        return await self._call("status", NodeStatus, [])

    async def gas_price(self, block_hash: None | CryptoHash = None) -> GasPrice:
        """Returns the gas price at the given block (or the latest one)."""
        params: list[RPC_JSON] = [str(block_hash) if block_hash is not None else None]
        return await self._call("gas_price", GasPrice, params)

    async def send_tx(
        self,
        signed_tx: SignedTransaction,
        wait_until: TxExecutionStatus = TxExecutionStatus.EXECUTED_OPTIMISTIC,
    ) -> FinalExecutionOutcome:
        """
        Submits a signed transaction and waits until it reaches the ``wait_until`` level.

        Only failures that are known to have happened before the node acted on the request
        are retried. Other failures are raised immediately,
        and it is up to the caller to check the transaction status before resubmitting.
        """
        return await self._call(
            "send_tx",
            FinalExecutionOutcome,
            {"signed_tx_base64": signed_tx.to_base64(), "wait_until": wait_until.value},
            resubmit_ambiguous=False,
        )

    async def tx_status(
        self,
        tx_hash: CryptoHash,
        sender_id: AccountId,
        wait_until: TxExecutionStatus = TxExecutionStatus.EXECUTED_OPTIMISTIC,
    ) -> FinalExecutionOutcome:
        """Returns the status of a previously submitted transaction."""
        return await self._call(
            "EXPERIMENTAL_tx_status",
            FinalExecutionOutcome,
            {
                "tx_hash": str(tx_hash),
                "sender_account_id": str(sender_id),
                "wait_until": wait_until.value,
            },
        )
