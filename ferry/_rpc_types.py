import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ._actions import AccessKeyPermission
from ._entities import AccountId, CryptoHash, Gas, NearToken, TxExecutionStatus
from ._keys import PublicKey
from ._provider import RawJSON


@dataclass
class AccessKeyView:
    """An access key state as returned by the ``view_access_key`` query."""

    nonce: int
    """The nonce of the last transaction signed with this key."""

    permission: AccessKeyPermission

    block_height: int
    """The height of the block the state was observed at."""

    block_hash: CryptoHash
    """The hash of the block the state was observed at."""


@dataclass
class AccessKeyDetails:
    nonce: int
    permission: AccessKeyPermission


@dataclass
class AccessKeyInfo:
    public_key: PublicKey
    access_key: AccessKeyDetails


@dataclass
class AccessKeyList:
    """All access keys of an account."""

    keys: tuple[AccessKeyInfo, ...]
    block_height: int
    block_hash: CryptoHash


@dataclass
class AccountView:
    """Account state."""

    amount: NearToken
    """The liquid balance."""

    locked: NearToken
    """The balance locked in staking."""

    code_hash: CryptoHash
    """The hash of the deployed contract (all zeros if none)."""

    storage_usage: int
    """Storage used by the account, in bytes."""

    block_height: int
    block_hash: CryptoHash

    storage_paid_at: int = 0


@dataclass
class BlockHeader:
    height: int
    hash: CryptoHash
    prev_hash: CryptoHash
    epoch_id: CryptoHash
    timestamp: int
    """Block timestamp in nanoseconds."""

    gas_price: NearToken
    """The price of one unit of gas in this block."""

    last_final_block: CryptoHash


@dataclass
class BlockInfo:
    """Block information."""

    author: AccountId
    """The producer of the block."""

    header: BlockHeader


@dataclass
class SyncInfo:
    latest_block_hash: CryptoHash
    latest_block_height: int
    latest_block_time: str
    syncing: bool


@dataclass
class NodeVersion:
    version: str
    build: str


@dataclass
class NodeStatus:
    """The response of the ``status`` method."""

    chain_id: str
    protocol_version: int
    latest_protocol_version: int
    genesis_hash: CryptoHash
    sync_info: SyncInfo
    version: NodeVersion


@dataclass
class GasPrice:
    gas_price: NearToken


@dataclass
class ViewResult:
    """The result of a read-only contract method call."""

    result: tuple[int, ...]
    """Raw bytes returned by the method, as the node sends them."""

    logs: tuple[str, ...]
    block_height: int
    block_hash: CryptoHash

    @property
    def value(self) -> bytes:
        return bytes(self.result)

    def json(self) -> Any:
        """Decodes the returned value as JSON."""
        return json.loads(self.value)


class ExecutionStatus:
    """The base class for the status of a transaction or a receipt."""


@dataclass
class SuccessValue(ExecutionStatus):
    """Execution succeeded and returned a value."""

    value: bytes


@dataclass
class SuccessReceiptId(ExecutionStatus):
    """Execution succeeded and produced a receipt to be executed next."""

    receipt_id: CryptoHash


@dataclass
class ExecutionFailure(ExecutionStatus):
    """Execution failed."""

    error: RawJSON
    """The raw error as reported by the node (``ActionError`` or ``InvalidTxError``)."""

    @property
    def action_error(self) -> None | Mapping[str, Any]:
        if isinstance(self.error, Mapping):
            action_error = self.error.get("ActionError")
            if isinstance(action_error, Mapping):
                return action_error
        return None

    @property
    def action_index(self) -> None | int:
        """
        The index of the failed action within the transaction,
        if the failure is an action failure.
        """
        action_error = self.action_error
        if action_error is None:
            return None
        index = action_error.get("index")
        return index if isinstance(index, int) else None

    @property
    def kind(self) -> RawJSON:
        """The failure details without the envelope."""
        action_error = self.action_error
        if action_error is not None:
            return RawJSON(action_error.get("kind"))
        return self.error

    def __str__(self) -> str:
        return json.dumps(self.error)


@dataclass
class StatusUnknown(ExecutionStatus):
    pass


@dataclass
class StatusPending(ExecutionStatus):
    pass


@dataclass
class ExecutionOutcome:
    """The outcome of executing a transaction or a receipt."""

    executor_id: AccountId
    gas_burnt: Gas
    tokens_burnt: NearToken
    logs: tuple[str, ...]
    receipt_ids: tuple[CryptoHash, ...]
    status: ExecutionStatus


@dataclass
class ExecutionOutcomeWithId:
    id: CryptoHash
    """The transaction hash or the receipt ID."""

    outcome: ExecutionOutcome
    block_hash: CryptoHash


@dataclass
class TransactionView:
    signer_id: AccountId
    public_key: PublicKey
    nonce: int
    receiver_id: AccountId
    hash: CryptoHash


@dataclass
class FinalExecutionOutcome:
    """
    The result of a transaction submission or a status query.
    Which fields are present depends on the level the node has waited for.
    """

    final_execution_status: TxExecutionStatus
    """The execution level reached."""

    status: None | ExecutionStatus = None
    """The overall status. Present once the transaction was executed."""

    transaction: None | TransactionView = None
    transaction_outcome: None | ExecutionOutcomeWithId = None
    receipts_outcome: tuple[ExecutionOutcomeWithId, ...] = ()

    @property
    def is_success(self) -> bool:
        return isinstance(self.status, SuccessValue | SuccessReceiptId)

    @property
    def is_failure(self) -> bool:
        return isinstance(self.status, ExecutionFailure)

    @property
    def is_pending(self) -> bool:
        """``True`` if the outcome is not known yet at the reached level."""
        return not self.is_success and not self.is_failure

    @property
    def failure(self) -> None | ExecutionFailure:
        return self.status if isinstance(self.status, ExecutionFailure) else None

    @property
    def failed_action_index(self) -> None | int:
        """The index of the action that failed, if the failure was an action failure."""
        failure = self.failure
        return failure.action_index if failure is not None else None

    @property
    def success_value(self) -> None | bytes:
        return self.status.value if isinstance(self.status, SuccessValue) else None

    def success_json(self) -> Any:
        """Decodes the returned value as JSON. Returns ``None`` if there is no value."""
        value = self.success_value
        return json.loads(value) if value else None

    @property
    def transaction_hash(self) -> None | CryptoHash:
        if self.transaction_outcome is not None:
            return self.transaction_outcome.id
        if self.transaction is not None:
            return self.transaction.hash
        return None

    @property
    def receipt_ids(self) -> tuple[CryptoHash, ...]:
        """IDs of the receipts produced by the transaction."""
        if self.transaction_outcome is not None:
            return self.transaction_outcome.outcome.receipt_ids
        return ()

    @property
    def logs(self) -> tuple[str, ...]:
        """Logs from all the receipts, in execution order."""
        return tuple(log for receipt in self.receipts_outcome for log in receipt.outcome.logs)

    @property
    def total_gas_burnt(self) -> Gas:
        total = Gas(0)
        if self.transaction_outcome is not None:
            total += self.transaction_outcome.outcome.gas_burnt
        for receipt in self.receipts_outcome:
            total += receipt.outcome.gas_burnt
        return total
