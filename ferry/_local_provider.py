"""An in-memory ledger for tests."""

import base64
import itertools
import json
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ._actions import (
    AccessKey,
    AccessKeyPermission,
    Action,
    AddKey,
    CreateAccount,
    Delegate,
    DeleteAccount,
    DeleteKey,
    DeployContract,
    DeployGlobalContract,
    FullAccessPermission,
    FunctionCall,
    FunctionCallPermission,
    GlobalContractDeployMode,
    Stake,
    Transfer,
    UseGlobalContract,
)
from ._codec import DecodingError
from ._entities import AccountId, CryptoHash, Gas, NearToken, ParseError, TxExecutionStatus
from ._keys import KeyType, PublicKey, SecretKey
from ._provider import (
    RPC_JSON,
    ErrorCause,
    Provider,
    ProviderError,
    ProviderSession,
    RawJSON,
    RPCError,
)
from ._serialization import unstructure
from ._signer import InMemorySigner
from ._transaction import SignedTransaction

logger = logging.getLogger(__name__)

GAS_PRICE = NearToken(100_000_000)
"""The price of one unit of gas on the local ledger (not charged, only reported)."""

_TX_CONVERSION_GAS = Gas.ggas(2428)
_ACTION_GAS = Gas.ggas(100)
_FUNCTION_CALL_GAS = Gas.tgas(2)

_GENESIS_TIMESTAMP = 1_700_000_000 * 10**9
_BLOCK_INTERVAL = 10**9
_ZERO_HASH = CryptoHash(bytes(32))


class ContractPanic(Exception):
    """Raise from a local contract method to make the call fail."""


@dataclass
class CallContext:
    """Passed to a local contract method on each call."""

    contract_id: AccountId
    predecessor_id: AccountId
    signer_id: AccountId
    args: bytes
    deposit: NearToken

    storage: dict[str, Any]
    """The contract state. Changes are discarded for view calls and failed transactions."""

    is_view: bool
    logs: list[str] = field(default_factory=list)

    def args_json(self) -> Any:
        return json.loads(self.args) if self.args else None

    def log(self, message: str) -> None:
        self.logs.append(message)


ContractMethod = Callable[[CallContext], Any]
"""
A local contract method. The returned value is passed to the caller as is if it is ``bytes``,
serialized to JSON otherwise (``None`` means no return value).
"""


def _encode_return_value(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return json.dumps(value, separators=(",", ":")).encode()


@dataclass
class _Account:
    amount: int
    locked: int = 0
    code_hash: CryptoHash = _ZERO_HASH
    keys: dict[PublicKey, AccessKey] = field(default_factory=dict)
    storage: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Block:
    height: int
    hash: CryptoHash
    prev_hash: CryptoHash
    timestamp: int


@dataclass
class _Ledger:
    accounts: dict[AccountId, _Account]
    blocks: list[_Block]
    # Transaction hash -> (signer ID, the outcome at the highest level)
    transactions: dict[CryptoHash, tuple[AccountId, dict[str, RPC_JSON]]]
    # "hash:<code hash>" or "account:<account ID>" -> code hash
    global_contracts: dict[str, CryptoHash]


class _ActionError(Exception):
    def __init__(self, kind: RPC_JSON):
        super().__init__(kind)
        self.kind = kind


class _BadParams(Exception):
    pass


def _handler_error(cause_name: str, info: RPC_JSON, message: str) -> ProviderError:
    return ProviderError(
        RPCError(
            code=-32000,
            message="Server error",
            data=RawJSON(message),
            name="HANDLER_ERROR",
            cause=ErrorCause(name=cause_name, info=RawJSON(info)),
        )
    )


def _invalid_tx(details: RPC_JSON) -> ProviderError:
    wrapped = {"TxExecutionError": {"InvalidTxError": details}}
    return ProviderError(
        RPCError(
            code=-32000,
            message="Server error",
            data=RawJSON(wrapped),
            name="HANDLER_ERROR",
            cause=ErrorCause(name="INVALID_TRANSACTION", info=RawJSON(wrapped)),
        )
    )


def _parse_error(message: str) -> ProviderError:
    return ProviderError(
        RPCError(
            code=-32700,
            message="Parse error",
            data=RawJSON(message),
            name="REQUEST_VALIDATION_ERROR",
            cause=ErrorCause(name="PARSE_ERROR", info=RawJSON({"error_message": message})),
        )
    )


def _param(params: Mapping[str, RPC_JSON], name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str):
        raise _BadParams(f"`{name}` must be a string")
    return value


def _account_id_param(params: Mapping[str, RPC_JSON], name: str) -> AccountId:
    try:
        return AccountId(_param(params, name))
    except ParseError as exc:
        raise _BadParams(str(exc)) from exc


def _public_key_param(params: Mapping[str, RPC_JSON], name: str) -> PublicKey:
    try:
        return PublicKey.from_string(_param(params, name))
    except ParseError as exc:
        raise _BadParams(str(exc)) from exc


def _hash_param(value: RPC_JSON, name: str) -> CryptoHash:
    if not isinstance(value, str):
        raise _BadParams(f"`{name}` must be a string")
    try:
        return CryptoHash.from_base58(value)
    except ParseError as exc:
        raise _BadParams(str(exc)) from exc


class SnapshotID:
    """An ID of a snapshot in a :py:class:`LocalProvider`."""

    def __init__(self, id_: int):
        self.id_ = id_


class LocalProvider(Provider):
    """
    A provider maintaining its own ledger in memory, useful for tests.

    Every accepted transaction is executed immediately in a new block,
    and all blocks are final as soon as they are produced.
    State queries always observe the latest state, whatever block is requested.
    Contracts are Python callables registered with :py:meth:`register_contract_code`
    or :py:meth:`deploy_contract`.
    Gas is reported in the outcomes, but never charged.
    """

    root: InMemorySigner
    """The signer for the pre-created account."""

    def __init__(
        self,
        *,
        root_balance: NearToken,
        root_account_id: str = "test.near",
        chain_id: str = "localnet",
    ):
        self._chain_id = chain_id
        genesis_hash = CryptoHash.hash(chain_id.encode())
        genesis = _Block(
            height=1, hash=genesis_hash, prev_hash=_ZERO_HASH, timestamp=_GENESIS_TIMESTAMP
        )
        self._ledger = _Ledger(accounts={}, blocks=[genesis], transactions={}, global_contracts={})
        self._contract_code: dict[CryptoHash, Mapping[str, ContractMethod]] = {}
        self._snapshot_counter = itertools.count()
        self._snapshots: dict[int, _Ledger] = {}

        self.root = InMemorySigner(root_account_id, SecretKey.generate())
        self.create_account(self.root.account_id, root_balance, self.root.public_key)

    def create_account(
        self,
        account_id: AccountId | str,
        balance: NearToken,
        public_key: None | PublicKey = None,
        nonce: int = 0,
    ) -> None:
        """Creates an account directly, optionally with a full access key."""
        account_id = AccountId(account_id) if isinstance(account_id, str) else account_id
        if account_id in self._ledger.accounts:
            raise ValueError(f"Account {account_id} already exists")
        account = _Account(amount=int(balance))
        if public_key is not None:
            account.keys[public_key] = AccessKey(FullAccessPermission(), nonce=nonce)
        self._ledger.accounts[account_id] = account

    def add_access_key(
        self,
        account_id: AccountId | str,
        public_key: PublicKey,
        permission: None | AccessKeyPermission = None,
        nonce: int = 0,
    ) -> None:
        """Adds an access key directly (a full access one if no permission is given)."""
        account = self._get_account(account_id)
        account.keys[public_key] = AccessKey(permission or FullAccessPermission(), nonce=nonce)

    def register_contract_code(
        self, code: bytes, methods: Mapping[str, ContractMethod]
    ) -> CryptoHash:
        """
        Associates contract code with Python methods,
        so that deploying ``code`` in a transaction makes them callable.
        """
        code_hash = CryptoHash.hash(code)
        self._contract_code[code_hash] = dict(methods)
        return code_hash

    def deploy_contract(
        self, account_id: AccountId | str, methods: Mapping[str, ContractMethod]
    ) -> None:
        """Deploys a contract directly."""
        code = f"local contract at {account_id}".encode()
        self._get_account(account_id).code_hash = self.register_contract_code(code, methods)

    def balance(self, account_id: AccountId | str) -> NearToken:
        return NearToken(self._get_account(account_id).amount)

    def contract_storage(self, account_id: AccountId | str) -> dict[str, Any]:
        return self._get_account(account_id).storage

    def has_account(self, account_id: AccountId | str) -> bool:
        account_id = AccountId(account_id) if isinstance(account_id, str) else account_id
        return account_id in self._ledger.accounts

    def access_key(self, account_id: AccountId | str, public_key: PublicKey) -> None | AccessKey:
        return self._get_account(account_id).keys.get(public_key)

    def take_snapshot(self) -> SnapshotID:
        """Creates a snapshot of the ledger state internally and returns its ID."""
        snapshot_id = next(self._snapshot_counter)
        self._snapshots[snapshot_id] = deepcopy(self._ledger)
        return SnapshotID(snapshot_id)

    def revert_to_snapshot(self, snapshot_id: SnapshotID) -> None:
        """Restores the ledger state to the snapshot with the given ID."""
        self._ledger = deepcopy(self._snapshots[snapshot_id.id_])

    def _get_account(self, account_id: AccountId | str) -> _Account:
        account_id = AccountId(account_id) if isinstance(account_id, str) else account_id
        account = self._ledger.accounts.get(account_id)
        if account is None:
            raise KeyError(f"Account {account_id} does not exist")
        return account

    @property
    def _latest_block(self) -> _Block:
        return self._ledger.blocks[-1]

    def _produce_block(self) -> _Block:
        prev = self._latest_block
        height = prev.height + 1
        block = _Block(
            height=height,
            hash=CryptoHash.hash(bytes(prev.hash) + height.to_bytes(8, "little")),
            prev_hash=prev.hash,
            timestamp=prev.timestamp + _BLOCK_INTERVAL,
        )
        self._ledger.blocks.append(block)
        return block

    def _find_block(self, params: Mapping[str, RPC_JSON]) -> _Block:
        if "finality" in params:
            if params["finality"] not in ("optimistic", "near-final", "final"):
                raise _BadParams(f"Unknown finality: {params['finality']!r}")
            return self._latest_block

        block_id = params.get("block_id")
        if isinstance(block_id, int) and not isinstance(block_id, bool):
            index = block_id - self._ledger.blocks[0].height
            if 0 <= index < len(self._ledger.blocks):
                return self._ledger.blocks[index]
        elif isinstance(block_id, str):
            block_hash = _hash_param(block_id, "block_id")
            for block in self._ledger.blocks:
                if block.hash == block_hash:
                    return block
        else:
            raise _BadParams("Either `finality` or `block_id` must be given")

        raise _handler_error(
            "UNKNOWN_BLOCK",
            {"block_reference": {"block_id": block_id}},
            f"DB Not Found Error: BLOCK: {block_id}",
        )

    def rpc(self, method: str, params: RPC_JSON) -> RPC_JSON:
        """
        Executes an RPC request synchronously.
        Raises :py:class:`ProviderError` wrapping an :py:class:`RPCError` on failure.
        """
        handlers: dict[str, Callable[[RPC_JSON], RPC_JSON]] = {
            "query": self._query,
            "block": self._block,
            "status": self._status,
            "gas_price": self._gas_price,
            "send_tx": self._send_tx,
            "tx": self._tx_status,
            "EXPERIMENTAL_tx_status": self._tx_status,
        }
        handler = handlers.get(method)
        if handler is None:
            raise ProviderError(
                RPCError(
                    code=-32601,
                    message="Method not found",
                    data=RawJSON(method),
                    name="REQUEST_VALIDATION_ERROR",
                    cause=ErrorCause(
                        name="METHOD_NOT_FOUND", info=RawJSON({"method_name": method})
                    ),
                )
            )

        logger.debug("Local RPC request: %s %s", method, params)
        try:
            return handler(params)
        except _BadParams as exc:
            raise _parse_error(str(exc)) from exc

    @asynccontextmanager
    async def session(self) -> AsyncIterator["LocalProviderSession"]:
        yield LocalProviderSession(self)

    def _block_info(self, block: _Block) -> dict[str, RPC_JSON]:
        return {"block_height": block.height, "block_hash": str(block.hash)}

    def _query(self, params: RPC_JSON) -> RPC_JSON:
        if not isinstance(params, Mapping):
            raise _BadParams("`query` parameters must be an object")
        block = self._find_block(params)
        request_type = params.get("request_type")
        account_id = _account_id_param(params, "account_id")

        account = self._ledger.accounts.get(account_id)
        if account is None:
            raise _handler_error(
                "UNKNOWN_ACCOUNT",
                {"requested_account_id": str(account_id), **self._block_info(block)},
                f"account {account_id} does not exist while viewing",
            )

        if request_type == "view_account":
            return {
                "amount": str(account.amount),
                "locked": str(account.locked),
                "code_hash": str(account.code_hash),
                "storage_usage": 182 + 100 * len(account.keys),
                "storage_paid_at": 0,
                **self._block_info(block),
            }

        if request_type == "view_access_key":
            public_key = _public_key_param(params, "public_key")
            access_key = account.keys.get(public_key)
            if access_key is None:
                raise _handler_error(
                    "UNKNOWN_ACCESS_KEY",
                    {
                        "requested_account_id": str(account_id),
                        "public_key": str(public_key),
                        **self._block_info(block),
                    },
                    f"access key {public_key} does not exist while viewing",
                )
            return {
                "nonce": access_key.nonce,
                "permission": unstructure(access_key.permission),
                **self._block_info(block),
            }

        if request_type == "view_access_key_list":
            return {
                "keys": [
                    {
                        "public_key": str(public_key),
                        "access_key": {
                            "nonce": access_key.nonce,
                            "permission": unstructure(access_key.permission),
                        },
                    }
                    for public_key, access_key in account.keys.items()
                ],
                **self._block_info(block),
            }

        if request_type == "call_function":
            return self._view_call(account_id, account, params, block)

        raise _BadParams(f"Unknown request type: {request_type!r}")

    def _view_call(
        self,
        account_id: AccountId,
        account: _Account,
        params: Mapping[str, RPC_JSON],
        block: _Block,
    ) -> RPC_JSON:
        method_name = _param(params, "method_name")
        try:
            args = base64.b64decode(_param(params, "args_base64"), validate=True)
        except ValueError as exc:
            raise _BadParams(f"Invalid `args_base64`: {exc}") from exc

        context = CallContext(
            contract_id=account_id,
            predecessor_id=account_id,
            signer_id=account_id,
            args=args,
            deposit=NearToken(0),
            storage=deepcopy(account.storage),
            is_view=True,
        )
        try:
            value = self._call_method(account_id, account, method_name, context)
        except _ActionError as exc:
            return {
                "error": f"wasm execution failed with error: {_describe_call_error(exc.kind)}",
                "logs": context.logs,
                **self._block_info(block),
            }
        return {"result": list(value), "logs": context.logs, **self._block_info(block)}

    def _call_method(
        self, account_id: AccountId, account: _Account, method_name: str, context: CallContext
    ) -> bytes:
        if account.code_hash == _ZERO_HASH:
            raise _ActionError(
                {
                    "FunctionCallError": {
                        "CompilationError": {"CodeDoesNotExist": {"account_id": str(account_id)}}
                    }
                }
            )
        method = self._contract_code.get(account.code_hash, {}).get(method_name)
        if method is None:
            raise _ActionError({"FunctionCallError": {"MethodResolveError": "MethodNotFound"}})
        try:
            return _encode_return_value(method(context))
        except ContractPanic as exc:
            raise _ActionError(
                {"FunctionCallError": {"ExecutionError": f"Smart contract panicked: {exc}"}}
            ) from exc

    def _block(self, params: RPC_JSON) -> RPC_JSON:
        if not isinstance(params, Mapping):
            raise _BadParams("`block` parameters must be an object")
        block = self._find_block(params)
        return {
            "author": "node0",
            "header": {
                "height": block.height,
                "hash": str(block.hash),
                "prev_hash": str(block.prev_hash),
                "epoch_id": str(_ZERO_HASH),
                "timestamp": block.timestamp,
                "gas_price": str(int(GAS_PRICE)),
                "last_final_block": str(block.hash),
            },
        }

    def _status(self, _params: RPC_JSON) -> RPC_JSON:
        latest = self._latest_block
        block_time = datetime.fromtimestamp(latest.timestamp / 10**9, tz=UTC)
        return {
            "chain_id": self._chain_id,
            "protocol_version": 73,
            "latest_protocol_version": 73,
            "genesis_hash": str(self._ledger.blocks[0].hash),
            "sync_info": {
                "latest_block_hash": str(latest.hash),
                "latest_block_height": latest.height,
                "latest_block_time": block_time.isoformat(),
                "syncing": False,
            },
            "version": {"version": "local", "build": "ferry"},
        }

    def _gas_price(self, params: RPC_JSON) -> RPC_JSON:
        if not isinstance(params, Sequence) or isinstance(params, str) or len(params) > 1:
            raise _BadParams("`gas_price` parameters must be a list with at most one element")
        if params and params[0] is not None:
            self._find_block({"block_id": params[0]})
        return {"gas_price": str(int(GAS_PRICE))}

    def _wait_level(self, params: Mapping[str, RPC_JSON]) -> TxExecutionStatus:
        value = params.get("wait_until", TxExecutionStatus.EXECUTED_OPTIMISTIC.value)
        try:
            return TxExecutionStatus(value)
        except ValueError as exc:
            raise _BadParams(f"Unknown `wait_until` value: {value!r}") from exc

    def _send_tx(self, params: RPC_JSON) -> RPC_JSON:
        if not isinstance(params, Mapping):
            raise _BadParams("`send_tx` parameters must be an object")
        wait_until = self._wait_level(params)
        try:
            signed_tx = SignedTransaction.from_base64(_param(params, "signed_tx_base64"))
        except DecodingError as exc:
            raise _BadParams(f"Failed to decode the transaction: {exc}") from exc

        tx_hash = signed_tx.hash()
        known = self._ledger.transactions.get(tx_hash)
        if known is None:
            self._validate(signed_tx, tx_hash)
            outcome = self._execute(signed_tx, tx_hash)
            self._ledger.transactions[tx_hash] = (signed_tx.transaction.signer_id, outcome)
        else:
            _, outcome = known
        return _shape_outcome(outcome, wait_until)

    def _tx_status(self, params: RPC_JSON) -> RPC_JSON:
        if not isinstance(params, Mapping):
            raise _BadParams("`tx` parameters must be an object")
        wait_until = self._wait_level(params)
        tx_hash = _hash_param(params.get("tx_hash"), "tx_hash")
        sender_id = _account_id_param(params, "sender_account_id")
        known = self._ledger.transactions.get(tx_hash)
        if known is None or known[0] != sender_id:
            raise _handler_error(
                "UNKNOWN_TRANSACTION",
                {"requested_transaction_hash": str(tx_hash)},
                f"Transaction {tx_hash} doesn't exist",
            )
        return _shape_outcome(known[1], wait_until)

    def _validate(self, signed_tx: SignedTransaction, tx_hash: CryptoHash) -> None:
        tx = signed_tx.transaction
        signer = self._ledger.accounts.get(tx.signer_id)
        if signer is None:
            raise _invalid_tx({"SignerDoesNotExist": {"signer_id": str(tx.signer_id)}})

        access_key = signer.keys.get(tx.public_key)
        if access_key is None:
            raise _invalid_tx(
                {
                    "InvalidAccessKeyError": {
                        "AccessKeyNotFound": {
                            "account_id": str(tx.signer_id),
                            "public_key": str(tx.public_key),
                        }
                    }
                }
            )

        if not tx.public_key.verify(bytes(tx_hash), signed_tx.signature):
            raise _invalid_tx("InvalidSignature")

        if all(block.hash != tx.block_hash for block in self._ledger.blocks):
            raise _invalid_tx("Expired")

        if tx.nonce <= access_key.nonce:
            raise _invalid_tx(
                {"InvalidNonce": {"tx_nonce": tx.nonce, "ak_nonce": access_key.nonce}}
            )

        if isinstance(access_key.permission, FunctionCallPermission):
            _check_function_call_permission(access_key.permission, tx.receiver_id, tx.actions)

        cost = sum(_attached_deposit(action) for action in tx.actions)
        if cost > signer.amount:
            raise _invalid_tx(
                {
                    "NotEnoughBalance": {
                        "signer_id": str(tx.signer_id),
                        "balance": str(signer.amount),
                        "cost": str(cost),
                    }
                }
            )

    def _execute(self, signed_tx: SignedTransaction, tx_hash: CryptoHash) -> dict[str, RPC_JSON]:
        tx = signed_tx.transaction
        signer = self._ledger.accounts[tx.signer_id]
        signer.keys[tx.public_key] = AccessKey(signer.keys[tx.public_key].permission, tx.nonce)

        block = self._produce_block()
        receipt_id = CryptoHash.hash(b"receipt" + bytes(tx_hash))

        # The nonce update above persists even if the actions fail.
        accounts_before = deepcopy(self._ledger.accounts)
        global_contracts_before = dict(self._ledger.global_contracts)
        execution = _Execution(self, tx.signer_id, block)
        status: RPC_JSON
        try:
            value = execution.run(tx.signer_id, tx.receiver_id, tx.actions)
        except _IndexedActionError as exc:
            self._ledger.accounts = accounts_before
            self._ledger.global_contracts = global_contracts_before
            status = {"Failure": {"ActionError": {"index": exc.index, "kind": exc.kind}}}
            logger.debug("Local transaction %s failed: %s", tx_hash, status)
        else:
            status = {"SuccessValue": base64.b64encode(value).decode()}

        receipt_gas = _ACTION_GAS * len(tx.actions) + execution.extra_gas
        return {
            "status": status,
            "transaction": {
                "signer_id": str(tx.signer_id),
                "public_key": str(tx.public_key),
                "nonce": tx.nonce,
                "receiver_id": str(tx.receiver_id),
                "hash": str(tx_hash),
            },
            "transaction_outcome": {
                "id": str(tx_hash),
                "outcome": _outcome_json(
                    tx.signer_id,
                    _TX_CONVERSION_GAS,
                    [],
                    [receipt_id],
                    {"SuccessReceiptId": str(receipt_id)},
                ),
                "block_hash": str(block.hash),
            },
            "receipts_outcome": [
                {
                    "id": str(receipt_id),
                    "outcome": _outcome_json(
                        tx.receiver_id, receipt_gas, execution.logs, [], status
                    ),
                    "block_hash": str(block.hash),
                }
            ],
        }


class _IndexedActionError(Exception):
    def __init__(self, index: int, kind: RPC_JSON):
        super().__init__(index, kind)
        self.index = index
        self.kind = kind


class _Execution:
    """Applies the actions of one transaction to the ledger."""

    def __init__(self, provider: LocalProvider, signer_id: AccountId, block: _Block):
        self._provider = provider
        self._ledger = provider._ledger  # noqa: SLF001
        self._signer_id = signer_id
        self._block = block
        self.logs: list[str] = []
        self.extra_gas = Gas(0)

    def run(
        self, predecessor_id: AccountId, receiver_id: AccountId, actions: Sequence[Action]
    ) -> bytes:
        value = b""
        created = False
        for index, action in enumerate(actions):
            try:
                if isinstance(action, CreateAccount):
                    self._create_account(predecessor_id, receiver_id)
                    created = True
                    continue
                if isinstance(action, Transfer) and receiver_id not in self._ledger.accounts:
                    self._create_implicit_account(receiver_id)
                if receiver_id not in self._ledger.accounts:
                    raise _ActionError({"AccountDoesNotExist": {"account_id": str(receiver_id)}})
                if not isinstance(action, Transfer | FunctionCall | Delegate) and not (
                    created or predecessor_id == receiver_id
                ):
                    raise _ActionError(
                        {
                            "ActorNoPermission": {
                                "account_id": str(receiver_id),
                                "actor_id": str(predecessor_id),
                            }
                        }
                    )
                result = self._apply(predecessor_id, receiver_id, action)
            except _ActionError as exc:
                raise _IndexedActionError(index, exc.kind) from exc
            if isinstance(action, FunctionCall | Delegate):
                value = result
        return value

    def _apply(  # noqa: C901, PLR0911, PLR0912
        self, predecessor_id: AccountId, receiver_id: AccountId, action: Action
    ) -> bytes:
        receiver = self._ledger.accounts[receiver_id]

        if isinstance(action, Transfer):
            self._move(predecessor_id, receiver_id, int(action.deposit))
            return b""

        if isinstance(action, FunctionCall):
            self._move(predecessor_id, receiver_id, int(action.deposit))
            self.extra_gas += min(_FUNCTION_CALL_GAS, action.gas)
            context = CallContext(
                contract_id=receiver_id,
                predecessor_id=predecessor_id,
                signer_id=self._signer_id,
                args=action.args,
                deposit=action.deposit,
                storage=receiver.storage,
                is_view=False,
                logs=self.logs,
            )
            return self._provider._call_method(  # noqa: SLF001
                receiver_id, receiver, action.method_name, context
            )

        if isinstance(action, DeployContract):
            receiver.code_hash = CryptoHash.hash(action.code)
            return b""

        if isinstance(action, AddKey):
            if action.public_key in receiver.keys:
                raise _ActionError(
                    {
                        "AddKeyAlreadyExists": {
                            "account_id": str(receiver_id),
                            "public_key": str(action.public_key),
                        }
                    }
                )
            # Same as the real ledger, new keys start with a nonce derived from the block height
            nonce = (self._block.height - 1) * 1_000_000
            receiver.keys[action.public_key] = AccessKey(action.access_key.permission, nonce)
            return b""

        if isinstance(action, DeleteKey):
            if action.public_key not in receiver.keys:
                raise _ActionError(
                    {
                        "DeleteKeyDoesNotExist": {
                            "account_id": str(receiver_id),
                            "public_key": str(action.public_key),
                        }
                    }
                )
            del receiver.keys[action.public_key]
            return b""

        if isinstance(action, Stake):
            stake = int(action.stake)
            total = receiver.amount + receiver.locked
            if stake > total:
                raise _ActionError(
                    {
                        "TriesToStake": {
                            "account_id": str(receiver_id),
                            "stake": str(stake),
                            "locked": str(receiver.locked),
                            "balance": str(receiver.amount),
                        }
                    }
                )
            receiver.amount = total - stake
            receiver.locked = stake
            return b""

        if isinstance(action, DeleteAccount):
            if receiver.locked:
                raise _ActionError({"DeleteAccountStaking": {"account_id": str(receiver_id)}})
            beneficiary = self._ledger.accounts.get(action.beneficiary_id)
            if beneficiary is not None and action.beneficiary_id != receiver_id:
                beneficiary.amount += receiver.amount
            del self._ledger.accounts[receiver_id]
            return b""

        if isinstance(action, Delegate):
            return self._delegate(receiver_id, action)

        if isinstance(action, DeployGlobalContract):
            code_hash = CryptoHash.hash(action.code)
            if action.deploy_mode == GlobalContractDeployMode.CODE_HASH:
                self._ledger.global_contracts[f"hash:{code_hash}"] = code_hash
            else:
                self._ledger.global_contracts[f"account:{receiver_id}"] = code_hash
            return b""

        if isinstance(action, UseGlobalContract):
            identifier = action.contract_identifier
            if isinstance(identifier, CryptoHash):
                key, reported = f"hash:{identifier}", {"CodeHash": str(identifier)}
            else:
                key, reported = f"account:{identifier}", {"AccountId": str(identifier)}
            code_hash = self._ledger.global_contracts.get(key)
            if code_hash is None:
                raise _ActionError({"GlobalContractDoesNotExist": {"identifier": reported}})
            receiver.code_hash = code_hash
            return b""

        raise _ActionError(f"Unsupported action: {type(action).__name__}")

    def _move(self, from_id: AccountId, to_id: AccountId, amount: int) -> None:
        source = self._ledger.accounts.get(from_id)
        if source is None or source.amount < amount:
            raise _ActionError(
                {"LackBalanceForState": {"account_id": str(from_id), "amount": str(amount)}}
            )
        source.amount -= amount
        self._ledger.accounts[to_id].amount += amount

    def _create_account(self, predecessor_id: AccountId, account_id: AccountId) -> None:
        if account_id in self._ledger.accounts:
            raise _ActionError({"AccountAlreadyExists": {"account_id": str(account_id)}})
        if not (account_id.is_sub_account_of(predecessor_id) or account_id.is_implicit):
            raise _ActionError(
                {
                    "CreateAccountNotAllowed": {
                        "account_id": str(account_id),
                        "predecessor_id": str(predecessor_id),
                    }
                }
            )
        self._ledger.accounts[account_id] = _Account(amount=0)

    def _create_implicit_account(self, account_id: AccountId) -> None:
        # A transfer to an implicit account creates it, with the corresponding full access key.
        if not account_id.is_implicit:
            return
        account = _Account(amount=0)
        public_key = PublicKey(KeyType.ED25519, bytes.fromhex(str(account_id)))
        account.keys[public_key] = AccessKey(FullAccessPermission())
        self._ledger.accounts[account_id] = account

    def _delegate(self, receiver_id: AccountId, action: Delegate) -> bytes:
        signed = action.signed_delegate_action
        delegate_action = signed.delegate_action
        if delegate_action.sender_id != receiver_id:
            raise _ActionError(
                {
                    "DelegateActionSenderDoesNotMatchTxReceiver": {
                        "sender_id": str(delegate_action.sender_id),
                        "receiver_id": str(receiver_id),
                    }
                }
            )
        if not signed.verify():
            raise _ActionError("DelegateActionInvalidSignature")
        if delegate_action.max_block_height < self._block.height:
            raise _ActionError("DelegateActionExpired")

        sender = self._ledger.accounts[receiver_id]
        access_key = sender.keys.get(delegate_action.public_key)
        if access_key is None:
            raise _ActionError(
                {
                    "DelegateActionAccessKeyError": {
                        "AccessKeyNotFound": {
                            "account_id": str(receiver_id),
                            "public_key": str(delegate_action.public_key),
                        }
                    }
                }
            )
        if delegate_action.nonce <= access_key.nonce:
            raise _ActionError(
                {
                    "DelegateActionInvalidNonce": {
                        "delegate_nonce": delegate_action.nonce,
                        "ak_nonce": access_key.nonce,
                    }
                }
            )
        sender.keys[delegate_action.public_key] = AccessKey(
            access_key.permission, delegate_action.nonce
        )

        # Executed in place, a failure of any inner action fails the `Delegate` action.
        try:
            return self.run(receiver_id, delegate_action.receiver_id, delegate_action.actions)
        except _IndexedActionError as exc:
            raise _ActionError(exc.kind) from exc


def _attached_deposit(action: Action) -> int:
    if isinstance(action, Transfer | FunctionCall):
        return int(action.deposit)
    return 0


def _check_function_call_permission(
    permission: FunctionCallPermission, receiver_id: AccountId, actions: Sequence[Action]
) -> None:
    def access_key_error(details: RPC_JSON) -> ProviderError:
        return _invalid_tx({"InvalidAccessKeyError": details})

    if len(actions) != 1 or not isinstance(actions[0], FunctionCall):
        raise access_key_error("RequiresFullAccess")
    action = actions[0]
    if receiver_id != permission.receiver_id:
        raise access_key_error(
            {
                "ReceiverMismatch": {
                    "tx_receiver": str(receiver_id),
                    "ak_receiver": str(permission.receiver_id),
                }
            }
        )
    if permission.method_names and action.method_name not in permission.method_names:
        raise access_key_error({"MethodNameMismatch": {"method_name": action.method_name}})
    if int(action.deposit) != 0:
        raise access_key_error("DepositWithFunctionCall")


def _outcome_json(
    executor_id: AccountId,
    gas_burnt: Gas,
    logs: list[str],
    receipt_ids: list[CryptoHash],
    status: RPC_JSON,
) -> dict[str, RPC_JSON]:
    return {
        "executor_id": str(executor_id),
        "gas_burnt": int(gas_burnt),
        "tokens_burnt": str(int(GAS_PRICE) * int(gas_burnt)),
        "logs": list(logs),
        "receipt_ids": [str(receipt_id) for receipt_id in receipt_ids],
        "status": status,
    }


def _shape_outcome(outcome: dict[str, RPC_JSON], wait_until: TxExecutionStatus) -> RPC_JSON:
    # Below the execution levels the node only reports how far the transaction got.
    if not wait_until.is_executed:
        return {"final_execution_status": wait_until.value}
    return {"final_execution_status": wait_until.value, **outcome}


def _describe_call_error(kind: RPC_JSON) -> str:
    # View call failures are reported as text; the error variant names are kept in it.
    error = kind.get("FunctionCallError", kind) if isinstance(kind, Mapping) else kind
    return f"FunctionCallError({json.dumps(error)})"


class LocalProviderSession(ProviderSession):
    def __init__(self, provider: LocalProvider):
        self._provider = provider

    async def rpc(self, method: str, params: RPC_JSON) -> RPC_JSON:
        return self._provider.rpc(method, params)
