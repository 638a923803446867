import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from ._actions import (
    AccessKey,
    Action,
    AddKey,
    CreateAccount,
    Delegate,
    DelegateAction,
    DeleteAccount,
    DeleteKey,
    DeployContract,
    DeployGlobalContract,
    FullAccessPermission,
    FunctionCall,
    FunctionCallPermission,
    GlobalContractDeployMode,
    SignedDelegateAction,
    Stake,
    Transfer,
    UseGlobalContract,
)
from ._client_rpc import ClientSessionRPC
from ._codec import EncodingError
from ._config import RetryConfig
from ._entities import (
    DEFAULT_GAS,
    AccountId,
    BlockReference,
    CryptoHash,
    Finality,
    Gas,
    NearToken,
    TxExecutionStatus,
)
from ._errors import AccessKeyNotFound, AccountNotFound, ConfigurationError, TransactionFailed
from ._keys import PublicKey
from ._message import (
    DEFAULT_MAX_MESSAGE_AGE,
    MessageParams,
    SignedMessage,
    verify_message_signature,
)
from ._pipeline import MAX_NONCE_RECOVERIES, TransactionPipeline
from ._provider import Provider, ProviderSession
from ._rpc_types import AccessKeyView, AccountView, BlockInfo, FinalExecutionOutcome, NodeStatus
from ._signer import Signer

DELEGATE_ACTION_TTL = 120
"""The default number of blocks a signed delegate action stays valid for."""


def _to_account_id(value: AccountId | str) -> AccountId:
    return AccountId(value) if isinstance(value, str) else value


def encode_args(args: Any) -> bytes:
    """
    Encodes function call arguments:
    ``None`` becomes empty arguments, ``bytes`` are passed as is,
    anything else is serialized as compact JSON.
    """
    if args is None:
        return b""
    if isinstance(args, bytes):
        return args
    return json.dumps(args, separators=(",", ":")).encode()


class Client:
    """An async NEAR RPC client."""

    def __init__(
        self,
        provider: Provider,
        *,
        signer: None | Signer = None,
        wait_until: TxExecutionStatus = TxExecutionStatus.EXECUTED_OPTIMISTIC,
        retry: None | RetryConfig = None,
        max_nonce_recoveries: int = MAX_NONCE_RECOVERIES,
    ):
        self._provider = provider
        self._signer = signer
        self._wait_until = wait_until
        self._retry = retry or RetryConfig()
        self._max_nonce_recoveries = max_nonce_recoveries

    @asynccontextmanager
    async def session(self) -> AsyncIterator["ClientSession"]:
        """Opens a session to the client allowing the backend to optimize sequential requests."""
        async with self._provider.session() as provider_session:
            yield ClientSession(
                provider_session,
                signer=self._signer,
                wait_until=self._wait_until,
                retry=self._retry,
                max_nonce_recoveries=self._max_nonce_recoveries,
            )


class TransactionBuilder:
    """
    Accumulates actions for one transaction to ``receiver_id``.
    The action methods return the builder itself, so the calls can be chained.
    """

    def __init__(
        self,
        session: "ClientSession",
        receiver_id: AccountId,
        signer: None | Signer,
    ):
        self._session = session
        self._receiver_id = receiver_id
        self._signer = signer
        self._actions: list[Action] = []
        self._wait_until: None | TxExecutionStatus = None

    @property
    def receiver_id(self) -> AccountId:
        return self._receiver_id

    @property
    def actions(self) -> tuple[Action, ...]:
        return tuple(self._actions)

    def add_action(self, action: Action) -> "TransactionBuilder":
        self._actions.append(action)
        return self

    def create_account(self) -> "TransactionBuilder":
        return self.add_action(CreateAccount())

    def transfer(self, amount: NearToken) -> "TransactionBuilder":
        return self.add_action(Transfer(amount))

    def deploy(self, code: bytes) -> "TransactionBuilder":
        return self.add_action(DeployContract(code))

    def call(
        self,
        method_name: str,
        args: Any = None,
        gas: Gas = DEFAULT_GAS,
        deposit: None | NearToken = None,
    ) -> "TransactionBuilder":
        """Adds a function call. See :py:func:`encode_args` for the accepted ``args``."""
        return self.add_action(
            FunctionCall(method_name, encode_args(args), gas, deposit or NearToken(0))
        )

    def add_full_access_key(self, public_key: PublicKey) -> "TransactionBuilder":
        return self.add_action(AddKey(public_key, AccessKey(FullAccessPermission())))

    def add_function_call_key(
        self,
        public_key: PublicKey,
        receiver_id: AccountId | str,
        method_names: Sequence[str] = (),
        allowance: None | NearToken = None,
    ) -> "TransactionBuilder":
        permission = FunctionCallPermission(
            _to_account_id(receiver_id), tuple(method_names), allowance
        )
        return self.add_action(AddKey(public_key, AccessKey(permission)))

    def delete_key(self, public_key: PublicKey) -> "TransactionBuilder":
        return self.add_action(DeleteKey(public_key))

    def delete_account(self, beneficiary_id: AccountId | str) -> "TransactionBuilder":
        return self.add_action(DeleteAccount(_to_account_id(beneficiary_id)))

    def stake(self, amount: NearToken, public_key: PublicKey) -> "TransactionBuilder":
        return self.add_action(Stake(amount, public_key))

    def publish_contract(self, code: bytes, *, by_account: bool = False) -> "TransactionBuilder":
        """
        Publishes ``code`` as a global contract, referred to by its hash,
        or (if ``by_account`` is ``True``) by the receiver account.
        """
        mode = (
            GlobalContractDeployMode.ACCOUNT_ID
            if by_account
            else GlobalContractDeployMode.CODE_HASH
        )
        return self.add_action(DeployGlobalContract(code, mode))

    def deploy_from_hash(self, code_hash: CryptoHash) -> "TransactionBuilder":
        return self.add_action(UseGlobalContract(code_hash))

    def deploy_from_account(self, account_id: AccountId | str) -> "TransactionBuilder":
        return self.add_action(UseGlobalContract(_to_account_id(account_id)))

    def signed_delegate_action(self, action: SignedDelegateAction) -> "TransactionBuilder":
        """Adds a delegate action signed by someone else, to be relayed by this transaction."""
        return self.add_action(Delegate(action))

    def wait_until(self, level: TxExecutionStatus) -> "TransactionBuilder":
        """Overrides the client's default wait level for this transaction."""
        self._wait_until = level
        return self

    async def send(self) -> FinalExecutionOutcome:
        """Signs and submits the transaction. See :py:meth:`ClientSession.send_transaction`."""
        return await self._session.send_transaction(
            self._receiver_id, self._actions, signer=self._signer, wait_until=self._wait_until
        )

    async def delegate(
        self, max_block_height_delta: int = DELEGATE_ACTION_TTL
    ) -> SignedDelegateAction:
        """
        Instead of submitting, signs the actions as a delegate action
        to be relayed by another account. See :py:meth:`ClientSession.delegate`.
        """
        return await self._session.delegate(
            self._receiver_id,
            self._actions,
            signer=self._signer,
            max_block_height_delta=max_block_height_delta,
        )


class ClientSession:
    """
    An open session to the provider.

    The methods of this class may raise the following exceptions:
    :py:class:`PipelineError` (for transaction submissions),
    :py:class:`TransactionFailed`,
    :py:class:`RpcProtocolError` subclasses,
    :py:class:`ProviderError`,
    :py:class:`TimeoutExceeded`,
    :py:class:`BadResponseFormat`,
    :py:class:`ConfigurationError`.
    """

    def __init__(
        self,
        provider_session: ProviderSession,
        *,
        signer: None | Signer = None,
        wait_until: TxExecutionStatus = TxExecutionStatus.EXECUTED_OPTIMISTIC,
        retry: None | RetryConfig = None,
        max_nonce_recoveries: int = MAX_NONCE_RECOVERIES,
    ):
        self._provider_session = provider_session
        self._signer = signer
        self._wait_until = wait_until
        self._max_nonce_recoveries = max_nonce_recoveries
        self._rpc = ClientSessionRPC(provider_session, retry)

    @property
    def rpc(self) -> ClientSessionRPC:
        return self._rpc

    def _get_signer(self, signer: None | Signer) -> Signer:
        signer = signer or self._signer
        if signer is None:
            raise ConfigurationError(
                "No signer was given, and the client does not have a default one"
            )
        return signer

    def transaction(
        self, receiver_id: AccountId | str, signer: None | Signer = None
    ) -> TransactionBuilder:
        """Starts building a transaction to ``receiver_id``."""
        return TransactionBuilder(self, _to_account_id(receiver_id), signer)

    def pipeline(
        self,
        receiver_id: AccountId | str,
        actions: Sequence[Action],
        *,
        signer: None | Signer = None,
        wait_until: None | TxExecutionStatus = None,
        priority_fee: None | int = None,
    ) -> TransactionPipeline:
        """Creates a pipeline for one submission without running it."""
        return TransactionPipeline(
            self._rpc,
            self._get_signer(signer),
            _to_account_id(receiver_id),
            actions,
            wait_until=wait_until or self._wait_until,
            max_nonce_recoveries=self._max_nonce_recoveries,
            priority_fee=priority_fee,
        )

    async def send_transaction(
        self,
        receiver_id: AccountId | str,
        actions: Sequence[Action],
        *,
        signer: None | Signer = None,
        wait_until: None | TxExecutionStatus = None,
        priority_fee: None | int = None,
    ) -> FinalExecutionOutcome:
        """
        Signs and submits a transaction, waiting until it reaches the ``wait_until`` level
        (the client's default if not given).

        Raises :py:class:`PipelineError` if the transaction could not be submitted,
        and :py:class:`TransactionFailed` if it was executed, but failed.
        """
        pipeline = self.pipeline(
            receiver_id, actions, signer=signer, wait_until=wait_until, priority_fee=priority_fee
        )
        outcome = await pipeline.run()
        if outcome.is_failure:
            raise TransactionFailed(outcome)
        return outcome

    async def transfer(
        self,
        receiver_id: AccountId | str,
        amount: NearToken,
        *,
        signer: None | Signer = None,
        wait_until: None | TxExecutionStatus = None,
    ) -> FinalExecutionOutcome:
        """Transfers ``amount`` from the signer account to ``receiver_id``."""
        return await self.send_transaction(
            receiver_id, [Transfer(amount)], signer=signer, wait_until=wait_until
        )

    async def call(  # noqa: PLR0913
        self,
        contract_id: AccountId | str,
        method_name: str,
        args: Any = None,
        *,
        gas: Gas = DEFAULT_GAS,
        deposit: None | NearToken = None,
        signer: None | Signer = None,
        wait_until: None | TxExecutionStatus = None,
    ) -> FinalExecutionOutcome:
        """
        Calls a contract method in a transaction.
        The returned value (if any) is available via
        :py:meth:`FinalExecutionOutcome.success_json` or
        :py:attr:`FinalExecutionOutcome.success_value`.
        """
        action = FunctionCall(method_name, encode_args(args), gas, deposit or NearToken(0))
        return await self.send_transaction(
            contract_id, [action], signer=signer, wait_until=wait_until
        )

    async def view(
        self,
        contract_id: AccountId | str,
        method_name: str,
        args: Any = None,
        block: BlockReference = Finality.OPTIMISTIC,
    ) -> Any:
        """
        Calls a read-only contract method and returns the result decoded from JSON
        (``None`` if the method returned nothing).
        """
        result = await self._rpc.call_function(
            _to_account_id(contract_id), method_name, encode_args(args), block
        )
        return result.json() if result.value else None

    async def delegate(
        self,
        receiver_id: AccountId | str,
        actions: Sequence[Action],
        *,
        signer: None | Signer = None,
        max_block_height_delta: int = DELEGATE_ACTION_TTL,
    ) -> SignedDelegateAction:
        """
        Signs ``actions`` as a delegate action to be submitted by a relayer.
        The action will be valid for ``max_block_height_delta`` blocks
        after the latest final one.
        """
        if not actions:
            raise EncodingError("A delegate action must contain at least one action")
        signer = self._get_signer(signer)
        key = signer.claim_key()
        access_key = await self._rpc.view_access_key(
            signer.account_id, key.public_key, Finality.OPTIMISTIC
        )
        block = await self._rpc.block(Finality.FINAL)
        delegate_action = DelegateAction(
            sender_id=signer.account_id,
            receiver_id=_to_account_id(receiver_id),
            actions=tuple(actions),
            nonce=access_key.nonce + 1,
            max_block_height=block.header.height + max_block_height_delta,
            public_key=key.public_key,
        )
        signature = await key.sign(bytes(delegate_action.signing_hash()))
        return SignedDelegateAction(delegate_action, signature)

    async def access_key(
        self,
        account_id: AccountId | str,
        public_key: PublicKey,
        block: BlockReference = Finality.OPTIMISTIC,
    ) -> AccessKeyView:
        return await self._rpc.view_access_key(_to_account_id(account_id), public_key, block)

    async def verify_message(
        self,
        signed: SignedMessage,
        params: MessageParams,
        max_age: None | timedelta = DEFAULT_MAX_MESSAGE_AGE,
        *,
        require_full_access: bool = True,
    ) -> bool:
        """
        Checks the signature of an off-chain message, and that the signing key
        is currently an access key of the claimed account
        (a full access one, unless ``require_full_access`` is ``False``).
        """
        if not verify_message_signature(signed, params, max_age):
            return False
        try:
            access_key = await self.access_key(signed.account_id, signed.public_key)
        except (AccountNotFound, AccessKeyNotFound):
            return False
        return not require_full_access or isinstance(access_key.permission, FullAccessPermission)

    async def account(
        self, account_id: AccountId | str, block: BlockReference = Finality.FINAL
    ) -> AccountView:
        return await self._rpc.view_account(_to_account_id(account_id), block)

    async def balance(
        self, account_id: AccountId | str, block: BlockReference = Finality.FINAL
    ) -> NearToken:
        """Returns the liquid balance of the account."""
        return (await self.account(account_id, block)).amount

    async def block(self, block: BlockReference = Finality.FINAL) -> BlockInfo:
        return await self._rpc.block(block)

    async def status(self) -> NodeStatus:
        return await self._rpc.status()

    async def wait_for_transaction(
        self,
        tx_hash: CryptoHash,
        sender_id: AccountId | str,
        wait_until: TxExecutionStatus = TxExecutionStatus.FINAL,
    ) -> FinalExecutionOutcome:
        """
        Waits until a previously submitted transaction reaches the ``wait_until`` level.
        The wait happens on the node side; cancelling it does not affect the transaction.
        """
        return await self._rpc.tx_status(tx_hash, _to_account_id(sender_id), wait_until)
