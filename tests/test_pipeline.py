from typing import Any

import pytest
import trio
from trio.testing import MockClock

from ferry import (
    AccessKey,
    AccountId,
    AccountNotFound,
    AddKey,
    CallContext,
    ClientSession,
    ContractPanic,
    EncodingError,
    FullAccessPermission,
    FunctionCall,
    InMemorySigner,
    InvalidNonce,
    LocalProvider,
    NearToken,
    NoResponse,
    PipelineError,
    PipelineStage,
    ProviderError,
    PublicKey,
    RemoteSigner,
    RotatingSigner,
    SecretKey,
    Signature,
    SigningError,
    TimeoutExceeded,
    TransactionFailed,
    Transfer,
    TxExecutionStatus,
    Unreachable,
)
from ferry._provider import RPC_JSON

RESOLVING = PipelineStage.RESOLVING
BUILDING = PipelineStage.BUILDING
HASHING = PipelineStage.HASHING
SIGNING = PipelineStage.SIGNING
SUBMITTING = PipelineStage.SUBMITTING
RECOVERING = PipelineStage.RECOVERING
WAITING = PipelineStage.WAITING
SUCCESS = PipelineStage.SUCCESS
FAILURE = PipelineStage.FAILURE


@pytest.fixture
def alice(local_provider: LocalProvider) -> InMemorySigner:
    signer = InMemorySigner.random("alice.test.near")
    local_provider.create_account(
        signer.account_id, NearToken.near(100), signer.public_key, nonce=10
    )
    return signer


async def test_success(session: ClientSession, local_provider: LocalProvider) -> None:
    local_provider.create_account("bob", NearToken(0))
    root = local_provider.root
    local_provider.add_access_key(root.account_id, root.public_key, nonce=6)

    pipeline = session.pipeline("bob", [Transfer(NearToken.yocto(1))])
    assert pipeline.stage is None

    outcome = await pipeline.run()
    assert outcome.is_success
    assert outcome.receipt_ids
    assert outcome.transaction_hash == pipeline.transaction_hash

    assert pipeline.history == [
        RESOLVING,
        BUILDING,
        HASHING,
        SIGNING,
        SUBMITTING,
        WAITING,
        SUCCESS,
    ]
    assert pipeline.stage == SUCCESS
    assert len(pipeline.attempts) == 1
    assert pipeline.attempts[0].transaction.nonce == 7
    assert pipeline.attempts[0].hash() == pipeline.transaction_hash
    assert local_provider.balance("bob") == NearToken.yocto(1)

    with pytest.raises(RuntimeError, match="A pipeline can only be run once"):
        await pipeline.run()


async def test_nonce_recovery(
    session: ClientSession,
    local_provider: LocalProvider,
    alice: InMemorySigner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_rpc = local_provider.rpc
    raced = False

    def racing_rpc(method: str, params: RPC_JSON) -> RPC_JSON:
        nonlocal raced
        if method == "send_tx" and not raced:
            # Another client sneaks in four transactions with the same key
            raced = True
            local_provider.add_access_key(alice.account_id, alice.public_key, nonce=14)
        return original_rpc(method, params)

    monkeypatch.setattr(local_provider, "rpc", racing_rpc)

    pipeline = session.pipeline("test.near", [Transfer(NearToken(1))], signer=alice)
    outcome = await pipeline.run()
    assert outcome.is_success

    assert pipeline.history == [
        RESOLVING,
        BUILDING,
        HASHING,
        SIGNING,
        SUBMITTING,
        RECOVERING,
        BUILDING,
        HASHING,
        SIGNING,
        SUBMITTING,
        WAITING,
        SUCCESS,
    ]
    first, second = pipeline.attempts
    assert first.transaction.nonce == 11
    assert second.transaction.nonce == 15
    assert first.encode() != second.encode()
    assert pipeline.transaction_hash == second.hash()

    access_key = local_provider.access_key(alice.account_id, alice.public_key)
    assert access_key is not None
    assert access_key.nonce == 15


async def test_nonce_recovery_exhausted(
    session: ClientSession,
    local_provider: LocalProvider,
    alice: InMemorySigner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_rpc = local_provider.rpc

    def racing_rpc(method: str, params: RPC_JSON) -> RPC_JSON:
        if method == "send_tx":
            # Someone always gets there first
            access_key = local_provider.access_key(alice.account_id, alice.public_key)
            assert access_key is not None
            local_provider.add_access_key(
                alice.account_id, alice.public_key, nonce=access_key.nonce + 10
            )
        return original_rpc(method, params)

    monkeypatch.setattr(local_provider, "rpc", racing_rpc)

    pipeline = session.pipeline("test.near", [Transfer(NearToken(1))], signer=alice)
    with pytest.raises(PipelineError) as excinfo:
        await pipeline.run()

    assert excinfo.value.stage == SUBMITTING
    assert isinstance(excinfo.value.error, InvalidNonce)
    assert str(excinfo.value).startswith("Transaction pipeline failed while submitting: ")
    assert len(pipeline.attempts) == 4
    assert pipeline.history.count(RECOVERING) == 3


async def test_resubmission_if_not_received(
    session: ClientSession, local_provider: LocalProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    original_rpc = local_provider.rpc
    submissions = 0

    def dropping_rpc(method: str, params: RPC_JSON) -> RPC_JSON:
        nonlocal submissions
        if method == "send_tx":
            submissions += 1
            if submissions == 1:
                # Lost on the way to the node
                raise ProviderError(NoResponse("connection reset"))
        return original_rpc(method, params)

    monkeypatch.setattr(local_provider, "rpc", dropping_rpc)
    local_provider.create_account("bob", NearToken(0))

    pipeline = session.pipeline("bob", [Transfer(NearToken(5))])
    outcome = await pipeline.run()
    assert outcome.is_success

    assert pipeline.history == [
        RESOLVING,
        BUILDING,
        HASHING,
        SIGNING,
        SUBMITTING,
        WAITING,
        SUBMITTING,
        WAITING,
        SUCCESS,
    ]
    # The same signed transaction was sent again
    assert len(pipeline.attempts) == 1
    assert submissions == 2
    assert local_provider.balance("bob") == NearToken(5)


async def test_executed_but_response_lost(
    session: ClientSession, local_provider: LocalProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    original_rpc = local_provider.rpc

    def dropping_rpc(method: str, params: RPC_JSON) -> RPC_JSON:
        result = original_rpc(method, params)
        if method == "send_tx":
            raise ProviderError(NoResponse("connection reset"))
        return result

    monkeypatch.setattr(local_provider, "rpc", dropping_rpc)
    local_provider.create_account("bob", NearToken(0))

    pipeline = session.pipeline("bob", [Transfer(NearToken(5))])
    outcome = await pipeline.run()
    assert outcome.is_success
    assert outcome.transaction_hash == pipeline.transaction_hash
    assert pipeline.history == [
        RESOLVING,
        BUILDING,
        HASHING,
        SIGNING,
        SUBMITTING,
        WAITING,
        SUCCESS,
    ]
    # Executed exactly once
    assert local_provider.balance("bob") == NearToken(5)


async def test_resubmission_exhausted(
    session: ClientSession, local_provider: LocalProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    original_rpc = local_provider.rpc

    def dropping_rpc(method: str, params: RPC_JSON) -> RPC_JSON:
        if method == "send_tx":
            raise ProviderError(NoResponse("connection reset"))
        return original_rpc(method, params)

    monkeypatch.setattr(local_provider, "rpc", dropping_rpc)

    pipeline = session.pipeline("test.near", [Transfer(NearToken(5))])
    with pytest.raises(PipelineError) as excinfo:
        await pipeline.run()
    assert excinfo.value.stage == WAITING
    assert isinstance(excinfo.value.error, ProviderError)
    assert isinstance(excinfo.value.error.error, NoResponse)
    # The first submission and three more
    assert pipeline.history.count(SUBMITTING) == 4


async def test_unreachable_node_is_not_ambiguous(
    autojump_clock: MockClock,  # noqa: ARG001
    session: ClientSession,
    local_provider: LocalProvider,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_rpc = local_provider.rpc
    submissions = 0

    def unreachable_rpc(method: str, params: RPC_JSON) -> RPC_JSON:
        nonlocal submissions
        if method == "send_tx":
            submissions += 1
            raise ProviderError(Unreachable("connection refused"))
        return original_rpc(method, params)

    monkeypatch.setattr(local_provider, "rpc", unreachable_rpc)

    pipeline = session.pipeline("test.near", [Transfer(NearToken(5))])
    with pytest.raises(PipelineError) as excinfo:
        await pipeline.run()

    # Retried by the transport, but never reached the node, so no status checks
    assert excinfo.value.stage == SUBMITTING
    assert isinstance(excinfo.value.error, TimeoutExceeded)
    assert excinfo.value.error.attempts == 4
    assert submissions == 4
    assert WAITING not in pipeline.history


def get_value(context: CallContext) -> Any:
    return context.storage.get("value")


def fail(context: CallContext) -> None:
    context.storage["value"] = "corrupted"
    raise ContractPanic("failed on purpose")


async def test_atomicity(session: ClientSession, local_provider: LocalProvider) -> None:
    root = local_provider.root
    local_provider.deploy_contract(root.account_id, {"get": get_value, "fail": fail})
    local_provider.contract_storage(root.account_id)["value"] = 1
    balance_before = local_provider.balance(root.account_id)
    new_key = SecretKey.generate().public_key()

    actions = [
        Transfer(NearToken.near(1)),
        FunctionCall("fail"),
        AddKey(new_key, AccessKey(FullAccessPermission())),
    ]
    with pytest.raises(TransactionFailed) as excinfo:
        await session.send_transaction(root.account_id, actions)

    assert excinfo.value.action_index == 1
    assert "failed on purpose" in str(excinfo.value)
    assert excinfo.value.outcome.transaction_hash is not None

    assert local_provider.access_key(root.account_id, new_key) is None
    assert local_provider.contract_storage(root.account_id) == {"value": 1}
    assert local_provider.balance(root.account_id) == balance_before
    assert await session.view(root.account_id, "get") == 1


async def test_failure_stage(session: ClientSession, local_provider: LocalProvider) -> None:
    pipeline = session.pipeline("nobody", [Transfer(NearToken(1))])
    outcome = await pipeline.run()
    assert outcome.is_failure
    assert pipeline.stage == FAILURE
    assert outcome.failed_action_index == 0
    assert local_provider.balance(local_provider.root.account_id) == NearToken.near(1000)


async def test_wait_levels(session: ClientSession, local_provider: LocalProvider) -> None:
    local_provider.create_account("bob", NearToken(0))

    pipeline = session.pipeline(
        "bob", [Transfer(NearToken(1))], wait_until=TxExecutionStatus.NONE
    )
    outcome = await pipeline.run()
    # Accepted, but the outcome is not known at this level
    assert outcome.final_execution_status == TxExecutionStatus.NONE
    assert outcome.is_pending
    assert pipeline.stage == SUCCESS

    pipeline = session.pipeline(
        "bob", [Transfer(NearToken(1))], wait_until=TxExecutionStatus.FINAL
    )
    outcome = await pipeline.run()
    assert outcome.final_execution_status == TxExecutionStatus.FINAL
    assert outcome.is_success
    assert local_provider.balance("bob") == NearToken(2)


async def test_rotating_signer(session: ClientSession, local_provider: LocalProvider) -> None:
    secret_keys = [SecretKey.generate() for _ in range(3)]
    signer = RotatingSigner("rotating.test.near", secret_keys)
    local_provider.create_account(signer.account_id, NearToken.near(10))
    for public_key in signer.public_keys:
        local_provider.add_access_key(signer.account_id, public_key)
    local_provider.create_account("bob", NearToken(0))

    pipelines = [
        session.pipeline("bob", [Transfer(NearToken(1))], signer=signer) for _ in range(3)
    ]
    async with trio.open_nursery() as nursery:
        for pipeline in pipelines:
            nursery.start_soon(pipeline.run)

    used = [
        (pipeline.attempts[0].transaction.public_key, pipeline.attempts[0].transaction.nonce)
        for pipeline in pipelines
    ]
    assert {public_key for public_key, _ in used} == set(signer.public_keys)
    assert len(set(used)) == 3
    # No collisions, so no rebuilding
    assert all(RECOVERING not in pipeline.history for pipeline in pipelines)
    assert local_provider.balance("bob") == NearToken(3)


async def test_unknown_signer(session: ClientSession) -> None:
    signer = InMemorySigner.random("ghost.test.near")
    pipeline = session.pipeline("test.near", [Transfer(NearToken(1))], signer=signer)
    with pytest.raises(PipelineError) as excinfo:
        await pipeline.run()
    assert excinfo.value.stage == RESOLVING
    assert isinstance(excinfo.value.error, AccountNotFound)
    assert excinfo.value.error.account_id == AccountId("ghost.test.near")


async def test_signing_failure(session: ClientSession, local_provider: LocalProvider) -> None:
    public_key = SecretKey.generate().public_key()
    local_provider.add_access_key(local_provider.root.account_id, public_key)

    async def sign_func(_public_key: PublicKey, _message: bytes) -> Signature:
        raise RuntimeError("device locked")

    signer = RemoteSigner(local_provider.root.account_id, public_key, sign_func)
    pipeline = session.pipeline("test.near", [Transfer(NearToken(1))], signer=signer)
    with pytest.raises(PipelineError) as excinfo:
        await pipeline.run()
    assert excinfo.value.stage == SIGNING
    assert isinstance(excinfo.value.error, SigningError)
    assert pipeline.history[-1] == SIGNING


async def test_no_actions(session: ClientSession) -> None:
    with pytest.raises(EncodingError, match="A transaction must contain at least one action"):
        session.pipeline("test.near", [])
