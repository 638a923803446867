from typing import Any

import pytest

from ferry import (
    AccountId,
    CallContext,
    Client,
    ClientSession,
    ConfigurationError,
    ContractExecutionError,
    ContractPanic,
    CryptoHash,
    EncodingError,
    FullAccessPermission,
    FunctionCallPermission,
    InMemorySigner,
    InvalidTransaction,
    LocalProvider,
    MessageParams,
    NearToken,
    PipelineError,
    PipelineStage,
    SecretKey,
    TransactionFailed,
    Transfer,
    TxExecutionStatus,
    make_message_nonce,
    verify_message_signature,
)
from ferry._client import encode_args

COUNTER_CODE = b"\x00asm counter"


def increment(context: CallContext) -> int:
    by = (context.args_json() or {}).get("by", 1)
    context.storage["counter"] = context.storage.get("counter", 0) + by
    context.log(f"incremented by {by}")
    return int(context.storage["counter"])


def get_counter(context: CallContext) -> int:
    return int(context.storage.get("counter", 0))


def donate(context: CallContext) -> dict[str, Any]:
    context.storage["donated"] = context.storage.get("donated", 0) + int(context.deposit)
    return {"from": str(context.predecessor_id), "amount": str(int(context.deposit))}


def explode(_context: CallContext) -> None:
    raise ContractPanic("boom")


COUNTER_METHODS = {
    "increment": increment,
    "get_counter": get_counter,
    "donate": donate,
    "explode": explode,
}


@pytest.fixture
def contract_id(local_provider: LocalProvider) -> AccountId:
    account_id = AccountId("counter.test.near")
    local_provider.create_account(account_id, NearToken(0))
    local_provider.deploy_contract(account_id, COUNTER_METHODS)
    return account_id


def test_encode_args() -> None:
    assert encode_args(None) == b""
    assert encode_args(b"\x01\x02") == b"\x01\x02"
    assert encode_args({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'
    assert encode_args("str") == b'"str"'


async def test_transfer(
    session: ClientSession, root_signer: InMemorySigner, another_signer: InMemorySigner
) -> None:
    outcome = await session.transfer(another_signer.account_id, NearToken.near(5))
    assert outcome.is_success
    assert await session.balance(another_signer.account_id) == NearToken.near(105)
    assert await session.balance(root_signer.account_id) == NearToken.near(995)

    # Another signer can be given explicitly
    await session.transfer(root_signer.account_id, NearToken.near(1), signer=another_signer)
    assert await session.balance(another_signer.account_id) == NearToken.near(104)


async def test_no_signer(local_provider: LocalProvider) -> None:
    client = Client(local_provider)
    async with client.session() as session:
        with pytest.raises(ConfigurationError, match="No signer was given"):
            await session.transfer("test.near", NearToken(1))

        # Read-only methods do not need a signer
        assert await session.balance("test.near") == NearToken.near(1000)


async def test_create_sub_account(session: ClientSession) -> None:
    bob = InMemorySigner.random("bob.test.near")
    builder = (
        session.transaction(bob.account_id)
        .create_account()
        .transfer(NearToken.near(10))
        .add_full_access_key(bob.public_key)
    )
    assert builder.receiver_id == bob.account_id
    assert len(builder.actions) == 3

    outcome = await builder.send()
    assert outcome.is_success

    account = await session.account(bob.account_id)
    assert account.amount == NearToken.near(10)
    access_key = await session.access_key(bob.account_id, bob.public_key)
    assert access_key.permission == FullAccessPermission()

    # The new account can sign its own transactions
    await session.transfer("test.near", NearToken.near(1), signer=bob)
    assert await session.balance(bob.account_id) == NearToken.near(9)


async def test_create_account_not_allowed(session: ClientSession) -> None:
    with pytest.raises(TransactionFailed) as excinfo:
        await session.transaction("bob.other.near").create_account().send()
    assert excinfo.value.action_index == 0
    assert "CreateAccountNotAllowed" in str(excinfo.value)


async def test_deploy_and_call(session: ClientSession, local_provider: LocalProvider) -> None:
    local_provider.register_contract_code(COUNTER_CODE, COUNTER_METHODS)
    owner = InMemorySigner.random("app.test.near")
    await (
        session.transaction(owner.account_id)
        .create_account()
        .transfer(NearToken.near(10))
        .add_full_access_key(owner.public_key)
        .deploy(COUNTER_CODE)
        .send()
    )

    account = await session.account(owner.account_id)
    assert account.code_hash == CryptoHash.hash(COUNTER_CODE)

    assert await session.view(owner.account_id, "get_counter") == 0
    outcome = await session.call(owner.account_id, "increment", {"by": 3})
    assert outcome.success_json() == 3
    assert outcome.logs == ("incremented by 3",)
    assert await session.view(owner.account_id, "get_counter") == 3


async def test_call_with_deposit(
    session: ClientSession, local_provider: LocalProvider, contract_id: AccountId
) -> None:
    outcome = await session.call(contract_id, "donate", deposit=NearToken.near(2))
    assert outcome.success_json() == {"from": "test.near", "amount": str(10**24 * 2)}
    assert local_provider.balance(contract_id) == NearToken.near(2)
    assert local_provider.contract_storage(contract_id)["donated"] == 10**24 * 2


async def test_call_failure(
    session: ClientSession, local_provider: LocalProvider, contract_id: AccountId
) -> None:
    with pytest.raises(TransactionFailed, match="boom") as excinfo:
        await session.call(contract_id, "explode")
    assert excinfo.value.action_index == 0
    assert excinfo.value.outcome.is_failure

    # The deposit is returned on failure
    with pytest.raises(TransactionFailed):
        await session.call(contract_id, "explode", deposit=NearToken.near(1))
    assert local_provider.balance(contract_id) == NearToken(0)

    with pytest.raises(ContractExecutionError, match="boom"):
        await session.view(contract_id, "explode")


async def test_view(session: ClientSession, contract_id: AccountId) -> None:
    await session.call(contract_id, "increment")
    assert await session.view(contract_id, "get_counter") == 1
    # View calls do not change the state
    assert await session.view(contract_id, "increment", {"by": 10}) == 11
    assert await session.view(contract_id, "get_counter") == 1


async def test_function_call_key(
    session: ClientSession, another_signer: InMemorySigner, contract_id: AccountId
) -> None:
    limited_key = SecretKey.generate()
    await (
        session.transaction(another_signer.account_id, signer=another_signer)
        .add_function_call_key(
            limited_key.public_key(), contract_id, ["increment"], NearToken.near(1)
        )
        .send()
    )

    access_key = await session.access_key(another_signer.account_id, limited_key.public_key())
    assert access_key.permission == FunctionCallPermission(
        contract_id, ("increment",), NearToken.near(1)
    )

    limited = InMemorySigner(another_signer.account_id, limited_key)
    outcome = await session.call(contract_id, "increment", signer=limited)
    assert outcome.success_json() == 1

    with pytest.raises(PipelineError) as excinfo:
        await session.transfer(contract_id, NearToken(1), signer=limited)
    assert excinfo.value.stage == PipelineStage.SUBMITTING
    assert isinstance(excinfo.value.error, InvalidTransaction)
    assert excinfo.value.error.details == {"InvalidAccessKeyError": "RequiresFullAccess"}


async def test_delete_key_and_account(
    session: ClientSession, local_provider: LocalProvider, another_signer: InMemorySigner
) -> None:
    second_key = SecretKey.generate().public_key()
    local_provider.add_access_key(another_signer.account_id, second_key)

    await (
        session.transaction(another_signer.account_id, signer=another_signer)
        .delete_key(second_key)
        .send()
    )
    key_list = await session.rpc.view_access_key_list(another_signer.account_id)
    assert [info.public_key for info in key_list.keys] == [another_signer.public_key]

    await (
        session.transaction(another_signer.account_id, signer=another_signer)
        .delete_account("test.near")
        .send()
    )
    assert not local_provider.has_account(another_signer.account_id)
    assert local_provider.balance("test.near") == NearToken.near(1100)


async def test_stake(
    session: ClientSession, local_provider: LocalProvider, another_signer: InMemorySigner
) -> None:
    await (
        session.transaction(another_signer.account_id, signer=another_signer)
        .stake(NearToken.near(30), another_signer.public_key)
        .send()
    )
    account = await session.account(another_signer.account_id)
    assert account.locked == NearToken.near(30)
    assert account.amount == NearToken.near(70)

    # Cannot delete a staking account
    with pytest.raises(TransactionFailed, match="DeleteAccountStaking"):
        await (
            session.transaction(another_signer.account_id, signer=another_signer)
            .delete_account("test.near")
            .send()
        )
    assert local_provider.has_account(another_signer.account_id)


async def test_delegate(
    session: ClientSession, local_provider: LocalProvider, another_signer: InMemorySigner
) -> None:
    local_provider.create_account("bob.test.near", NearToken(0))

    # Alice signs, but does not submit
    signed_delegate = await (
        session.transaction("bob.test.near", signer=another_signer)
        .transfer(NearToken.near(3))
        .delegate()
    )
    delegate_action = signed_delegate.delegate_action
    assert delegate_action.sender_id == another_signer.account_id
    assert delegate_action.public_key == another_signer.public_key
    assert delegate_action.nonce == 1
    assert delegate_action.max_block_height == 1 + 120
    assert signed_delegate.verify()

    # The root account relays it and pays for the gas
    outcome = await (
        session.transaction(another_signer.account_id)
        .signed_delegate_action(signed_delegate)
        .send()
    )
    assert outcome.is_success
    assert local_provider.balance("bob.test.near") == NearToken.near(3)
    assert local_provider.balance(another_signer.account_id) == NearToken.near(97)

    # Cannot be relayed twice
    with pytest.raises(TransactionFailed, match="DelegateActionInvalidNonce"):
        await session.transaction(another_signer.account_id).signed_delegate_action(
            signed_delegate
        ).send()


async def test_global_contracts(
    session: ClientSession, local_provider: LocalProvider, another_signer: InMemorySigner
) -> None:
    local_provider.register_contract_code(COUNTER_CODE, COUNTER_METHODS)

    await session.transaction("test.near").publish_contract(COUNTER_CODE).send()
    await (
        session.transaction(another_signer.account_id, signer=another_signer)
        .deploy_from_hash(CryptoHash.hash(COUNTER_CODE))
        .send()
    )
    await session.call(another_signer.account_id, "increment")
    assert await session.view(another_signer.account_id, "get_counter") == 1

    # Referring by the publishing account
    bob = InMemorySigner.random("bob.test.near")
    local_provider.create_account(bob.account_id, NearToken.near(1), bob.public_key)
    await session.transaction("test.near").publish_contract(COUNTER_CODE, by_account=True).send()
    await session.transaction(bob.account_id, signer=bob).deploy_from_account("test.near").send()
    assert await session.view(bob.account_id, "get_counter") == 0

    with pytest.raises(TransactionFailed, match="GlobalContractDoesNotExist"):
        await (
            session.transaction(bob.account_id, signer=bob)
            .deploy_from_account("nobody.near")
            .send()
        )


async def test_wait_levels(
    local_provider: LocalProvider, session: ClientSession, another_signer: InMemorySigner
) -> None:
    outcome = await (
        session.transaction(another_signer.account_id)
        .transfer(NearToken(1))
        .wait_until(TxExecutionStatus.INCLUDED)
        .send()
    )
    assert outcome.final_execution_status == TxExecutionStatus.INCLUDED
    assert outcome.is_pending
    assert outcome.transaction_hash is None

    # The client-wide default
    client = Client(local_provider, signer=local_provider.root, wait_until=TxExecutionStatus.NONE)
    async with client.session() as none_session:
        outcome = await none_session.transfer(another_signer.account_id, NearToken(1))
    assert outcome.final_execution_status == TxExecutionStatus.NONE

    assert await session.balance(another_signer.account_id) == NearToken.near(100) + NearToken(2)


async def test_wait_for_transaction(
    session: ClientSession, root_signer: InMemorySigner, another_signer: InMemorySigner
) -> None:
    pipeline = session.pipeline(
        another_signer.account_id,
        [Transfer(NearToken(1))],
        wait_until=TxExecutionStatus.NONE,
        priority_fee=10,
    )
    await pipeline.run()
    assert pipeline.attempts[0].transaction.priority_fee == 10
    tx_hash = pipeline.transaction_hash
    assert tx_hash is not None

    outcome = await session.wait_for_transaction(tx_hash, root_signer.account_id)
    assert outcome.final_execution_status == TxExecutionStatus.FINAL
    assert outcome.is_success
    assert outcome.transaction_hash == tx_hash


async def test_empty_transaction(session: ClientSession) -> None:
    with pytest.raises(EncodingError, match="A transaction must contain at least one action"):
        await session.transaction("test.near").send()
    with pytest.raises(EncodingError, match="A delegate action must contain at least one action"):
        await session.transaction("test.near").delegate()


async def test_queries(session: ClientSession, root_signer: InMemorySigner) -> None:
    status = await session.status()
    block = await session.block()
    assert block.header.hash == status.sync_info.latest_block_hash

    access_key = await session.access_key(root_signer.account_id, root_signer.public_key)
    assert access_key.nonce == 0
    assert access_key.block_hash == block.header.hash


async def test_verify_message(
    session: ClientSession, local_provider: LocalProvider, another_signer: InMemorySigner
) -> None:
    params = MessageParams(message="Login", recipient="app.near", nonce=make_message_nonce())
    signed = await another_signer.sign_message(params)
    assert await session.verify_message(signed, params)

    # The key must belong to the account
    impostor = InMemorySigner.random(another_signer.account_id)
    forged = await impostor.sign_message(params)
    assert verify_message_signature(forged, params)
    assert not await session.verify_message(forged, params)

    # The account must exist
    stranger = await InMemorySigner.random("nobody.test.near").sign_message(params)
    assert not await session.verify_message(stranger, params)

    # Function call keys are only accepted on request
    limited_key = SecretKey.generate()
    local_provider.add_access_key(
        another_signer.account_id,
        limited_key.public_key(),
        FunctionCallPermission(AccountId("app.near")),
    )
    limited = await InMemorySigner(another_signer.account_id, limited_key).sign_message(params)
    assert not await session.verify_message(limited, params)
    assert await session.verify_message(limited, params, require_full_access=False)
