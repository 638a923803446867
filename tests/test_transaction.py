import base64
import hashlib

import pytest

from ferry import (
    ACTION_TAGS,
    AccessKey,
    AccountId,
    Action,
    AddKey,
    CreateAccount,
    CryptoHash,
    DecodingError,
    Delegate,
    DelegateAction,
    DeleteAccount,
    DeleteKey,
    DeployContract,
    DeployGlobalContract,
    EncodingError,
    FullAccessPermission,
    FunctionCall,
    FunctionCallPermission,
    Gas,
    GlobalContractDeployMode,
    KeyType,
    NearToken,
    PublicKey,
    SecretKey,
    SignedDelegateAction,
    SignedTransaction,
    Stake,
    Transaction,
    Transfer,
    UseGlobalContract,
    decode_signed_transaction,
    decode_transaction,
    encode_signed_transaction,
    encode_transaction,
    hash_transaction,
)
from ferry._actions import DELEGATE_ACTION_PREFIX, MAX_CONTRACT_SIZE, decode_action
from ferry._codec import BorshReader, BorshWriter


def make_signed_delegate_action(secret_key: SecretKey) -> SignedDelegateAction:
    delegate_action = DelegateAction(
        sender_id=AccountId("alice.near"),
        receiver_id=AccountId("bob.near"),
        actions=(Transfer(NearToken.near(1)), FunctionCall("ping")),
        nonce=5,
        max_block_height=1000,
        public_key=secret_key.public_key(),
    )
    signature = secret_key.sign(bytes(delegate_action.signing_hash()))
    return SignedDelegateAction(delegate_action, signature)


def make_transaction(actions: tuple[Action, ...], priority_fee: None | int = None) -> Transaction:
    return Transaction(
        signer_id=AccountId("alice.near"),
        public_key=SecretKey.generate().public_key(),
        nonce=7,
        receiver_id=AccountId("bob.near"),
        block_hash=CryptoHash.hash(b"block"),
        actions=actions,
        priority_fee=priority_fee,
    )


def test_action_tags() -> None:
    # These are a part of the protocol and must never change
    assert dict(ACTION_TAGS) == {
        CreateAccount: 0,
        DeployContract: 1,
        FunctionCall: 2,
        Transfer: 3,
        Stake: 4,
        AddKey: 5,
        DeleteKey: 6,
        DeleteAccount: 7,
        Delegate: 8,
        DeployGlobalContract: 9,
        UseGlobalContract: 10,
    }


def test_transfer_encoding() -> None:
    public_key = PublicKey(KeyType.ED25519, bytes(range(32)))
    tx = Transaction(
        signer_id=AccountId("alice.near"),
        public_key=public_key,
        nonce=7,
        receiver_id=AccountId("bob"),
        block_hash=CryptoHash(bytes(32)),
        actions=(Transfer(NearToken.yocto(1)),),
    )

    expected = (
        (10).to_bytes(4, "little")
        + b"alice.near"
        + b"\x00"
        + bytes(range(32))
        + (7).to_bytes(8, "little")
        + (3).to_bytes(4, "little")
        + b"bob"
        + bytes(32)
        + (1).to_bytes(4, "little")
        + b"\x03"
        + (1).to_bytes(16, "little")
    )
    encoded = encode_transaction(tx)
    assert encoded == expected
    assert hash_transaction(encoded) == CryptoHash(hashlib.sha256(expected).digest())


def test_round_trip_all_actions() -> None:
    secret_key = SecretKey.generate()
    public_key = secret_key.public_key()
    secp256k1_key = SecretKey.generate(KeyType.SECP256K1).public_key()

    actions: tuple[Action, ...] = (
        CreateAccount(),
        DeployContract(b"\x00asm\x01\x00\x00\x00"),
        FunctionCall("do_something", b'{"x":1}', Gas.tgas(10), NearToken.millinear(1)),
        Transfer(NearToken.near(3)),
        Stake(NearToken.near(100), public_key),
        AddKey(public_key, AccessKey(FullAccessPermission(), nonce=0)),
        AddKey(
            secp256k1_key,
            AccessKey(
                FunctionCallPermission(
                    AccountId("contract.near"), ("a", "b"), NearToken.millinear(250)
                )
            ),
        ),
        AddKey(public_key, AccessKey(FunctionCallPermission(AccountId("contract.near")))),
        DeleteKey(public_key),
        DeleteAccount(AccountId("beneficiary.near")),
        Delegate(make_signed_delegate_action(secret_key)),
        DeployGlobalContract(b"code", GlobalContractDeployMode.ACCOUNT_ID),
        UseGlobalContract(CryptoHash.hash(b"code")),
        UseGlobalContract(AccountId("publisher.near")),
    )
    tx = make_transaction(actions)

    encoded = encode_transaction(tx)
    assert decode_transaction(encoded) == tx
    # Deterministic
    assert encode_transaction(tx) == encoded


def test_global_contract_identifier_kinds() -> None:
    by_hash = UseGlobalContract(CryptoHash.hash(b"code"))
    by_account = UseGlobalContract(AccountId("publisher.near"))
    assert by_hash != by_account
    assert by_hash == UseGlobalContract(CryptoHash.hash(b"code"))

    tx_by_hash = make_transaction((by_hash,))
    tx_by_account = make_transaction((by_account,))
    assert tx_by_hash != tx_by_account
    assert decode_transaction(encode_transaction(tx_by_account)) == tx_by_account


def test_priority_fee() -> None:
    tx = make_transaction((Transfer(NearToken(1)),), priority_fee=12345)
    encoded = encode_transaction(tx)
    assert encoded[0] == 1
    assert encoded.endswith((12345).to_bytes(8, "little"))
    assert encoded[1:-8] == encode_transaction(make_transaction_like(tx, priority_fee=None))

    decoded = decode_transaction(encoded)
    assert decoded == tx
    assert decoded.priority_fee == 12345


def make_transaction_like(tx: Transaction, priority_fee: None | int) -> Transaction:
    return Transaction(
        signer_id=tx.signer_id,
        public_key=tx.public_key,
        nonce=tx.nonce,
        receiver_id=tx.receiver_id,
        block_hash=tx.block_hash,
        actions=tx.actions,
        priority_fee=priority_fee,
    )


def test_signed_transaction() -> None:
    secret_key = SecretKey.generate()
    tx = Transaction(
        signer_id=AccountId("alice.near"),
        public_key=secret_key.public_key(),
        nonce=1,
        receiver_id=AccountId("bob.near"),
        block_hash=CryptoHash.hash(b"block"),
        actions=(Transfer(NearToken.near(1)),),
    )
    tx_hash = hash_transaction(encode_transaction(tx))
    signature = secret_key.sign(bytes(tx_hash))
    assert secret_key.public_key().verify(bytes(tx_hash), signature)

    signed = SignedTransaction(tx, signature)
    assert signed.hash() == tx_hash

    encoded = signed.encode()
    assert encoded == encode_signed_transaction(tx, signature)
    assert encoded.startswith(encode_transaction(tx))
    assert encoded[len(encode_transaction(tx)) :] == b"\x00" + signature.data

    assert decode_signed_transaction(encoded) == signed
    assert base64.b64decode(signed.to_base64()) == encoded
    assert SignedTransaction.from_base64(signed.to_base64()) == signed


def test_encoding_errors() -> None:
    with pytest.raises(EncodingError, match="A transaction must contain at least one action"):
        encode_transaction(make_transaction(()))

    with pytest.raises(EncodingError, match="The value -1 does not fit into u64"):
        encode_transaction(
            Transaction(
                signer_id=AccountId("alice.near"),
                public_key=SecretKey.generate().public_key(),
                nonce=-1,
                receiver_id=AccountId("bob.near"),
                block_hash=CryptoHash.hash(b"block"),
                actions=(CreateAccount(),),
            )
        )

    too_large = DeployContract(bytes(MAX_CONTRACT_SIZE + 1))
    with pytest.raises(EncodingError, match="exceeds the limit"):
        encode_transaction(make_transaction((too_large,)))

    class UnknownAction(Action):
        def _encode_payload(self, writer: BorshWriter) -> None:
            pass  # pragma: no cover

        @classmethod
        def _decode_payload(cls, _reader: BorshReader) -> "UnknownAction":
            return cls()  # pragma: no cover

    with pytest.raises(EncodingError, match="Unknown action type: UnknownAction"):
        encode_transaction(make_transaction((UnknownAction(),)))


def test_nested_delegate() -> None:
    secret_key = SecretKey.generate()
    signed = make_signed_delegate_action(secret_key)
    nested = DelegateAction(
        sender_id=AccountId("alice.near"),
        receiver_id=AccountId("bob.near"),
        actions=(Delegate(signed),),
        nonce=1,
        max_block_height=1,
        public_key=secret_key.public_key(),
    )
    with pytest.raises(EncodingError, match="Delegate actions cannot be nested"):
        nested.encode()


def test_decoding_errors() -> None:
    with pytest.raises(DecodingError, match="Unknown action tag: 11"):
        decode_action(BorshReader(b"\x0b"))

    encoded = encode_transaction(make_transaction((Transfer(NearToken(1)),)))
    with pytest.raises(DecodingError, match="1 trailing bytes left"):
        decode_transaction(encoded + b"\x00")
    with pytest.raises(DecodingError, match="Unexpected end of data"):
        decode_transaction(encoded[:-1])

    with pytest.raises(DecodingError, match="Invalid base64 data"):
        SignedTransaction.from_base64("not base64!")


def test_delegate_action_signing() -> None:
    secret_key = SecretKey.generate()
    signed = make_signed_delegate_action(secret_key)
    delegate_action = signed.delegate_action

    prefix = DELEGATE_ACTION_PREFIX.to_bytes(4, "little")
    assert delegate_action.signing_hash() == CryptoHash.hash(prefix + delegate_action.encode())
    assert signed.verify()

    assert SignedDelegateAction.decode(signed.encode()) == signed

    tampered = SignedDelegateAction(
        DelegateAction(
            sender_id=delegate_action.sender_id,
            receiver_id=delegate_action.receiver_id,
            actions=delegate_action.actions,
            nonce=delegate_action.nonce + 1,
            max_block_height=delegate_action.max_block_height,
            public_key=delegate_action.public_key,
        ),
        signed.signature,
    )
    assert not tampered.verify()
