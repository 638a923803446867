from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from ._codec import BorshReader, BorshWriter, DecodingError, EncodingError
from ._entities import DEFAULT_GAS, AccountId, CryptoHash, Gas, NearToken
from ._keys import PublicKey, Signature

MAX_CONTRACT_SIZE = 4 * 1024 * 1024
"""The largest contract code accepted by the codec, in bytes."""

DELEGATE_ACTION_PREFIX = 2**30 + 366
"""Prepended to a delegate action before hashing, to separate it from transaction signatures."""


class Action(ABC):
    """The base class for transaction actions."""

    @abstractmethod
    def _encode_payload(self, writer: BorshWriter) -> None:
        """Writes the action fields (without the discriminant)."""

    @classmethod
    @abstractmethod
    def _decode_payload(cls, reader: BorshReader) -> "Action":
        """Reads the action fields (the discriminant was already consumed)."""


@dataclass(frozen=True)
class CreateAccount(Action):
    """Creates the receiver account (must be a sub-account of the signer, or implicit)."""

    def _encode_payload(self, writer: BorshWriter) -> None:
        pass

    @classmethod
    def _decode_payload(cls, _reader: BorshReader) -> "CreateAccount":
        return cls()


@dataclass(frozen=True)
class DeployContract(Action):
    """Deploys WASM code to the receiver account."""

    code: bytes

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.blob(self.code, max_length=MAX_CONTRACT_SIZE)

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "DeployContract":
        return cls(reader.blob())


@dataclass(frozen=True)
class FunctionCall(Action):
    """Calls a contract method on the receiver account."""

    method_name: str
    args: bytes = b""
    gas: Gas = DEFAULT_GAS
    deposit: NearToken = field(default_factory=lambda: NearToken(0))

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.string(self.method_name)
        writer.blob(self.args)
        writer.u64(int(self.gas))
        writer.u128(int(self.deposit))

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "FunctionCall":
        return cls(
            method_name=reader.string(),
            args=reader.blob(),
            gas=Gas(reader.u64()),
            deposit=NearToken(reader.u128()),
        )


@dataclass(frozen=True)
class Transfer(Action):
    """Transfers tokens to the receiver account."""

    deposit: NearToken

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.u128(int(self.deposit))

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "Transfer":
        return cls(NearToken(reader.u128()))


@dataclass(frozen=True)
class Stake(Action):
    """Stakes tokens with the given validator key."""

    stake: NearToken
    public_key: PublicKey

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.u128(int(self.stake))
        writer.public_key(self.public_key)

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "Stake":
        return cls(NearToken(reader.u128()), reader.public_key())


@dataclass(frozen=True)
class FunctionCallPermission:
    """An access key permission restricted to calling methods of one contract."""

    receiver_id: AccountId

    method_names: tuple[str, ...] = ()
    """Allowed methods. Empty means any method."""

    allowance: None | NearToken = None
    """The amount the key can spend on gas. ``None`` means unlimited."""


@dataclass(frozen=True)
class FullAccessPermission:
    """An access key permission allowing any action."""


AccessKeyPermission = FunctionCallPermission | FullAccessPermission


@dataclass(frozen=True)
class AccessKey:
    """An access key as stored on the ledger."""

    permission: AccessKeyPermission
    nonce: int = 0

    def _encode(self, writer: BorshWriter) -> None:
        writer.u64(self.nonce)
        if isinstance(self.permission, FunctionCallPermission):
            writer.u8(0)
            writer.option(self.permission.allowance, lambda amount: writer.u128(int(amount)))
            writer.account_id(self.permission.receiver_id)
            writer.vec(self.permission.method_names, writer.string)
        elif isinstance(self.permission, FullAccessPermission):
            writer.u8(1)
        else:
            raise EncodingError(f"Unknown access key permission: {self.permission!r}")

    @classmethod
    def _decode(cls, reader: BorshReader) -> "AccessKey":
        nonce = reader.u64()
        tag = reader.u8()
        permission: AccessKeyPermission
        if tag == 0:
            allowance = reader.option(reader.u128)
            permission = FunctionCallPermission(
                allowance=None if allowance is None else NearToken(allowance),
                receiver_id=reader.account_id(),
                method_names=tuple(reader.vec(reader.string)),
            )
        elif tag == 1:
            permission = FullAccessPermission()
        else:
            raise DecodingError(f"Unknown access key permission tag: {tag}")
        return cls(permission=permission, nonce=nonce)


@dataclass(frozen=True)
class AddKey(Action):
    """Adds an access key to the receiver account."""

    public_key: PublicKey
    access_key: AccessKey

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.public_key(self.public_key)
        self.access_key._encode(writer)  # noqa: SLF001

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "AddKey":
        return cls(reader.public_key(), AccessKey._decode(reader))  # noqa: SLF001


@dataclass(frozen=True)
class DeleteKey(Action):
    """Removes an access key from the receiver account."""

    public_key: PublicKey

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.public_key(self.public_key)

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "DeleteKey":
        return cls(reader.public_key())


@dataclass(frozen=True)
class DeleteAccount(Action):
    """Deletes the receiver account, sending the remaining balance to ``beneficiary_id``."""

    beneficiary_id: AccountId

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.account_id(self.beneficiary_id)

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "DeleteAccount":
        return cls(reader.account_id())


@dataclass(frozen=True)
class DelegateAction:
    """
    A set of actions signed by ``sender_id`` to be submitted by someone else
    (a relayer paying for gas).
    """

    sender_id: AccountId
    receiver_id: AccountId
    actions: tuple[Action, ...]
    nonce: int
    max_block_height: int
    public_key: PublicKey

    def _encode(self, writer: BorshWriter) -> None:
        writer.account_id(self.sender_id)
        writer.account_id(self.receiver_id)
        writer.vec(self.actions, lambda action: encode_action(writer, action, nested=True))
        writer.u64(self.nonce)
        writer.u64(self.max_block_height)
        writer.public_key(self.public_key)

    @classmethod
    def _decode(cls, reader: BorshReader) -> "DelegateAction":
        return cls(
            sender_id=reader.account_id(),
            receiver_id=reader.account_id(),
            actions=tuple(reader.vec(lambda: decode_action(reader, nested=True))),
            nonce=reader.u64(),
            max_block_height=reader.u64(),
            public_key=reader.public_key(),
        )

    def encode(self) -> bytes:
        """Returns the canonical encoding of this delegate action."""
        writer = BorshWriter()
        self._encode(writer)
        return writer.getvalue()

    def signing_hash(self) -> CryptoHash:
        """Returns the hash to be signed by the sender's key."""
        writer = BorshWriter()
        writer.u32(DELEGATE_ACTION_PREFIX)
        self._encode(writer)
        return CryptoHash.hash(writer.getvalue())


@dataclass(frozen=True)
class SignedDelegateAction:
    """A delegate action along with the sender's signature."""

    delegate_action: DelegateAction
    signature: Signature

    def _encode(self, writer: BorshWriter) -> None:
        self.delegate_action._encode(writer)  # noqa: SLF001
        writer.signature(self.signature)

    @classmethod
    def _decode(cls, reader: BorshReader) -> "SignedDelegateAction":
        return cls(DelegateAction._decode(reader), reader.signature())  # noqa: SLF001

    def encode(self) -> bytes:
        """Returns the canonical encoding, as sent to relayers."""
        writer = BorshWriter()
        self._encode(writer)
        return writer.getvalue()

    @classmethod
    def decode(cls, data: bytes) -> "SignedDelegateAction":
        reader = BorshReader(data)
        result = cls._decode(reader)
        reader.finish()
        return result

    def verify(self) -> bool:
        """Returns ``True`` if the signature matches the delegate action and its key."""
        return self.delegate_action.public_key.verify(
            bytes(self.delegate_action.signing_hash()), self.signature
        )


@dataclass(frozen=True)
class Delegate(Action):
    """Executes a signed delegate action on behalf of its sender."""

    signed_delegate_action: SignedDelegateAction

    def _encode_payload(self, writer: BorshWriter) -> None:
        self.signed_delegate_action._encode(writer)  # noqa: SLF001

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "Delegate":
        return cls(SignedDelegateAction._decode(reader))  # noqa: SLF001


class GlobalContractDeployMode(Enum):
    """How other accounts will refer to a published global contract."""

    CODE_HASH = 0
    """By the hash of the code (immutable)."""

    ACCOUNT_ID = 1
    """By the publisher's account (updatable by the publisher)."""


@dataclass(frozen=True)
class DeployGlobalContract(Action):
    """Publishes contract code to the global registry."""

    code: bytes
    deploy_mode: GlobalContractDeployMode = GlobalContractDeployMode.CODE_HASH

    def _encode_payload(self, writer: BorshWriter) -> None:
        writer.blob(self.code, max_length=MAX_CONTRACT_SIZE)
        writer.u8(self.deploy_mode.value)

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "DeployGlobalContract":
        code = reader.blob()
        tag = reader.u8()
        try:
            deploy_mode = GlobalContractDeployMode(tag)
        except ValueError as exc:
            raise DecodingError(f"Unknown global contract deploy mode: {tag}") from exc
        return cls(code, deploy_mode)


@dataclass(frozen=True)
class UseGlobalContract(Action):
    """Deploys a previously published global contract to the receiver account."""

    contract_identifier: CryptoHash | AccountId

    def _encode_payload(self, writer: BorshWriter) -> None:
        if isinstance(self.contract_identifier, CryptoHash):
            writer.u8(0)
            writer.crypto_hash(self.contract_identifier)
        elif isinstance(self.contract_identifier, AccountId):
            writer.u8(1)
            writer.account_id(self.contract_identifier)
        else:
            raise EncodingError(
                f"Unknown global contract identifier: {self.contract_identifier!r}"
            )

    @classmethod
    def _decode_payload(cls, reader: BorshReader) -> "UseGlobalContract":
        tag = reader.u8()
        if tag == 0:
            return cls(reader.crypto_hash())
        if tag == 1:
            return cls(reader.account_id())
        raise DecodingError(f"Unknown global contract identifier tag: {tag}")


# Wire discriminants. These are a part of the protocol:
# never reorder, renumber, or reuse an entry.
ACTION_TAGS: Mapping[type[Action], int] = MappingProxyType(
    {
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
)

_ACTIONS_BY_TAG: Mapping[int, type[Action]] = MappingProxyType(
    {tag: action_type for action_type, tag in ACTION_TAGS.items()}
)


def encode_action(writer: BorshWriter, action: Action, *, nested: bool = False) -> None:
    """
    Writes the discriminant and the payload of ``action``.
    If ``nested`` is ``True`` (actions inside a delegate action), delegates are rejected.
    """
    tag = ACTION_TAGS.get(type(action))
    if tag is None:
        raise EncodingError(f"Unknown action type: {type(action).__name__}")
    if nested and isinstance(action, Delegate):
        raise EncodingError("Delegate actions cannot be nested")
    writer.u8(tag)
    action._encode_payload(writer)  # noqa: SLF001


def decode_action(reader: BorshReader, *, nested: bool = False) -> Action:
    """Reads an action written by :py:func:`encode_action`."""
    tag = reader.u8()
    action_type = _ACTIONS_BY_TAG.get(tag)
    if action_type is None:
        raise DecodingError(f"Unknown action tag: {tag}")
    if nested and action_type is Delegate:
        raise DecodingError("Delegate actions cannot be nested")
    return action_type._decode_payload(reader)  # noqa: SLF001
