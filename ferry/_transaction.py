import base64
from dataclasses import dataclass

from ._actions import Action, decode_action, encode_action
from ._codec import BorshReader, BorshWriter, DecodingError, EncodingError
from ._entities import AccountId, CryptoHash
from ._keys import PublicKey, Signature

# Transactions with a priority fee are prefixed with this version tag.
# A legacy transaction starts with the signer ID length (u32),
# whose lowest byte can never be 1 since account IDs are at least 2 characters long.
_TX_V1_TAG = 1


@dataclass(frozen=True)
class Transaction:
    """An unsigned transaction."""

    signer_id: AccountId
    public_key: PublicKey
    nonce: int
    receiver_id: AccountId
    block_hash: CryptoHash
    actions: tuple[Action, ...]

    priority_fee: None | int = None
    """
    If set, the transaction is encoded in the newer format
    which carries a priority fee after the actions.
    """

    def _encode(self, writer: BorshWriter) -> None:
        if self.priority_fee is not None:
            writer.u8(_TX_V1_TAG)
        writer.account_id(self.signer_id)
        writer.public_key(self.public_key)
        writer.u64(self.nonce)
        writer.account_id(self.receiver_id)
        writer.crypto_hash(self.block_hash)
        writer.vec(self.actions, lambda action: encode_action(writer, action))
        if self.priority_fee is not None:
            writer.u64(self.priority_fee)

    @classmethod
    def _decode(cls, reader: BorshReader) -> "Transaction":
        versioned = reader.peek_u8() == _TX_V1_TAG
        if versioned:
            reader.u8()
        signer_id = reader.account_id()
        public_key = reader.public_key()
        nonce = reader.u64()
        receiver_id = reader.account_id()
        block_hash = reader.crypto_hash()
        actions = tuple(reader.vec(lambda: decode_action(reader)))
        priority_fee = reader.u64() if versioned else None
        return cls(
            signer_id=signer_id,
            public_key=public_key,
            nonce=nonce,
            receiver_id=receiver_id,
            block_hash=block_hash,
            actions=actions,
            priority_fee=priority_fee,
        )


@dataclass(frozen=True)
class SignedTransaction:
    """A transaction along with its signature; the only thing that is ever submitted."""

    transaction: Transaction
    signature: Signature

    def encode(self) -> bytes:
        """Returns the canonical encoding of the signed transaction."""
        return encode_signed_transaction(self.transaction, self.signature)

    def hash(self) -> CryptoHash:
        """The transaction hash (the hash of the unsigned part)."""
        return hash_transaction(encode_transaction(self.transaction))

    def to_base64(self) -> str:
        """Returns the encoded signed transaction wrapped for JSON transport."""
        return base64.b64encode(self.encode()).decode()

    @classmethod
    def from_base64(cls, data: str) -> "SignedTransaction":
        try:
            raw = base64.b64decode(data, validate=True)
        except ValueError as exc:
            raise DecodingError(f"Invalid base64 data: {exc}") from exc
        return decode_signed_transaction(raw)


def encode_transaction(tx: Transaction) -> bytes:
    """
    Returns the canonical encoding of an unsigned transaction.
    Raises :py:class:`EncodingError` for malformed input.
    """
    if not tx.actions:
        raise EncodingError("A transaction must contain at least one action")
    writer = BorshWriter()
    tx._encode(writer)  # noqa: SLF001
    return writer.getvalue()


def hash_transaction(encoded: bytes) -> CryptoHash:
    """Returns the hash of an encoded transaction, which is what gets signed."""
    return CryptoHash.hash(encoded)


def encode_signed_transaction(tx: Transaction, signature: Signature) -> bytes:
    """Returns the transaction encoding followed by the tagged signature."""
    encoded = encode_transaction(tx)
    writer = BorshWriter()
    writer.signature(signature)
    return encoded + writer.getvalue()


def decode_transaction(data: bytes) -> Transaction:
    """Decodes an unsigned transaction. Trailing data is an error."""
    reader = BorshReader(data)
    tx = Transaction._decode(reader)  # noqa: SLF001
    reader.finish()
    return tx


def decode_signed_transaction(data: bytes) -> SignedTransaction:
    """Decodes a signed transaction. Trailing data is an error."""
    reader = BorshReader(data)
    tx = Transaction._decode(reader)  # noqa: SLF001
    signature = reader.signature()
    reader.finish()
    return SignedTransaction(tx, signature)
