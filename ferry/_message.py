"""Off-chain message signing (NEP-413)."""

import os
import time
from dataclasses import dataclass
from datetime import timedelta

from ._codec import BorshWriter
from ._entities import AccountId, CryptoHash
from ._keys import PublicKey, Signature

MESSAGE_TAG = 2**31 + 413
"""The prefix separating signed messages from transactions and delegate actions."""

DEFAULT_MAX_MESSAGE_AGE = timedelta(minutes=5)


def make_message_nonce(timestamp_ms: None | int = None) -> bytes:
    """
    Returns a 32-byte nonce: the timestamp in milliseconds (big-endian u64)
    followed by random bytes.
    """
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    return timestamp_ms.to_bytes(8, "big") + os.urandom(24)


def message_nonce_timestamp(nonce: bytes) -> int:
    """Returns the timestamp (in milliseconds) embedded into a nonce."""
    return int.from_bytes(nonce[:8], "big")


@dataclass(frozen=True)
class MessageParams:
    """A message to sign, along with the context binding it to one recipient."""

    message: str
    recipient: str
    nonce: bytes
    callback_url: None | str = None
    state: None | str = None

    def __post_init__(self) -> None:
        if len(self.nonce) != 32:  # noqa: PLR2004
            raise ValueError(f"Message nonce must be 32 bytes long, got {len(self.nonce)}")

    def signing_hash(self) -> CryptoHash:
        """The hash of the tagged payload, which is what gets signed."""
        writer = BorshWriter()
        writer.u32(MESSAGE_TAG)
        writer.string(self.message)
        writer.fixed(self.nonce, 32)
        writer.string(self.recipient)
        writer.option(self.callback_url, writer.string)
        return CryptoHash.hash(writer.getvalue())


@dataclass(frozen=True)
class SignedMessage:
    account_id: AccountId
    public_key: PublicKey
    signature: Signature
    state: None | str = None


def verify_message_signature(
    signed: SignedMessage,
    params: MessageParams,
    max_age: None | timedelta = DEFAULT_MAX_MESSAGE_AGE,
) -> bool:
    """
    Checks the signature of ``signed`` against ``params``.
    Unless ``max_age`` is ``None``, nonces older than it or from the future are rejected.

    This does not check that the key belongs to the account,
    see :py:meth:`ClientSession.verify_message` for that.
    """
    if max_age is not None:
        timestamp_ms = message_nonce_timestamp(params.nonce)
        now_ms = time.time_ns() // 1_000_000
        if timestamp_ms > now_ms or now_ms - timestamp_ms > max_age / timedelta(milliseconds=1):
            return False
    return signed.public_key.verify(bytes(params.signing_hash()), signed.signature)
