import os
from enum import Enum

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import ValidationError as EthUtilsValidationError
from eth_utils import keccak

from ._entities import AccountId, ParseError


class KeyType(Enum):
    """Supported signature schemes, with their wire tags."""

    ED25519 = 0
    SECP256K1 = 1

    @property
    def prefix(self) -> str:
        """The prefix used in the textual form of keys and signatures."""
        return self.name.lower()

    @property
    def public_key_length(self) -> int:
        return 32 if self == KeyType.ED25519 else 64

    @property
    def signature_length(self) -> int:
        return 64 if self == KeyType.ED25519 else 65

    @classmethod
    def from_prefix(cls, prefix: str) -> "KeyType":
        for key_type in cls:
            if key_type.prefix == prefix:
                return key_type
        raise ParseError(f"Unknown key type: {prefix!r}")


def _parse_tagged(value: str) -> tuple[KeyType, bytes]:
    # Untagged strings are treated as ed25519, the same way the node does it.
    prefix, sep, encoded = value.partition(":")
    if not sep:
        prefix, encoded = KeyType.ED25519.prefix, value
    key_type = KeyType.from_prefix(prefix)
    try:
        data = base58.b58decode(encoded)
    except ValueError as exc:
        raise ParseError(f"Invalid base58 data in {value!r}") from exc
    return key_type, data


class PublicKey:
    """A public key tagged with its signature scheme."""

    def __init__(self, key_type: KeyType, data: bytes):
        if len(data) != key_type.public_key_length:
            raise ValueError(
                f"{key_type.prefix} public key must be {key_type.public_key_length} bytes long, "
                f"got {len(data)}"
            )
        self.key_type = key_type
        self.data = bytes(data)

    @classmethod
    def from_string(cls, value: str) -> "PublicKey":
        """Parses a public key from the ``<key type>:<base58 data>`` form."""
        key_type, data = _parse_tagged(value)
        try:
            return cls(key_type, data)
        except ValueError as exc:
            raise ParseError(str(exc)) from exc

    def verify(self, message: bytes, signature: "Signature") -> bool:
        """
        Returns ``True`` if ``signature`` is a valid signature of ``message`` by this key.
        For secp256k1 keys ``message`` must be a 32-byte hash.
        """
        if signature.key_type != self.key_type:
            return False

        if self.key_type == KeyType.ED25519:
            try:
                Ed25519PublicKey.from_public_bytes(self.data).verify(signature.data, message)
            except InvalidSignature:
                return False
            return True

        if len(message) != 32:  # noqa: PLR2004
            return False
        try:
            eth_signature = keys.Signature(signature_bytes=signature.data)
            return bool(eth_signature.verify_msg_hash(message, keys.PublicKey(self.data)))
        except (BadSignature, ValidationError, EthUtilsValidationError):
            return False

    def implicit_account_id(self) -> AccountId:
        """
        Returns the implicit account controlled by this key:
        the hex-encoded key for ed25519, or an Ethereum-style address for secp256k1.
        """
        if self.key_type == KeyType.ED25519:
            return AccountId(self.data.hex())
        return AccountId("0x" + keccak(self.data)[-20:].hex())

    def __str__(self) -> str:
        return f"{self.key_type.prefix}:{base58.b58encode(self.data).decode()}"

    def __repr__(self) -> str:
        return f'PublicKey.from_string("{self}")'

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, PublicKey)
            and self.key_type == other.key_type
            and self.data == other.data
        )

    def __hash__(self) -> int:
        return hash((PublicKey, self.key_type, self.data))


class Signature:
    """A signature tagged with its signature scheme."""

    def __init__(self, key_type: KeyType, data: bytes):
        if len(data) != key_type.signature_length:
            raise ValueError(
                f"{key_type.prefix} signature must be {key_type.signature_length} bytes long, "
                f"got {len(data)}"
            )
        self.key_type = key_type
        self.data = bytes(data)

    @classmethod
    def from_string(cls, value: str) -> "Signature":
        """Parses a signature from the ``<key type>:<base58 data>`` form."""
        key_type, data = _parse_tagged(value)
        try:
            return cls(key_type, data)
        except ValueError as exc:
            raise ParseError(str(exc)) from exc

    def __str__(self) -> str:
        return f"{self.key_type.prefix}:{base58.b58encode(self.data).decode()}"

    def __repr__(self) -> str:
        return f'Signature.from_string("{self}")'

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Signature)
            and self.key_type == other.key_type
            and self.data == other.data
        )

    def __hash__(self) -> int:
        return hash((Signature, self.key_type, self.data))


class SecretKey:
    """
    A secret key. Handle with care.

    The textual form of ed25519 keys is the base58-encoded 64-byte concatenation
    of the seed and the public key, as stored in credential files.
    """

    def __init__(self, key_type: KeyType, data: bytes):
        if key_type == KeyType.ED25519:
            # Accept both the bare seed and the seed followed by the public key.
            if len(data) not in (32, 64):
                raise ValueError(f"ed25519 secret key must be 32 or 64 bytes long, got {len(data)}")
            self._ed25519_key = Ed25519PrivateKey.from_private_bytes(data[:32])
            seed = data[:32]
            if len(data) == 64 and data[32:] != self._ed25519_public_bytes():  # noqa: PLR2004
                raise ValueError("ed25519 secret key does not match the embedded public key")
        else:
            if len(data) != 32:  # noqa: PLR2004
                raise ValueError(f"secp256k1 secret key must be 32 bytes long, got {len(data)}")
            seed = data
            try:
                self._secp256k1_key = keys.PrivateKey(seed)
            except (ValidationError, EthUtilsValidationError) as exc:
                raise ValueError(f"Invalid secp256k1 secret key: {exc}") from exc

        self.key_type = key_type
        self._seed = bytes(seed)

    @classmethod
    def generate(cls, key_type: KeyType = KeyType.ED25519) -> "SecretKey":
        """Creates a random secret key."""
        if key_type == KeyType.ED25519:
            seed = Ed25519PrivateKey.generate().private_bytes(
                Encoding.Raw, PrivateFormat.Raw, NoEncryption()
            )
            return cls(key_type, seed)
        return cls(key_type, os.urandom(32))

    @classmethod
    def from_string(cls, value: str) -> "SecretKey":
        """Parses a secret key from the ``<key type>:<base58 data>`` form."""
        key_type, data = _parse_tagged(value)
        try:
            return cls(key_type, data)
        except ValueError as exc:
            raise ParseError(str(exc)) from exc

    def _ed25519_public_bytes(self) -> bytes:
        return self._ed25519_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    def public_key(self) -> PublicKey:
        """Returns the public key corresponding to this secret key."""
        if self.key_type == KeyType.ED25519:
            return PublicKey(self.key_type, self._ed25519_public_bytes())
        return PublicKey(self.key_type, self._secp256k1_key.public_key.to_bytes())

    def sign(self, message: bytes) -> Signature:
        """
        Signs ``message``.
        For secp256k1 keys ``message`` must be a 32-byte hash.
        """
        if self.key_type == KeyType.ED25519:
            return Signature(self.key_type, self._ed25519_key.sign(message))
        if len(message) != 32:  # noqa: PLR2004
            raise ValueError(f"secp256k1 signs 32-byte hashes, got {len(message)} bytes")
        return Signature(self.key_type, self._secp256k1_key.sign_msg_hash(message).to_bytes())

    def __str__(self) -> str:
        if self.key_type == KeyType.ED25519:
            data = self._seed + self._ed25519_public_bytes()
        else:
            data = self._seed
        return f"{self.key_type.prefix}:{base58.b58encode(data).decode()}"

    def __repr__(self) -> str:
        # Never show the secret part.
        return f"SecretKey(public_key={self.public_key()})"
