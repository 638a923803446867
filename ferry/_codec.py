"""Borsh encoding and decoding of the primitives used in transactions and signed messages."""

from collections.abc import Callable, Sequence
from typing import TypeVar

from ._entities import AccountId, CryptoHash, ParseError
from ._keys import KeyType, PublicKey, Signature

_T = TypeVar("_T")

# Blob and collection lengths are serialized as u32.
MAX_LENGTH = 2**32 - 1


class EncodingError(Exception):
    """Raised when a value cannot be encoded (out of range integers, oversized blobs etc)."""


class DecodingError(Exception):
    """Raised when the given bytes are not a valid encoding of the requested type."""


class BorshWriter:
    """Accumulates the canonical little-endian encoding of a sequence of values."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def _uint(self, value: int, size: int) -> None:
        if not isinstance(value, int) or isinstance(value, bool):
            raise EncodingError(f"Expected an integer, got {type(value).__name__}")
        if not 0 <= value < 2 ** (size * 8):
            raise EncodingError(f"The value {value} does not fit into u{size * 8}")
        self._chunks.append(value.to_bytes(size, byteorder="little"))

    def u8(self, value: int) -> None:
        self._uint(value, 1)

    def u16(self, value: int) -> None:
        self._uint(value, 2)

    def u32(self, value: int) -> None:
        self._uint(value, 4)

    def u64(self, value: int) -> None:
        self._uint(value, 8)

    def u128(self, value: int) -> None:
        self._uint(value, 16)

    def boolean(self, value: bool) -> None:  # noqa: FBT001
        self.u8(1 if value else 0)

    def fixed(self, value: bytes, length: int) -> None:
        """Writes a fixed-size byte array without a length prefix."""
        if len(value) != length:
            raise EncodingError(f"Expected {length} bytes, got {len(value)}")
        self._chunks.append(bytes(value))

    def blob(self, value: bytes, max_length: int = MAX_LENGTH) -> None:
        """Writes a length-prefixed byte array."""
        if not isinstance(value, bytes | bytearray):
            raise EncodingError(f"Expected bytes, got {type(value).__name__}")
        if len(value) > max_length:
            raise EncodingError(f"Byte blob of length {len(value)} exceeds the limit {max_length}")
        self.u32(len(value))
        self._chunks.append(bytes(value))

    def string(self, value: str) -> None:
        if not isinstance(value, str):
            raise EncodingError(f"Expected a string, got {type(value).__name__}")
        self.blob(value.encode())

    def option(self, value: None | _T, write: Callable[[_T], None]) -> None:
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            write(value)

    def vec(self, items: Sequence[_T], write: Callable[[_T], None]) -> None:
        if len(items) > MAX_LENGTH:
            raise EncodingError(f"A sequence of length {len(items)} is too long")
        self.u32(len(items))
        for item in items:
            write(item)

    def account_id(self, value: AccountId) -> None:
        if not isinstance(value, AccountId):
            raise EncodingError(f"Expected an AccountId, got {type(value).__name__}")
        self.string(str(value))

    def crypto_hash(self, value: CryptoHash) -> None:
        self.fixed(bytes(value), 32)

    def public_key(self, value: PublicKey) -> None:
        self.u8(value.key_type.value)
        self.fixed(value.data, value.key_type.public_key_length)

    def signature(self, value: Signature) -> None:
        self.u8(value.key_type.value)
        self.fixed(value.data, value.key_type.signature_length)

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


class BorshReader:
    """Reads values back from their canonical encoding."""

    def __init__(self, data: bytes):
        self._data = memoryview(data)
        self._pos = 0

    def _take(self, size: int) -> bytes:
        if self._pos + size > len(self._data):
            raise DecodingError(
                f"Unexpected end of data: need {size} bytes at offset {self._pos}, "
                f"have {len(self._data) - self._pos}"
            )
        chunk = bytes(self._data[self._pos : self._pos + size])
        self._pos += size
        return chunk

    def peek_u8(self) -> int:
        if self._pos >= len(self._data):
            raise DecodingError("Unexpected end of data")
        return self._data[self._pos]

    def _uint(self, size: int) -> int:
        return int.from_bytes(self._take(size), byteorder="little")

    def u8(self) -> int:
        return self._uint(1)

    def u16(self) -> int:
        return self._uint(2)

    def u32(self) -> int:
        return self._uint(4)

    def u64(self) -> int:
        return self._uint(8)

    def u128(self) -> int:
        return self._uint(16)

    def boolean(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise DecodingError(f"Invalid boolean tag: {value}")
        return value == 1

    def fixed(self, length: int) -> bytes:
        return self._take(length)

    def blob(self) -> bytes:
        return self._take(self.u32())

    def string(self) -> str:
        try:
            return self.blob().decode()
        except UnicodeDecodeError as exc:
            raise DecodingError(f"Invalid UTF-8 string: {exc}") from exc

    def option(self, read: Callable[[], _T]) -> None | _T:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return read()
        raise DecodingError(f"Invalid option tag: {tag}")

    def vec(self, read: Callable[[], _T]) -> list[_T]:
        return [read() for _ in range(self.u32())]

    def account_id(self) -> AccountId:
        value = self.string()
        try:
            return AccountId(value)
        except ParseError as exc:
            raise DecodingError(str(exc)) from exc

    def crypto_hash(self) -> CryptoHash:
        return CryptoHash(self.fixed(32))

    def _key_type(self) -> KeyType:
        tag = self.u8()
        try:
            return KeyType(tag)
        except ValueError as exc:
            raise DecodingError(f"Unknown key type tag: {tag}") from exc

    def public_key(self) -> PublicKey:
        key_type = self._key_type()
        return PublicKey(key_type, self.fixed(key_type.public_key_length))

    def signature(self) -> Signature:
        key_type = self._key_type()
        return Signature(key_type, self.fixed(key_type.signature_length))

    def finish(self) -> None:
        """Raises :py:class:`DecodingError` if there is unread data left."""
        if self._pos != len(self._data):
            raise DecodingError(f"{len(self._data) - self._pos} trailing bytes left")
