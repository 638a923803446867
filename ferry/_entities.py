import hashlib
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, TypeVar, cast

import base58

TypedDataLike = TypeVar("TypedDataLike", bound="TypedData")


TypedQuantityLike = TypeVar("TypedQuantityLike", bound="TypedQuantity")


class ParseError(ValueError):
    """Raised when a primitive value cannot be parsed from its textual form."""


class TypedData(ABC):
    def __init__(self, value: bytes):
        self._value = value
        if not isinstance(value, bytes):
            raise TypeError(
                f"{self.__class__.__name__} must be a bytestring, got {type(value).__name__}"
            )
        if len(value) != self._length():
            raise ValueError(
                f"{self.__class__.__name__} must be {self._length()} bytes long, got {len(value)}"
            )

    @abstractmethod
    def _length(self) -> int:
        """Returns the length of this type's values representation in bytes."""

    @classmethod
    def from_base58(cls: type[TypedDataLike], value: str) -> TypedDataLike:
        """Creates the object from its base58 representation."""
        try:
            data = base58.b58decode(value)
        except ValueError as exc:
            raise ParseError(f"Invalid base58 string: {value!r}") from exc
        try:
            return cls(data)
        except ValueError as exc:
            raise ParseError(str(exc)) from exc

    def __bytes__(self) -> bytes:
        return self._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self._value == cast(TypedData, other)._value

    def __str__(self) -> str:
        return base58.b58encode(self._value).decode()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}.from_base58("{self}")'


class CryptoHash(TypedData):
    """A 32-byte SHA-256 digest identifying blocks, transactions and receipts."""

    def _length(self) -> int:
        return 32

    @classmethod
    def hash(cls, data: bytes) -> "CryptoHash":
        """Returns the SHA-256 hash of ``data``."""
        return cls(hashlib.sha256(data).digest())


class TypedQuantity:
    def __init__(self, value: int):
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(
                f"{self.__class__.__name__} must be an integer, got {type(value).__name__}"
            )
        if value < 0:
            raise ValueError(f"{self.__class__.__name__} must be non-negative, got {value}")
        self._value = value

    def __hash__(self) -> int:
        return hash(self._value)

    def __int__(self) -> int:
        return self._value

    def _check_type(self: TypedQuantityLike, other: Any) -> TypedQuantityLike:
        if type(self) != type(other):
            raise TypeError(f"Incompatible types: {type(self).__name__} and {type(other).__name__}")
        return cast(TypedQuantityLike, other)

    def __eq__(self, other: object) -> bool:
        # Only ordering and arithmetic require matching types.
        if type(self) is not type(other):
            return NotImplemented
        return self._value == cast(TypedQuantity, other)._value

    def __add__(self: TypedQuantityLike, other: Any) -> TypedQuantityLike:
        return type(self)(self._value + self._check_type(other)._value)

    def __sub__(self: TypedQuantityLike, other: Any) -> TypedQuantityLike:
        return type(self)(self._value - self._check_type(other)._value)

    def __mul__(self: TypedQuantityLike, other: int) -> TypedQuantityLike:
        if not isinstance(other, int):
            raise TypeError(f"Expected an integer, got {type(other).__name__}")
        return type(self)(self._value * other)

    def __floordiv__(self: TypedQuantityLike, other: int) -> TypedQuantityLike:
        if not isinstance(other, int):
            raise TypeError(f"Expected an integer, got {type(other).__name__}")
        return type(self)(self._value // other)

    def __gt__(self, other: Any) -> bool:
        return self._value > self._check_type(other)._value

    def __ge__(self, other: Any) -> bool:
        return self._value >= self._check_type(other)._value

    def __lt__(self, other: Any) -> bool:
        return self._value < self._check_type(other)._value

    def __le__(self, other: Any) -> bool:
        return self._value <= self._check_type(other)._value

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._value})"


class NearToken(TypedQuantity):
    """
    Represents a sum in the native currency.

    Arithmetic and comparison methods perform strict type checking,
    so token amounts cannot be mixed with gas amounts.
    Only integer constructors are provided, so that an amount can never
    silently lose precision on the way in.
    """

    YOCTO_PER_NEAR = 10**24

    @classmethod
    def yocto(cls, value: int) -> "NearToken":
        """Creates a sum from the amount in yoctoNEAR (``10^(-24)`` of the main unit)."""
        return cls(value)

    @classmethod
    def millinear(cls, value: int) -> "NearToken":
        """Creates a sum from the amount in milliNEAR (``10^(-3)`` of the main unit)."""
        return cls(value * 10**21)

    @classmethod
    def near(cls, value: int) -> "NearToken":
        """Creates a sum from the amount in the main currency unit."""
        return cls(value * cls.YOCTO_PER_NEAR)

    def as_yocto(self) -> int:
        """Returns the amount in yoctoNEAR."""
        return self._value

    def __str__(self) -> str:
        whole, frac = divmod(self._value, self.YOCTO_PER_NEAR)
        if frac == 0:
            return f"{whole} NEAR"
        return f"{whole}.{str(frac).rjust(24, '0').rstrip('0')} NEAR"


class Gas(TypedQuantity):
    """Represents an amount of gas units."""

    @classmethod
    def gas(cls, value: int) -> "Gas":
        """Creates the amount from raw gas units."""
        return cls(value)

    @classmethod
    def ggas(cls, value: int) -> "Gas":
        """Creates the amount from gigagas (``10^9`` units)."""
        return cls(value * 10**9)

    @classmethod
    def tgas(cls, value: int) -> "Gas":
        """Creates the amount from teragas (``10^12`` units)."""
        return cls(value * 10**12)

    def as_gas(self) -> int:
        """Returns the amount in gas units."""
        return self._value

    def __str__(self) -> str:
        return f"{self._value / 10**12:g} Tgas"


DEFAULT_GAS = Gas.tgas(30)
"""Gas attached to function calls when none is given."""


_ACCOUNT_ID_RE = re.compile(r"^(([a-z\d]+[\-_])*[a-z\d]+\.)*([a-z\d]+[\-_])*[a-z\d]+$")
_IMPLICIT_RE = re.compile(r"^[0-9a-f]{64}$")
_ETH_IMPLICIT_RE = re.compile(r"^0x[0-9a-f]{40}$")

ACCOUNT_ID_MIN_LENGTH = 2
ACCOUNT_ID_MAX_LENGTH = 64


class AccountId:
    """
    A validated account identifier.

    Validation happens once, at construction,
    so any existing ``AccountId`` object is known to be well-formed.
    """

    def __init__(self, value: str):
        if not isinstance(value, str):
            raise TypeError(f"AccountId must be a string, got {type(value).__name__}")
        if not ACCOUNT_ID_MIN_LENGTH <= len(value) <= ACCOUNT_ID_MAX_LENGTH:
            raise ParseError(
                f"Account ID must be between {ACCOUNT_ID_MIN_LENGTH} and {ACCOUNT_ID_MAX_LENGTH} "
                f"characters long, got {len(value)}: {value!r}"
            )
        if not _ACCOUNT_ID_RE.match(value):
            raise ParseError(f"Invalid account ID: {value!r}")
        self._value = value

    @property
    def is_implicit(self) -> bool:
        """``True`` if this is a 64-character hex implicit account (an ed25519 public key)."""
        return bool(_IMPLICIT_RE.match(self._value))

    @property
    def is_eth_implicit(self) -> bool:
        """``True`` if this is an Ethereum-style ``0x``-prefixed implicit account."""
        return bool(_ETH_IMPLICIT_RE.match(self._value))

    @property
    def is_top_level(self) -> bool:
        """``True`` for named accounts without a parent (e.g. ``near``, ``testnet``)."""
        return "." not in self._value and not self.is_implicit and not self.is_eth_implicit

    def is_sub_account_of(self, parent: "AccountId") -> bool:
        """Returns ``True`` if this account is a direct sub-account of ``parent``."""
        prefix, dot, rest = self._value.partition(".")
        return bool(dot) and bool(prefix) and rest == parent._value  # noqa: SLF001

    @property
    def parent(self) -> "None | AccountId":
        """The parent account, or ``None`` for top-level and implicit accounts."""
        _, dot, rest = self._value.partition(".")
        if not dot:
            return None
        return AccountId(rest)

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"AccountId({self._value!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AccountId) and self._value == other._value

    def __hash__(self) -> int:
        return hash((AccountId, self._value))


class Finality(Enum):
    """Named block references by finality level."""

    OPTIMISTIC = "optimistic"
    """The latest block, may still be reorganized."""

    NEAR_FINAL = "near-final"
    """A block that is very unlikely to be reorganized."""

    FINAL = "final"
    """A finalized block."""


BlockReference = Finality | int | CryptoHash
"""A block identified by finality level, height, or hash."""


class TxExecutionStatus(Enum):
    """
    How long ``send_tx`` should block before returning.
    The levels are ordered by how long the call blocks.
    """

    NONE = "NONE"
    """Return as soon as the node has accepted the transaction."""

    INCLUDED = "INCLUDED"
    """Wait until the transaction is included in a block."""

    EXECUTED_OPTIMISTIC = "EXECUTED_OPTIMISTIC"
    """Wait until all the receipts are executed in optimistic blocks."""

    INCLUDED_FINAL = "INCLUDED_FINAL"
    """Wait until the block with the transaction is finalized."""

    EXECUTED = "EXECUTED"
    """Both ``INCLUDED_FINAL`` and ``EXECUTED_OPTIMISTIC``."""

    FINAL = "FINAL"
    """Wait until the blocks with all the receipts are finalized."""

    @property
    def rank(self) -> int:
        return list(TxExecutionStatus).index(self)

    @property
    def is_executed(self) -> bool:
        """``True`` if the execution outcome is available at this level."""
        return self in (
            TxExecutionStatus.EXECUTED_OPTIMISTIC,
            TxExecutionStatus.EXECUTED,
            TxExecutionStatus.FINAL,
        )

    def __ge__(self, other: "TxExecutionStatus") -> bool:
        if not isinstance(other, TxExecutionStatus):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: "TxExecutionStatus") -> bool:
        if not isinstance(other, TxExecutionStatus):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: "TxExecutionStatus") -> bool:
        if not isinstance(other, TxExecutionStatus):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: "TxExecutionStatus") -> bool:
        if not isinstance(other, TxExecutionStatus):
            return NotImplemented
        return self.rank < other.rank
