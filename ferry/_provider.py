from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import NewType

RPC_JSON = None | bool | int | float | str | Sequence["RPC_JSON"] | Mapping[str, "RPC_JSON"]
"""RPC requests and responses serializable to JSON."""

# Marks the fields that are kept as raw JSON when structuring responses.
RawJSON = NewType("RawJSON", object)


class InvalidResponse(Exception):
    """Raised when the remote server's response is not of an expected format."""


class Unreachable(Exception):
    """
    Raised when there is a problem connecting to the provider.
    The request is known to not have been delivered.
    """


class NoResponse(Exception):
    """
    Raised when the request may have been delivered, but no response was received
    (e.g. the connection was dropped or timed out while waiting).
    """


class ProtocolError(ABC, Exception):
    """
    A protocol-specific error, indicating that the provider returned an error status
    with no additional information allowing to categorize the error further.

    See the provider-specific derived class for this exception for more details.
    """


@dataclass
class ErrorCause:
    """The specific reason of an RPC error, as reported by the node."""

    name: str
    """The cause kind, e.g. ``UNKNOWN_ACCOUNT`` or ``INVALID_TRANSACTION``."""

    info: None | RawJSON = None
    """Cause-specific details."""


@dataclass
class RPCError(Exception):
    """A structured error returned by the node as a proper RPC response."""

    code: int
    message: str
    data: None | RawJSON = None
    name: None | str = None
    """The error category, e.g. ``HANDLER_ERROR`` or ``REQUEST_VALIDATION_ERROR``."""

    cause: None | ErrorCause = None

    @property
    def cause_name(self) -> None | str:
        return self.cause.name if self.cause is not None else None

    @property
    def cause_info(self) -> Mapping[str, RPC_JSON]:
        """The cause details if they are a JSON object, otherwise an empty dictionary."""
        if self.cause is not None and isinstance(self.cause.info, Mapping):
            return self.cause.info
        return {}

    @classmethod
    def invalid_request(cls) -> "RPCError":
        return cls(
            code=-32600,
            message="Invalid request",
            name="REQUEST_VALIDATION_ERROR",
            cause=ErrorCause(name="PARSE_ERROR"),
        )

    def __str__(self) -> str:
        cause = f" ({self.cause_name})" if self.cause is not None else ""
        return f"RPC error {self.code}{cause}: {self.message}"


@dataclass
class ProviderError(Exception):
    """Describes an error on the provider's side."""

    error: RPCError | Unreachable | NoResponse | InvalidResponse | ProtocolError
    """The specific error."""

    def __str__(self) -> str:
        return f"Provider error: {self.error}"


class Provider(ABC):
    """The base class for JSON RPC providers."""

    @abstractmethod
    @asynccontextmanager
    async def session(self) -> AsyncIterator["ProviderSession"]:
        """
        Opens a session to the provider
        (allowing the backend to perform multiple operations faster).
        """
        # mypy does not work with abstract generators correctly.
        # See https://github.com/python/mypy/issues/5070
        yield  # type: ignore[misc]


class ProviderSession(ABC):
    """
    The base class for provider sessions.

    The methods of this class may raise :py:class:`ProviderError`
    indicating a problem on the provider's side.
    """

    @abstractmethod
    async def rpc(self, method: str, params: RPC_JSON) -> RPC_JSON:
        """Calls the given RPC method with the already json-ified parameters."""
        ...
