"""HTTP provider based on `httpx`."""

import itertools
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from http import HTTPStatus
from json import JSONDecodeError
from typing import cast

import httpx
from compages import StructuringError

from ._config import NetworkConfig
from ._provider import (
    RPC_JSON,
    InvalidResponse,
    NoResponse,
    ProtocolError,
    Provider,
    ProviderError,
    ProviderSession,
    RPCError,
    Unreachable,
)
from ._serialization import structure

logger = logging.getLogger(__name__)


class HTTPError(ProtocolError):
    """
    Raised when the provider returns a response with a status code other than 200,
    and no ``"error"`` field in the associated JSON data.
    """

    status: HTTPStatus
    """The HTTP status of the response."""

    message: str
    """The response body."""

    def __init__(self, status_code: int, message: str):
        try:
            status = HTTPStatus(status_code)
        except ValueError:  # pragma: no cover
            # How to handle it better? Ideally, `httpx` should have returned a parsed status
            # in the first place, but, alas, it just gives us an integer.
            status = HTTPStatus.INTERNAL_SERVER_ERROR

        self.status = status
        self.message = message

    def __str__(self) -> str:  # noqa: D105
        return f"HTTP status {self.status}: {self.message}"


class HTTPProvider(Provider):
    """
    A provider for RPC via HTTP(S).

    Request IDs are taken from a counter shared by all the sessions of one provider object.
    """

    def __init__(self, url: str, timeout: float = 60.0):
        self._url = url
        self._timeout = timeout
        self._request_ids = itertools.count()

    @classmethod
    def for_network(cls, network: NetworkConfig, timeout: float = 60.0) -> "HTTPProvider":
        """Creates a provider for one of the known networks."""
        return cls(network.rpc_url, timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    def _next_request_id(self) -> int:
        # `next()` on `itertools.count` is atomic, no locking needed.
        return next(self._request_ids)

    @asynccontextmanager
    async def session(self) -> AsyncIterator["HTTPProviderSession"]:  # noqa: D102
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield HTTPProviderSession(self, client)


class HTTPProviderSession(ProviderSession):
    def __init__(self, provider: HTTPProvider, http_client: httpx.AsyncClient):
        self._provider = provider
        self._client = http_client

    def _prepare_request(self, method: str, params: RPC_JSON) -> RPC_JSON:
        return {
            "jsonrpc": "2.0",
            "id": self._provider._next_request_id(),  # noqa: SLF001
            "method": method,
            "params": params,
        }

    async def rpc(self, method: str, params: RPC_JSON) -> RPC_JSON:
        json = self._prepare_request(method, params)
        logger.debug("RPC request: %s", json)
        try:
            response = await self._client.post(self._provider.url, json=json)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise ProviderError(Unreachable(str(exc) or type(exc).__name__)) from exc
        except httpx.TransportError as exc:
            raise ProviderError(NoResponse(str(exc) or type(exc).__name__)) from exc

        status = response.status_code

        try:
            response_json = response.json()
        except (JSONDecodeError, UnicodeDecodeError) as exc:
            content = response.content.decode(errors="replace")
            raise ProviderError(
                InvalidResponse(f"Expected a JSON response, got HTTP status {status}: {content}")
            ) from exc

        if not isinstance(response_json, Mapping):
            raise ProviderError(
                InvalidResponse(f"RPC response must be a dictionary, got: {response_json}")
            )
        response_json = cast("Mapping[str, RPC_JSON]", response_json)

        # Node-side errors (e.g. an unknown account) may come with any HTTP status,
        # so we are checking for the "error" field first.
        if "error" in response_json:
            try:
                error = structure(RPCError, response_json["error"])
            except StructuringError as exc:
                raise ProviderError(
                    InvalidResponse(f"Failed to parse an error response: {response_json}")
                ) from exc

            raise ProviderError(error)

        if status == HTTPStatus.OK:
            if "result" in response_json:
                return response_json["result"]
            raise ProviderError(
                InvalidResponse(f"`result` is not present in the response: {response_json}")
            )

        raise ProviderError(HTTPError(status, response.content.decode(errors="replace")))
