from collections.abc import AsyncIterator
from typing import Any

import pytest

from ferry import HTTPProviderServer, LocalProvider, ProviderError, RPCError
from ferry._provider import RPC_JSON, ProviderSession


@pytest.fixture
async def provider_session(server: HTTPProviderServer) -> AsyncIterator[ProviderSession]:
    async with server.http_provider.session() as session:
        yield session


def rpc_error(excinfo: pytest.ExceptionInfo[ProviderError]) -> RPCError:
    error = excinfo.value.error
    assert isinstance(error, RPCError)
    return error


async def test_happy_path(provider_session: ProviderSession) -> None:
    result = await provider_session.rpc("status", [])
    assert isinstance(result, dict)
    assert result["chain_id"] == "localnet"


async def test_invalid_method(
    provider_session: ProviderSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    # There is no public way to do that, have to use the internals
    monkeypatch.setattr(
        provider_session,
        "_prepare_request",
        lambda _method, params: {
            "jsonrpc": "2.0",
            "method": ["method1", "method2"],
            "params": params,
            "id": 0,
        },
    )

    with pytest.raises(ProviderError) as excinfo:
        await provider_session.rpc("status", [])
    error = rpc_error(excinfo)
    assert error.code == -32600
    assert error.name == "REQUEST_VALIDATION_ERROR"
    assert error.cause_name == "PARSE_ERROR"


async def test_invalid_parameters(
    provider_session: ProviderSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        provider_session,
        "_prepare_request",
        lambda method, _params: {"jsonrpc": "2.0", "method": method, "params": 1, "id": 0},
    )

    # Invalid parameters format (neither an object nor a list)
    with pytest.raises(ProviderError) as excinfo:
        await provider_session.rpc("status", [])
    assert rpc_error(excinfo).code == -32600


async def test_node_errors(provider_session: ProviderSession) -> None:
    with pytest.raises(ProviderError) as excinfo:
        await provider_session.rpc("unknown_method", [])
    error = rpc_error(excinfo)
    assert error.code == -32601
    assert error.cause_name == "METHOD_NOT_FOUND"

    with pytest.raises(ProviderError) as excinfo:
        await provider_session.rpc("query", {"request_type": "view_account", "finality": "final"})
    error = rpc_error(excinfo)
    assert error.cause_name == "PARSE_ERROR"

    with pytest.raises(ProviderError) as excinfo:
        await provider_session.rpc(
            "query",
            {"request_type": "view_account", "account_id": "nobody.near", "finality": "final"},
        )
    error = rpc_error(excinfo)
    assert error.name == "HANDLER_ERROR"
    assert error.cause_name == "UNKNOWN_ACCOUNT"
    assert error.cause_info["requested_account_id"] == "nobody.near"


async def test_internal_error(
    provider_session: ProviderSession,
    local_provider: LocalProvider,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def mock_rpc(*_args: Any) -> RPC_JSON:
        raise RuntimeError("foo")

    monkeypatch.setattr(local_provider, "rpc", mock_rpc)
    with pytest.raises(
        ProviderError, match="Provider error: Expected a JSON response, got HTTP status 500: foo"
    ):
        await provider_session.rpc("status", [])
