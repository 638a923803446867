from collections.abc import AsyncIterator

import pytest
import trio

from ferry import (
    Client,
    ClientSession,
    HTTPProviderServer,
    InMemorySigner,
    LocalProvider,
    NearToken,
)


@pytest.fixture
def local_provider() -> LocalProvider:
    return LocalProvider(root_balance=NearToken.near(1000))


@pytest.fixture
async def session(local_provider: LocalProvider) -> AsyncIterator[ClientSession]:
    client = Client(local_provider, signer=local_provider.root)
    async with client.session() as session:
        yield session


@pytest.fixture
def root_signer(local_provider: LocalProvider) -> InMemorySigner:
    return local_provider.root


@pytest.fixture
def another_signer(local_provider: LocalProvider) -> InMemorySigner:
    signer = InMemorySigner.random("alice.test.near")
    local_provider.create_account(signer.account_id, NearToken.near(100), signer.public_key)
    return signer


@pytest.fixture
async def server(
    nursery: trio.Nursery, local_provider: LocalProvider
) -> AsyncIterator[HTTPProviderServer]:
    handle = HTTPProviderServer(local_provider)
    await nursery.start(handle)
    yield handle
    await handle.shutdown()
