import itertools
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path

from ._entities import AccountId, ParseError
from ._errors import SigningError
from ._keys import PublicKey, SecretKey, Signature
from ._message import MessageParams, SignedMessage


class ClaimedKey(ABC):
    """A key selected by a signer for one submission."""

    @property
    @abstractmethod
    def public_key(self) -> PublicKey:
        """The public key the signature will be made with."""

    @abstractmethod
    async def sign(self, message: bytes) -> Signature:
        """
        Signs ``message`` with this key.
        Raises :py:class:`SigningError` on failure.
        """


class Signer(ABC):
    """
    The base class for transaction signers.

    The client needs to know the public key before signing
    (to look up the key nonce and to put it into the transaction),
    so signing happens in two steps: :py:meth:`claim_key` selects a key
    without doing any I/O, and the returned object produces the signature.
    """

    @property
    @abstractmethod
    def account_id(self) -> AccountId:
        """The account transactions are signed for."""

    @abstractmethod
    def claim_key(self) -> ClaimedKey:
        """Selects the key to be used for the next submission."""

    async def sign(self, message: bytes) -> tuple[Signature, PublicKey]:
        """Signs ``message`` with a newly claimed key and returns the signature and the key."""
        key = self.claim_key()
        return await key.sign(message), key.public_key

    async def sign_message(self, params: MessageParams) -> SignedMessage:
        """Signs an off-chain message (NEP-413) on behalf of :py:attr:`account_id`."""
        signature, public_key = await self.sign(bytes(params.signing_hash()))
        return SignedMessage(
            account_id=self.account_id,
            public_key=public_key,
            signature=signature,
            state=params.state,
        )


class _LocalKey(ClaimedKey):
    def __init__(self, secret_key: SecretKey):
        self._secret_key = secret_key
        self._public_key = secret_key.public_key()

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    async def sign(self, message: bytes) -> Signature:
        try:
            return self._secret_key.sign(message)
        except ValueError as exc:
            raise SigningError(str(exc)) from exc


def _to_secret_key(secret_key: SecretKey | str) -> SecretKey:
    if isinstance(secret_key, SecretKey):
        return secret_key
    try:
        return SecretKey.from_string(secret_key)
    except ParseError as exc:
        raise SigningError(f"Invalid secret key: {exc}") from exc


class InMemorySigner(Signer):
    """
    A signer holding one secret key in memory.

    Concurrent submissions through one key will observe the same nonce
    and all but one of them will have to be rebuilt;
    use :py:class:`RotatingSigner` if you need concurrency.
    """

    def __init__(self, account_id: AccountId | str, secret_key: SecretKey | str):
        self._account_id = AccountId(account_id) if isinstance(account_id, str) else account_id
        self._key = _LocalKey(_to_secret_key(secret_key))

    @classmethod
    def random(cls, account_id: AccountId | str) -> "InMemorySigner":
        """Creates a signer with a random ed25519 key."""
        return cls(account_id, SecretKey.generate())

    @property
    def account_id(self) -> AccountId:
        return self._account_id

    @property
    def public_key(self) -> PublicKey:
        return self._key.public_key

    def claim_key(self) -> ClaimedKey:
        return self._key


class FileSigner(InMemorySigner):
    """
    A signer loading the key from a JSON credentials file
    (with ``account_id``, ``public_key``, and ``private_key`` or ``secret_key`` fields).
    """

    def __init__(self, path: str | os.PathLike[str], account_id: None | AccountId | str = None):
        path = Path(path)
        try:
            credentials = json.loads(path.read_text())
        except (OSError, ValueError) as exc:
            raise SigningError(f"Failed to read the credentials from {path}: {exc}") from exc
        if not isinstance(credentials, Mapping):
            raise SigningError(f"The credentials in {path} must be a JSON object")

        secret_key = credentials.get("private_key") or credentials.get("secret_key")
        if not isinstance(secret_key, str):
            raise SigningError(f"No private key found in {path}")

        if account_id is None:
            account_id = credentials.get("account_id")
            if not isinstance(account_id, str) or not account_id:
                raise SigningError(f"No account ID found in {path}")

        super().__init__(account_id, secret_key)

        public_key = credentials.get("public_key")
        if isinstance(public_key, str) and public_key != str(self.public_key):
            raise SigningError(f"The public key in {path} does not match the private key")

    @classmethod
    def from_keystore(
        cls,
        network_id: str,
        account_id: AccountId | str,
        credentials_dir: None | str | os.PathLike[str] = None,
    ) -> "FileSigner":
        """
        Loads the credentials from the standard location,
        ``~/.near-credentials/<network_id>/<account_id>.json``.
        """
        base = Path(credentials_dir) if credentials_dir else Path.home() / ".near-credentials"
        return cls(base / network_id / f"{account_id}.json", account_id=account_id)


class EnvSigner(InMemorySigner):
    """A signer taking the account and the key from environment variables."""

    def __init__(
        self, account_var: str = "NEAR_ACCOUNT_ID", secret_key_var: str = "NEAR_PRIVATE_KEY"
    ):
        account_id = os.environ.get(account_var)
        secret_key = os.environ.get(secret_key_var)
        if not account_id:
            raise SigningError(f"Environment variable `{account_var}` is not set")
        if not secret_key:
            raise SigningError(f"Environment variable `{secret_key_var}` is not set")
        super().__init__(account_id, secret_key)


class RotatingSigner(Signer):
    """
    A signer holding several full access keys of one account and using them in turn.

    Each key has its own nonce on the ledger, so up to ``key_count`` submissions
    can run concurrently without nonce collisions.
    The key index is taken from a counter advanced atomically on each claim.
    """

    def __init__(self, account_id: AccountId | str, secret_keys: Sequence[SecretKey | str]):
        if not secret_keys:
            raise ValueError("At least one key is required")
        self._account_id = AccountId(account_id) if isinstance(account_id, str) else account_id
        self._keys = [_LocalKey(_to_secret_key(key)) for key in secret_keys]
        self._counter = itertools.count()

    @property
    def account_id(self) -> AccountId:
        return self._account_id

    @property
    def key_count(self) -> int:
        return len(self._keys)

    @property
    def public_keys(self) -> list[PublicKey]:
        return [key.public_key for key in self._keys]

    def claim_key(self) -> ClaimedKey:
        # `next()` on `itertools.count` is atomic and never yields the same value twice.
        return self._keys[next(self._counter) % len(self._keys)]


RemoteSignFunc = Callable[[PublicKey, bytes], Awaitable[Signature]]
"""
The signature of a remote signing callback: takes the public key and the message,
returns the signature.
"""


class _RemoteKey(ClaimedKey):
    def __init__(self, public_key: PublicKey, sign_func: RemoteSignFunc):
        self._public_key = public_key
        self._sign_func = sign_func

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    async def sign(self, message: bytes) -> Signature:
        try:
            signature = await self._sign_func(self._public_key, message)
        except SigningError:
            raise
        except Exception as exc:
            raise SigningError(f"Remote signer failed: {exc}") from exc
        if signature.key_type != self._public_key.key_type:
            raise SigningError(
                f"Remote signer returned a {signature.key_type.prefix} signature "
                f"for a {self._public_key.key_type.prefix} key"
            )
        return signature


class RemoteSigner(Signer):
    """
    A signer delegating to an external service or a hardware device.
    No secret material is held locally.
    """

    def __init__(
        self, account_id: AccountId | str, public_key: PublicKey, sign_func: RemoteSignFunc
    ):
        self._account_id = AccountId(account_id) if isinstance(account_id, str) else account_id
        self._key = _RemoteKey(public_key, sign_func)

    @property
    def account_id(self) -> AccountId:
        return self._account_id

    @property
    def public_key(self) -> PublicKey:
        return self._key.public_key

    def claim_key(self) -> ClaimedKey:
        return self._key
