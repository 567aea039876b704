"""Turn ``--account*`` values into deferred signing identities.

Accepted ``--account`` credentials, tried in this order:

* ``-``: read a private key or mnemonic from the terminal (masked)
* a raw 32-byte hex private key
* a BIP-39 mnemonic
* a path to a JSON wallet (keystore v3 or crowdsale); the password is only
  requested when the account is first used

Classification only ever reads and parses files; it never decrypts a wallet
or derives a key just to decide which branch applies.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, TypeVar, Union

from eth_account.hdaccount import Language, Mnemonic

from .args import UsageError
from .keystore import WrongPasswordError, decrypt_json_wallet, get_json_wallet_address
from .prompt import OperationCancelled, ProgressBar, PromptCancelled, get_password
from .provider import BaseProvider, JsonRpcProvider
from .signers import JsonRpcSigner, LocalSigner, Signer, VoidSigner

if TYPE_CHECKING:
    from .plugin import Plugin

logger = logging.getLogger(__name__)

T = TypeVar("T")
SignerFactory = Callable[[], Awaitable[Signer]]
AddressSource = Union[str, Callable[[], Awaitable[str]]]

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_INDEX_RE = re.compile(r"^[0-9]+$")
_MNEMONIC = Mnemonic(Language.ENGLISH)


class IncorrectPasswordError(RuntimeError):
    """Raised when a JSON wallet password does not decrypt the wallet."""

    def __init__(self, message: str = "Incorrect password.") -> None:
        super().__init__(message)


class _AsyncOnce(Generic[T]):
    """Run an async factory at most once; concurrent callers share the result.

    A failed run is forgotten so the next caller may try again (for example
    after a mistyped password).
    """

    def __init__(self, factory: Callable[[], Awaitable[T]]) -> None:
        self._factory = factory
        self._task: asyncio.Future[T] | None = None
        self._done = False
        self._value: T | None = None

    async def get(self) -> T:
        if self._done:
            return self._value  # type: ignore[return-value]
        if self._task is None:
            self._task = asyncio.ensure_future(self._factory())
        task = self._task
        try:
            value = await task
        except BaseException:
            if self._task is task:
                self._task = None
            raise
        self._value = value
        self._done = True
        return value


class DeferredSigner:
    """An address paired with a lazily materialized real signer."""

    def __init__(self, address: AddressSource, factory: SignerFactory) -> None:
        if isinstance(address, str):
            self.__address: _AsyncOnce[str] = _AsyncOnce(_ready(address))
        else:
            self.__address = _AsyncOnce(address)
        self.__signer: _AsyncOnce[Signer] = _AsyncOnce(factory)

    def __repr__(self) -> str:
        return "DeferredSigner(...)"

    async def get_address(self) -> str:
        return await self.__address.get()

    async def get_signer(self) -> Signer:
        return await self.__signer.get()


def _ready(value: T) -> Callable[[], Awaitable[T]]:
    async def factory() -> T:
        return value

    return factory


def is_private_key(value: str) -> bool:
    return bool(_PRIVATE_KEY_RE.match(value))


def normalize_mnemonic(value: str) -> str:
    return " ".join(value.split())


def is_mnemonic(value: str) -> bool:
    return _MNEMONIC.is_mnemonic_valid(normalize_mnemonic(value))


def _read_wallet_file(path: str) -> str | None:
    try:
        candidate = Path(path)
        if not candidate.is_file():
            return None
        return candidate.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        logger.debug("Account value is not a readable wallet file: %s", exc)
        return None


def _json_wallet_factory(path: str, content: str, plugin: "Plugin") -> SignerFactory:
    async def factory() -> Signer:
        try:
            password = await get_password(f"Password ({path}): ")
        except PromptCancelled as exc:
            raise OperationCancelled() from exc
        try:
            wallet = await decrypt_json_wallet(content, password, ProgressBar("Decrypting"))
        except WrongPasswordError as exc:
            raise IncorrectPasswordError() from exc
        logger.debug("Decrypted JSON wallet %s", wallet.address)
        return LocalSigner.from_key(wallet.private_key, plugin.provider)

    return factory


async def load_account(credential: str, plugin: "Plugin") -> DeferredSigner:
    """Classify an ``--account`` value and build its deferred identity."""

    if credential == "-":
        try:
            content = await get_password("Private Key / Mnemonic: ")
        except PromptCancelled as exc:
            raise OperationCancelled() from exc
        return await load_account(content, plugin)

    if is_private_key(credential):
        signer = LocalSigner.from_key(credential, plugin.provider)
        logger.debug("Loaded raw private key account %s", signer.address)
        return DeferredSigner(signer.address, _ready(signer))

    if is_mnemonic(credential):
        signer = LocalSigner.from_mnemonic(normalize_mnemonic(credential), plugin.provider)
        logger.debug("Loaded mnemonic account %s", signer.address)
        return DeferredSigner(signer.address, _ready(signer))

    content = _read_wallet_file(credential)
    if content is not None:
        address = get_json_wallet_address(content)
        if address:
            logger.debug("Loaded JSON wallet account %s", address)
            return DeferredSigner(address, _json_wallet_factory(credential, content, plugin))

    raise UsageError("unknown account option - [REDACTED]")


def load_rpc_account(value: str, provider: JsonRpcProvider) -> DeferredSigner:
    """Build an identity for an account unlocked on the ``--rpc`` node.

    ``value`` is either a decimal index into ``eth_accounts`` or an address;
    a malformed address raises :class:`ValueError`.
    """

    target: str | int = int(value) if _INDEX_RE.match(value) else value
    signer = JsonRpcSigner(provider, target)
    return DeferredSigner(signer.get_address, _ready(signer))


def load_void_account(address_or_name: str, provider: BaseProvider) -> DeferredSigner:
    """Build a watch-only identity; the name is resolved on first use."""

    async def resolve() -> str:
        address = await provider.resolve_name(address_or_name)
        if address is None:
            raise RuntimeError(f"ENS name not configured - {address_or_name}")
        return address

    async def factory() -> Signer:
        return VoidSigner(await identity.get_address(), provider)

    identity = DeferredSigner(resolve, factory)
    return identity
