"""Signers that own, or can reach, key material.

Three flavours exist:

* :class:`LocalSigner` wraps an ``eth_account`` key held in memory.
* :class:`JsonRpcSigner` asks a node (``--account-rpc``) to sign.
* :class:`VoidSigner` knows only an address and refuses to sign.

None of these are handed to commands directly; :mod:`ethcli.authorized`
wraps them so every signature goes through the consent prompt.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import is_checksum_address, to_bytes, to_checksum_address, to_hex

from .provider import BaseProvider, JsonRpcProvider, to_rpc_transaction

logger = logging.getLogger(__name__)

DEFAULT_HD_PATH = "m/44'/60'/0'/0/0"
_SECP256K1_HALF_BITS = 255

Account.enable_unaudited_hdwallet_features()


class SignerError(RuntimeError):
    """Raised when a signer cannot perform the requested operation."""


@dataclass(frozen=True)
class Signature:
    """A secp256k1 signature in the forms the CLI prints."""

    flat: str
    r: str
    s: str
    v: int
    recid: int
    vs: str

    @classmethod
    def from_parts(cls, r: int, s: int, v: int) -> "Signature":
        recid = _recovery_id(v)
        r_hex = to_hex(r.to_bytes(32, "big"))
        s_hex = to_hex(s.to_bytes(32, "big"))
        flat = to_hex(r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([27 + recid]))
        vs = to_hex((s | (recid << _SECP256K1_HALF_BITS)).to_bytes(32, "big"))
        return cls(flat=flat, r=r_hex, s=s_hex, v=v, recid=recid, vs=vs)


def _recovery_id(v: int) -> int:
    if v in (0, 1):
        return v
    if v in (27, 28):
        return v - 27
    # EIP-155: v = chain_id * 2 + 35 + recid
    return (v - 35) % 2


def split_signature(signature: str | bytes) -> Signature:
    """Decompose a 65-byte ``r || s || v`` signature."""

    raw = to_bytes(hexstr=signature) if isinstance(signature, str) else bytes(signature)
    if len(raw) != 65:
        raise SignerError(f"invalid signature length {len(raw)}")
    return Signature.from_parts(
        int.from_bytes(raw[:32], "big"), int.from_bytes(raw[32:64], "big"), raw[64]
    )


@dataclass(frozen=True)
class SignedTransaction:
    raw_transaction: str
    hash: str | None = None
    signature: Signature | None = None


def to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)


def message_bytes(message: str | bytes) -> bytes:
    return message.encode("utf-8") if isinstance(message, str) else bytes(message)


async def resolve_properties(values: Mapping[str, Any]) -> dict[str, Any]:
    """Await every pending (awaitable) value of a transaction request."""

    resolved: dict[str, Any] = {}
    for key, value in values.items():
        if inspect.isawaitable(value):
            value = await value
        resolved[key] = value
    return resolved


def _check_from(tx: Mapping[str, Any], address: str) -> None:
    sender = tx.get("from")
    if sender is not None and to_checksum_address(sender) != address:
        raise SignerError(f"transaction from address mismatch: {sender} != {address}")


async def populate_transaction(
    provider: BaseProvider | None, tx: Mapping[str, Any], address: str
) -> dict[str, Any]:
    """Fill ``from``, ``nonce``, ``gasPrice``, ``chainId`` and ``gasLimit``.

    Only the provider and the sender address are needed, so a transaction can
    be fully described before any key material is unlocked.
    """

    populated = await resolve_properties(tx)
    _check_from(populated, address)
    populated["from"] = address

    missing = [
        key for key in ("nonce", "gasPrice", "chainId", "gasLimit") if populated.get(key) is None
    ]
    if missing and provider is None:
        raise SignerError(f"missing provider to populate {', '.join(missing)}")
    if populated.get("nonce") is None:
        populated["nonce"] = await provider.get_transaction_count(address, "pending")
    if populated.get("gasPrice") is None:
        populated["gasPrice"] = await provider.get_gas_price()
    if populated.get("chainId") is None:
        populated["chainId"] = (await provider.get_network()).chain_id
    if populated.get("gasLimit") is None:
        populated["gasLimit"] = await provider.estimate_gas(populated)
    return populated


class Signer:
    """Base class; subclasses implement the actual signing."""

    provider: BaseProvider | None = None

    async def get_address(self) -> str:
        raise NotImplementedError

    async def sign_message(self, message: str | bytes) -> str:
        raise NotImplementedError

    async def sign_transaction(self, tx: Mapping[str, Any]) -> SignedTransaction:
        raise NotImplementedError

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        raise NotImplementedError

    async def populate_transaction(self, tx: Mapping[str, Any]) -> dict[str, Any]:
        return await populate_transaction(self.provider, tx, await self.get_address())


class LocalSigner(Signer):
    """Signer holding a private key in memory."""

    def __init__(self, account: LocalAccount, provider: BaseProvider | None = None) -> None:
        self._account = account
        self.provider = provider

    @classmethod
    def from_key(
        cls, private_key: str | bytes, provider: BaseProvider | None = None
    ) -> "LocalSigner":
        return cls(Account.from_key(private_key), provider)

    @classmethod
    def from_mnemonic(
        cls, phrase: str, provider: BaseProvider | None = None, path: str = DEFAULT_HD_PATH
    ) -> "LocalSigner":
        return cls(Account.from_mnemonic(phrase, account_path=path), provider)

    def __repr__(self) -> str:
        return f"LocalSigner({self.address!r})"

    @property
    def address(self) -> str:
        return self._account.address

    def connect(self, provider: BaseProvider | None) -> "LocalSigner":
        return LocalSigner(self._account, provider)

    async def get_address(self) -> str:
        return self.address

    async def sign_message(self, message: str | bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=message_bytes(message)))
        return to_hex(signed.signature)

    async def sign_transaction(self, tx: Mapping[str, Any]) -> SignedTransaction:
        tx = await resolve_properties(tx)
        _check_from(tx, self.address)
        fields: dict[str, Any] = {
            "nonce": to_int(tx.get("nonce") or 0),
            "gasPrice": to_int(tx.get("gasPrice") or 0),
            "gas": to_int(tx.get("gasLimit") or 0),
            "value": to_int(tx.get("value") or 0),
            "data": tx.get("data") or "0x",
        }
        if tx.get("to"):
            fields["to"] = to_checksum_address(tx["to"])
        if tx.get("chainId"):
            fields["chainId"] = to_int(tx["chainId"])

        signed = self._account.sign_transaction(fields)
        return SignedTransaction(
            raw_transaction=to_hex(signed.raw_transaction),
            hash=to_hex(signed.hash),
            signature=Signature.from_parts(signed.r, signed.s, signed.v),
        )

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        if self.provider is None:
            raise SignerError("missing provider")
        signed = await self.sign_transaction(await self.populate_transaction(tx))
        return await self.provider.send_raw_transaction(signed.raw_transaction)


def _checked_address(address: str) -> str:
    """Checksum ``address``, rejecting mixed-case input with a bad checksum."""

    body = address[2:] if address[:2].lower() == "0x" else address
    if body != body.lower() and body != body.upper() and not is_checksum_address(address):
        raise ValueError(f"bad address checksum: {address}")
    return to_checksum_address(address)


class JsonRpcSigner(Signer):
    """Signer backed by an account unlocked on a JSON-RPC node."""

    def __init__(self, provider: JsonRpcProvider, address_or_index: str | int) -> None:
        self.provider = provider
        if isinstance(address_or_index, int):
            self._index: int | None = address_or_index
            self._address: str | None = None
        else:
            self._index = None
            self._address = _checked_address(address_or_index)

    def __repr__(self) -> str:
        target = self._address if self._index is None else f"#{self._index}"
        return f"JsonRpcSigner({target})"

    async def get_address(self) -> str:
        if self._address is None:
            accounts = await self.provider.list_accounts()
            if self._index >= len(accounts):
                raise SignerError(f"unknown account #{self._index}")
            self._address = accounts[self._index]
        return self._address

    async def sign_message(self, message: str | bytes) -> str:
        address = await self.get_address()
        return await self.provider.request(
            "personal_sign", [to_hex(message_bytes(message)), address.lower()]
        )

    async def sign_transaction(self, tx: Mapping[str, Any]) -> SignedTransaction:
        address = await self.get_address()
        tx = await resolve_properties(tx)
        _check_from(tx, address)
        result = await self.provider.request(
            "eth_signTransaction", [to_rpc_transaction({**tx, "from": address})]
        )
        # geth returns {"raw": ..., "tx": {...}}; other nodes return the raw hex
        if isinstance(result, dict):
            fields = result.get("tx") or {}
            signature = None
            if all(fields.get(key) is not None for key in ("r", "s", "v")):
                signature = Signature.from_parts(
                    to_int(fields["r"]), to_int(fields["s"]), to_int(fields["v"])
                )
            return SignedTransaction(
                raw_transaction=result["raw"], hash=fields.get("hash"), signature=signature
            )
        return SignedTransaction(raw_transaction=result)

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        address = await self.get_address()
        tx = await resolve_properties(tx)
        _check_from(tx, address)
        return await self.provider.request(
            "eth_sendTransaction", [to_rpc_transaction({**tx, "from": address})]
        )


class VoidSigner(Signer):
    """Address-only signer used for watch-only accounts."""

    def __init__(self, address: str, provider: BaseProvider | None = None) -> None:
        self.address = to_checksum_address(address)
        self.provider = provider

    def __repr__(self) -> str:
        return f"VoidSigner({self.address!r})"

    async def get_address(self) -> str:
        return self.address

    async def sign_message(self, message: str | bytes) -> str:
        raise SignerError("VoidSigner cannot sign messages")

    async def sign_transaction(self, tx: Mapping[str, Any]) -> SignedTransaction:
        raise SignerError("VoidSigner cannot sign transactions")

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        raise SignerError("VoidSigner cannot send transactions")
