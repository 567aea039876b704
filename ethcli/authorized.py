"""Consent-gated signer handed to every ethcli command.

:class:`AuthorizedSigner` hides the private key (or mnemonic, or decrypted
wallet) behind a deferred identity and is in charge of user interaction: each
signing or sending operation prints a summary, asks for permission and only
then unlocks the real signer.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping

from eth_utils import to_hex

from .accounts import DeferredSigner
from .prompt import OperationCancelled, get_choice
from .provider import Network
from .signers import (
    SignedTransaction,
    Signer,
    message_bytes,
    populate_transaction,
    resolve_properties,
    split_signature,
    to_int,
)
from .units import format_ether, format_units, hexlify_data

if TYPE_CHECKING:
    from .plugin import Plugin

logger = logging.getLogger(__name__)


def dump(header: str, info: Mapping[str, Any]) -> None:
    """Print key/value pairs with the values aligned in one column."""

    print(header)
    width = max((len(key) for key in info), default=0)
    for key, value in info.items():
        if isinstance(value, (list, tuple)):
            print(f"  {key}:")
            for item in value:
                print(f"    {item}")
        else:
            print(f"  {key}:{' ' * (width - len(key))}  {value}")


def _message_info(message: str | bytes) -> dict[str, Any]:
    info: dict[str, Any] = {}
    if isinstance(message, str):
        info["Message"] = json.dumps(message)
    else:
        raw = bytes(message)
        if all(32 <= byte <= 126 for byte in raw):
            info["Message"] = raw.decode("ascii")
    info["Message (hex)"] = to_hex(message_bytes(message))
    return info


def _transaction_info(tx: Mapping[str, Any], network: Network) -> dict[str, Any]:
    info: dict[str, Any] = {}
    if tx.get("to") is not None:
        info["To"] = tx["to"]
    if tx.get("from") is not None:
        info["From"] = tx["from"]
    info["Value"] = f"{format_ether(to_int(tx.get('value') or 0))} ether"
    if tx.get("nonce") is not None:
        info["Nonce"] = to_int(tx["nonce"])
    info["Gas Limit"] = str(to_int(tx.get("gasLimit") or 0))
    info["Gas Price"] = f"{format_units(to_int(tx.get('gasPrice') or 0), 'gwei')} gwei"
    info["Chain ID"] = to_int(tx.get("chainId") or 0)
    info["Data"] = hexlify_data(tx.get("data") or "0x")
    info["Network"] = network.name
    return info


class AuthorizedSigner:
    """Wrap a :class:`DeferredSigner` so every signature needs consent."""

    def __init__(self, identity: DeferredSigner, plugin: "Plugin") -> None:
        self.__identity = identity
        self.__always_allow: dict[str, bool] = {}
        self.plugin = plugin

    def __repr__(self) -> str:
        return "AuthorizedSigner(...)"

    @property
    def provider(self):
        return self.plugin.provider

    async def get_address(self) -> str:
        return await self.__identity.get_address()

    async def _get_signer(self) -> Signer:
        return await self.__identity.get_signer()

    async def _network(self) -> Network:
        if self.plugin.network is not None:
            return self.plugin.network
        return await self.provider.get_network()

    async def _is_allowed(self, message: str) -> bool:
        """Raise :class:`OperationCancelled` unless the user allows ``message``.

        Answering "a" (all) accepts every later prompt with the same message.
        """

        if self.plugin.yes:
            print(f'{message} (--yes => "y")')
            return True

        if self.__always_allow.get(message):
            print(f'{message} (previous (a)ll => "y")')
            return True

        try:
            answer = await get_choice(message, "yna", "n")
        except Exception as exc:
            logger.debug("Consent prompt failed: %s", exc)
            raise OperationCancelled() from exc

        if answer == "a":
            self.__always_allow[message] = True
        elif answer != "y":
            raise OperationCancelled()
        return True

    async def sign_message(self, message: str | bytes) -> str:
        dump("Message:", _message_info(message))

        await self._is_allowed("Sign Message?")

        signer = await self._get_signer()
        result = await signer.sign_message(message)

        signature = split_signature(result)
        dump(
            "Signature:",
            {
                "Flat": result,
                "r": signature.r,
                "s": signature.s,
                "vs": signature.vs,
                "v": signature.v,
                "recid": signature.recid,
            },
        )
        return result

    async def sign_transaction(self, tx: Mapping[str, Any]) -> SignedTransaction:
        tx = await resolve_properties(tx)
        network = await self._network()

        dump("Transaction:", _transaction_info(tx, network))

        await self._is_allowed("Sign Transaction?")

        signer = await self._get_signer()
        signed = await signer.sign_transaction(tx)

        info: dict[str, Any] = {"Signature": signed.raw_transaction}
        if signed.signature is not None:
            info.update(
                {
                    "r": signed.signature.r,
                    "s": signed.signature.s,
                    "vs": signed.signature.vs,
                    "v": signed.signature.v,
                    "recid": signed.signature.recid,
                }
            )
        dump("Signature:", info)
        return signed

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        tx = await populate_transaction(self.provider, tx, await self.get_address())
        network = await self._network()

        dump("Transaction:", _transaction_info(tx, network))

        await self._is_allowed("Send Transaction?")

        signer = await self._get_signer()
        tx_hash = await signer.send_transaction(tx)

        dump("Response:", {"Hash": tx_hash})
        return tx_hash

    async def unlock(self) -> None:
        await self._get_signer()
