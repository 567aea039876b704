"""JSON wallet (keystore v3 and crowdsale presale) support.

Recognising a wallet and reading its address never touches the password; only
:func:`decrypt_json_wallet` derives keys. Key derivation runs on a worker
thread and progress is reported as ``(current, total)`` stages so the CLI can
keep a progress bar moving while scrypt grinds.
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from eth_account import Account
from eth_utils import is_address, keccak, to_checksum_address

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_DECRYPT_STAGES = 3
_CROWDSALE_ITERATIONS = 2000


class KeystoreError(ValueError):
    """Raised when a JSON wallet is malformed or unsupported."""


class WrongPasswordError(KeystoreError):
    """Raised when the wallet MAC (or padding) does not verify."""

    def __init__(self, message: str = "wrong password") -> None:
        super().__init__(message)


@dataclass
class DecryptedWallet:
    address: str
    private_key: bytes


def _load_json(content: str) -> dict[str, Any] | None:
    try:
        data = json.loads(content)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _normalize_address(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    candidate = raw if raw.lower().startswith("0x") else "0x" + raw
    if not is_address(candidate.lower()):
        return None
    return to_checksum_address(candidate)


def _crypto_section(data: dict[str, Any]) -> dict[str, Any] | None:
    section = data.get("crypto") or data.get("Crypto")
    return section if isinstance(section, dict) else None


def is_keystore_wallet(data: dict[str, Any]) -> bool:
    section = _crypto_section(data)
    return section is not None and "ciphertext" in section and "kdf" in section


def is_crowdsale_wallet(data: dict[str, Any]) -> bool:
    return "encseed" in data and "ethaddr" in data


def get_json_wallet_address(content: str) -> str | None:
    """Return the checksum address stored in a JSON wallet, without decrypting.

    Returns ``None`` when ``content`` is not a recognised wallet.
    """

    data = _load_json(content)
    if data is None:
        return None
    if is_keystore_wallet(data):
        return _normalize_address(data.get("address"))
    if is_crowdsale_wallet(data):
        return _normalize_address(data.get("ethaddr"))
    return None


def _derive_keystore_key(section: dict[str, Any], password: bytes) -> bytes:
    kdf_name = section.get("kdf")
    params = section.get("kdfparams") or {}
    try:
        salt = bytes.fromhex(params["salt"])
        dklen = int(params["dklen"])
        if kdf_name == "scrypt":
            kdf = Scrypt(
                salt=salt,
                length=dklen,
                n=int(params["n"]),
                r=int(params["r"]),
                p=int(params["p"]),
            )
        elif kdf_name == "pbkdf2":
            prf = params.get("prf", "hmac-sha256")
            iterations = int(params["c"])
    except (KeyError, TypeError, ValueError) as exc:
        raise KeystoreError("malformed keystore kdf parameters") from exc

    if kdf_name == "pbkdf2":
        if prf != "hmac-sha256":
            raise KeystoreError(f"unsupported pbkdf2 prf: {prf}")
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=dklen, salt=salt, iterations=iterations)
    elif kdf_name != "scrypt":
        raise KeystoreError(f"unsupported kdf: {kdf_name}")
    return kdf.derive(password)


def _decrypt_keystore_key(section: dict[str, Any], derived: bytes) -> bytes:
    try:
        ciphertext = bytes.fromhex(section["ciphertext"])
        mac = bytes.fromhex(section["mac"])
        iv = bytes.fromhex(section["cipherparams"]["iv"])
    except (KeyError, TypeError, ValueError) as exc:
        raise KeystoreError("malformed keystore cipher parameters") from exc
    if section.get("cipher") != "aes-128-ctr":
        raise KeystoreError(f"unsupported cipher: {section.get('cipher')}")

    if not hmac.compare_digest(keccak(derived[16:32] + ciphertext), mac):
        raise WrongPasswordError()

    decryptor = Cipher(algorithms.AES(derived[:16]), modes.CTR(iv)).decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


def _decrypt_crowdsale_key(data: dict[str, Any], password: bytes) -> bytes:
    try:
        encseed = bytes.fromhex(data["encseed"])
    except (TypeError, ValueError) as exc:
        raise KeystoreError("malformed crowdsale encseed") from exc
    if len(encseed) < 32 or len(encseed) % 16:
        raise KeystoreError("malformed crowdsale encseed")

    key = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=16, salt=password, iterations=_CROWDSALE_ITERATIONS
    ).derive(password)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(encseed[:16])).decryptor()
    padded = decryptor.update(encseed[16:]) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    try:
        seed = unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise WrongPasswordError() from exc
    # each seed byte is taken as a code point and re-encoded as UTF-8
    return keccak(seed.decode("latin-1").encode("utf-8"))


def _address_for_key(private_key: bytes) -> str:
    return Account.from_key(private_key).address


async def decrypt_json_wallet(
    content: str,
    password: str,
    progress: ProgressCallback | None = None,
) -> DecryptedWallet:
    """Decrypt a keystore v3 or crowdsale wallet.

    Raises :class:`WrongPasswordError` when the password does not match and
    :class:`KeystoreError` for anything structurally wrong.
    """

    def report(stage: int) -> None:
        if progress is not None:
            progress(stage, _DECRYPT_STAGES)

    data = _load_json(content)
    if data is None:
        raise KeystoreError("invalid JSON wallet")
    expected = get_json_wallet_address(content)
    password_bytes = password.encode("utf-8")

    report(0)
    if is_keystore_wallet(data):
        section = _crypto_section(data) or {}
        derived = await asyncio.to_thread(_derive_keystore_key, section, password_bytes)
        report(1)
        private_key = _decrypt_keystore_key(section, derived)
    elif is_crowdsale_wallet(data):
        private_key = await asyncio.to_thread(_decrypt_crowdsale_key, data, password_bytes)
        report(1)
    else:
        raise KeystoreError("unsupported JSON wallet format")
    report(2)

    address = _address_for_key(private_key)
    if expected is not None and address != expected:
        logger.debug("Decrypted key does not match wallet address %s", expected)
        raise WrongPasswordError()
    report(3)
    return DecryptedWallet(address=address, private_key=private_key)
