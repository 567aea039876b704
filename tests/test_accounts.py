import asyncio
import json
from pathlib import Path
from types import SimpleNamespace

import pytest
from eth_account import Account

from ethcli import accounts
from ethcli.accounts import (
    DeferredSigner,
    IncorrectPasswordError,
    is_mnemonic,
    load_account,
    load_rpc_account,
    load_void_account,
)
from ethcli.args import UsageError
from ethcli.prompt import OperationCancelled, PromptCancelled
from ethcli.signers import LocalSigner, VoidSigner

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
MNEMONIC = "test test test test test test test test test test test junk"
MNEMONIC_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _plugin() -> SimpleNamespace:
    return SimpleNamespace(provider=None)


def _password_prompt(*answers):
    queue = list(answers)
    prompts: list[str] = []

    async def fake_get_password(prompt: str) -> str:
        prompts.append(prompt)
        answer = queue.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer

    fake_get_password.prompts = prompts
    return fake_get_password


def _write_keystore(tmp_path: Path, password: str) -> Path:
    keystore = Account.encrypt(PRIVATE_KEY, password, kdf="pbkdf2", iterations=1024)
    path = tmp_path / "wallet.json"
    path.write_text(json.dumps(keystore))
    return path


def test_hex_key_yields_matching_address() -> None:
    identity = asyncio.run(load_account(PRIVATE_KEY, _plugin()))

    assert asyncio.run(identity.get_address()) == Account.from_key(PRIVATE_KEY).address


def test_hex_key_without_prefix_is_accepted() -> None:
    identity = asyncio.run(load_account(PRIVATE_KEY[2:], _plugin()))

    assert asyncio.run(identity.get_address()) == Account.from_key(PRIVATE_KEY).address


def test_hex_key_wins_over_phrase_branch(monkeypatch) -> None:
    def refuse_mnemonic(*_args, **_kwargs):
        raise AssertionError("phrase branch must not be used for hex keys")

    monkeypatch.setattr(accounts, "is_mnemonic", lambda _value: True)
    monkeypatch.setattr(LocalSigner, "from_mnemonic", classmethod(refuse_mnemonic))

    identity = asyncio.run(load_account(PRIVATE_KEY, _plugin()))

    assert asyncio.run(identity.get_address()) == Account.from_key(PRIVATE_KEY).address


def test_phrases_are_classified_against_the_english_wordlist() -> None:
    assert is_mnemonic(MNEMONIC)
    assert is_mnemonic(f" {MNEMONIC.replace(' ', '   ')}\n")
    assert not is_mnemonic("test " * 11 + "notaword")
    assert not is_mnemonic(" ".join(["abandon"] * 12))


def test_mnemonic_uses_default_derivation_path() -> None:
    identity = asyncio.run(load_account(f"  {MNEMONIC}  ", _plugin()))

    assert asyncio.run(identity.get_address()) == MNEMONIC_ADDRESS


def test_dash_reads_credential_from_prompt(monkeypatch) -> None:
    fake = _password_prompt(PRIVATE_KEY)
    monkeypatch.setattr(accounts, "get_password", fake)

    identity = asyncio.run(load_account("-", _plugin()))

    assert asyncio.run(identity.get_address()) == Account.from_key(PRIVATE_KEY).address
    assert fake.prompts == ["Private Key / Mnemonic: "]


def test_dash_prompt_cancelled(monkeypatch) -> None:
    monkeypatch.setattr(accounts, "get_password", _password_prompt(PromptCancelled()))

    with pytest.raises(OperationCancelled, match="Cancelled."):
        asyncio.run(load_account("-", _plugin()))


def test_unknown_credential_is_redacted(tmp_path: Path) -> None:
    secret = "not-a-key-or-wallet"

    with pytest.raises(UsageError) as excinfo:
        asyncio.run(load_account(secret, _plugin()))

    assert str(excinfo.value) == "unknown account option - [REDACTED]"
    assert secret not in str(excinfo.value)


def test_non_wallet_json_file_is_unknown(tmp_path: Path) -> None:
    path = tmp_path / "other.json"
    path.write_text('{"hello": "world"}')

    with pytest.raises(UsageError, match="REDACTED"):
        asyncio.run(load_account(str(path), _plugin()))


def test_keystore_address_is_known_before_password(tmp_path: Path, monkeypatch) -> None:
    path = _write_keystore(tmp_path, "correct horse")
    fake = _password_prompt()
    monkeypatch.setattr(accounts, "get_password", fake)

    identity = asyncio.run(load_account(str(path), _plugin()))

    assert asyncio.run(identity.get_address()) == Account.from_key(PRIVATE_KEY).address
    assert fake.prompts == []


def test_keystore_decrypts_with_correct_password(tmp_path: Path, monkeypatch) -> None:
    path = _write_keystore(tmp_path, "correct horse")
    fake = _password_prompt("correct horse")
    monkeypatch.setattr(accounts, "get_password", fake)

    identity = asyncio.run(load_account(str(path), _plugin()))
    signer = asyncio.run(identity.get_signer())

    assert isinstance(signer, LocalSigner)
    assert signer.address == Account.from_key(PRIVATE_KEY).address
    assert fake.prompts == [f"Password ({path}): "]


def test_keystore_wrong_password(tmp_path: Path, monkeypatch) -> None:
    path = _write_keystore(tmp_path, "correct horse")
    monkeypatch.setattr(accounts, "get_password", _password_prompt("battery staple"))

    identity = asyncio.run(load_account(str(path), _plugin()))

    with pytest.raises(IncorrectPasswordError, match="Incorrect password."):
        asyncio.run(identity.get_signer())


def test_keystore_password_cancelled(tmp_path: Path, monkeypatch) -> None:
    path = _write_keystore(tmp_path, "correct horse")
    monkeypatch.setattr(accounts, "get_password", _password_prompt(PromptCancelled()))

    identity = asyncio.run(load_account(str(path), _plugin()))

    with pytest.raises(OperationCancelled, match="Cancelled."):
        asyncio.run(identity.get_signer())


def test_failed_unlock_can_be_retried(tmp_path: Path, monkeypatch) -> None:
    path = _write_keystore(tmp_path, "correct horse")
    monkeypatch.setattr(
        accounts, "get_password", _password_prompt("battery staple", "correct horse")
    )

    async def scenario():
        identity = await load_account(str(path), _plugin())
        with pytest.raises(IncorrectPasswordError):
            await identity.get_signer()
        return await identity.get_signer()

    signer = asyncio.run(scenario())

    assert signer.address == Account.from_key(PRIVATE_KEY).address


def test_deferred_factory_runs_once_across_concurrent_callers() -> None:
    calls = []
    sentinel = object()

    async def factory():
        calls.append(1)
        await asyncio.sleep(0)
        return sentinel

    async def scenario():
        identity = DeferredSigner("0x" + "11" * 20, factory)
        first = await asyncio.gather(*(identity.get_signer() for _ in range(3)))
        second = await identity.get_signer()
        return first, second

    first, second = asyncio.run(scenario())

    assert len(calls) == 1
    assert all(result is sentinel for result in first)
    assert second is sentinel


def test_rpc_account_index_and_address() -> None:
    provider = SimpleNamespace()

    by_index = load_rpc_account("2", provider)
    by_address = load_rpc_account("0x" + "ab" * 20, provider)

    assert by_index is not by_address
    signer = asyncio.run(by_address.get_signer())
    assert signer._index is None
    assert asyncio.run(by_address.get_address()) == asyncio.run(signer.get_address())
    assert asyncio.run(by_index.get_signer())._index == 2


def test_rpc_account_rejects_malformed_address() -> None:
    with pytest.raises(ValueError):
        load_rpc_account("not-an-address", SimpleNamespace())


def test_rpc_account_checks_mixed_case_checksum() -> None:
    bad_checksum = "0xF" + MNEMONIC_ADDRESS[3:]

    with pytest.raises(ValueError, match="bad address checksum"):
        load_rpc_account(bad_checksum, SimpleNamespace())

    upper = "0x" + MNEMONIC_ADDRESS[2:].upper()
    for accepted in (MNEMONIC_ADDRESS, MNEMONIC_ADDRESS.lower(), upper):
        identity = load_rpc_account(accepted, SimpleNamespace())
        assert asyncio.run(identity.get_address()) == MNEMONIC_ADDRESS


class StubResolver:
    def __init__(self, records):
        self.records = records
        self.lookups = []

    async def resolve_name(self, name):
        self.lookups.append(name)
        return self.records.get(name)


def test_void_account_resolves_lazily() -> None:
    address = "0x" + "22" * 20
    provider = StubResolver({"vitalik.eth": address})

    identity = load_void_account("vitalik.eth", provider)
    assert provider.lookups == []

    signer = asyncio.run(identity.get_signer())

    assert isinstance(signer, VoidSigner)
    assert signer.address.lower() == address
    assert provider.lookups == ["vitalik.eth"]


def test_void_account_unconfigured_name_fails_on_use() -> None:
    identity = load_void_account("nobody.eth", StubResolver({}))

    with pytest.raises(RuntimeError, match="ENS name not configured - nobody.eth"):
        asyncio.run(identity.get_address())
