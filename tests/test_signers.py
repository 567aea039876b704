import asyncio

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from ethcli.provider import Network
from ethcli.signers import (
    JsonRpcSigner,
    LocalSigner,
    SignerError,
    Signature,
    VoidSigner,
    populate_transaction,
    split_signature,
)

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ADDRESS = Account.from_key(PRIVATE_KEY).address
RECIPIENT = "0x" + "33" * 20


class StubNode:
    def __init__(self, responses=None) -> None:
        self.responses = responses or {}
        self.calls = []

    async def request(self, method, params=None):
        self.calls.append((method, params))
        return self.responses[method]

    async def list_accounts(self):
        return [ADDRESS, RECIPIENT]

    async def get_transaction_count(self, _address, _block="pending"):
        return 5

    async def get_gas_price(self):
        return 3 * 10**9

    async def get_network(self):
        return Network("sepolia", 11155111)

    async def estimate_gas(self, _tx):
        return 50000


@pytest.mark.parametrize("v, recid", [(27, 0), (28, 1), (0, 0), (1, 1), (37, 0), (38, 1)])
def test_signature_recovery_id(v: int, recid: int) -> None:
    signature = Signature.from_parts(1, 2, v)

    assert signature.recid == recid
    assert signature.v == v
    assert signature.flat.endswith(format(27 + recid, "02x"))


def test_split_signature_compact_vs() -> None:
    flat = "0x" + "11" * 32 + "22" * 32 + "1c"

    signature = split_signature(flat)

    assert signature.r == "0x" + "11" * 32
    assert signature.s == "0x" + "22" * 32
    assert signature.recid == 1
    assert signature.vs == "0x" + "a2" + "22" * 31


def test_split_signature_rejects_bad_length() -> None:
    with pytest.raises(SignerError, match="invalid signature length"):
        split_signature("0x1234")


def test_local_signer_message_recovers() -> None:
    signer = LocalSigner.from_key(PRIVATE_KEY)
    signature = asyncio.run(signer.sign_message(b"\x01\x02"))

    message = encode_defunct(primitive=b"\x01\x02")
    assert Account.recover_message(message, signature=signature) == ADDRESS


def test_local_signer_transaction_recovers() -> None:
    signer = LocalSigner.from_key(PRIVATE_KEY)

    signed = asyncio.run(
        signer.sign_transaction(
            {
                "to": RECIPIENT,
                "nonce": "0x1",
                "gasPrice": 10**9,
                "gasLimit": 21000,
                "value": 1,
                "chainId": 11155111,
            }
        )
    )

    assert Account.recover_transaction(signed.raw_transaction) == ADDRESS
    assert signed.signature.recid in (0, 1)


def test_local_signer_rejects_foreign_from() -> None:
    signer = LocalSigner.from_key(PRIVATE_KEY)

    with pytest.raises(SignerError, match="from address mismatch"):
        asyncio.run(signer.sign_transaction({"from": RECIPIENT, "to": RECIPIENT}))


def test_populate_transaction_fills_missing_fields() -> None:
    populated = asyncio.run(
        populate_transaction(StubNode(), {"to": RECIPIENT, "nonce": 9}, ADDRESS)
    )

    assert populated == {
        "to": RECIPIENT,
        "from": ADDRESS,
        "nonce": 9,
        "gasPrice": 3 * 10**9,
        "chainId": 11155111,
        "gasLimit": 50000,
    }


def test_populate_transaction_without_provider() -> None:
    with pytest.raises(SignerError, match="missing provider"):
        asyncio.run(populate_transaction(None, {"to": RECIPIENT}, ADDRESS))


def test_json_rpc_signer_by_index_uses_personal_sign() -> None:
    node = StubNode({"personal_sign": "0xsig"})
    signer = JsonRpcSigner(node, 1)

    assert asyncio.run(signer.get_address()) == RECIPIENT
    assert asyncio.run(signer.sign_message("hi")) == "0xsig"
    assert node.calls == [("personal_sign", ["0x6869", RECIPIENT.lower()])]


def test_json_rpc_signer_unknown_index() -> None:
    with pytest.raises(SignerError, match="unknown account #5"):
        asyncio.run(JsonRpcSigner(StubNode(), 5).get_address())


def test_json_rpc_signer_parses_geth_sign_transaction() -> None:
    node = StubNode(
        {
            "eth_signTransaction": {
                "raw": "0xf86b",
                "tx": {"r": "0x1", "s": "0x2", "v": "0x1b", "hash": "0xhash"},
            }
        }
    )
    signer = JsonRpcSigner(node, ADDRESS)

    signed = asyncio.run(signer.sign_transaction({"to": RECIPIENT, "gasLimit": 21000}))

    assert signed.raw_transaction == "0xf86b"
    assert signed.hash == "0xhash"
    assert signed.signature.recid == 0
    method, params = node.calls[0]
    assert method == "eth_signTransaction"
    assert params[0]["from"] == ADDRESS
    assert params[0]["gas"] == "0x5208"


def test_void_signer_refuses_to_sign() -> None:
    signer = VoidSigner(RECIPIENT)

    assert asyncio.run(signer.get_address()) == RECIPIENT
    with pytest.raises(SignerError, match="cannot sign messages"):
        asyncio.run(signer.sign_message("hi"))
    with pytest.raises(SignerError, match="cannot sign transactions"):
        asyncio.run(signer.sign_transaction({}))
    with pytest.raises(SignerError, match="cannot send transactions"):
        asyncio.run(signer.send_transaction({}))
