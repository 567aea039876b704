"""JSON-RPC providers for Ethereum style networks.

The providers are intentionally thin: each helper maps directly to a JSON-RPC
method and returns the decoded response. Transport is plain ``requests``;
the ``async`` helpers push the blocking call onto a worker thread so the rest
of ethcli can stay on a single event loop. Nothing here retries, apart from
:class:`FallbackProvider` moving on to its next backend when one is
unreachable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

import requests
from eth_utils import is_address, keccak, to_checksum_address, to_hex
from requests import RequestException, Response

from .config import ConfigurationError, ProviderConfig, normalize_network_name

logger = logging.getLogger(__name__)

ENS_REGISTRY = "0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e"
_RESOLVER_SELECTOR = "0x0178b8bf"  # resolver(bytes32)
_ADDR_SELECTOR = "0x3b3b57de"  # addr(bytes32)
ZERO_ADDRESS = "0x" + "00" * 20


class RPCError(RuntimeError):
    """Raised when the node responds with a JSON-RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common node rejections.

    Only well-known failure modes produce a hint; everything else returns
    ``None`` and callers fall back to the raw error message.
    """

    if error_obj is None:
        return None

    message = ""
    if isinstance(error_obj, RPCError):
        message = error_obj.message
    elif isinstance(error_obj, dict):
        message = str(error_obj.get("message", ""))
    message = message.lower()

    if "insufficient funds" in message:
        return "The account cannot cover value + gas. Fund it or lower --value / --gas-price."
    if "nonce too low" in message:
        return "The nonce was already used. Drop --nonce to let the node pick the next one."
    if "replacement transaction underpriced" in message:
        return "A pending transaction uses this nonce; raise --gas-price to replace it."
    if "intrinsic gas too low" in message:
        return "The gas limit is below the minimum for this transaction; raise --gas-limit."
    return None


@dataclass(frozen=True)
class Network:
    name: str
    chain_id: int


NETWORKS: dict[str, Network] = {
    "homestead": Network("homestead", 1),
    "goerli": Network("goerli", 5),
    "holesky": Network("holesky", 17000),
    "sepolia": Network("sepolia", 11155111),
}
NO_NETWORK = Network("no-network", 0)


class UnsupportedNetworkError(ConfigurationError):
    """Raised when a provider has no endpoint for the requested network."""


def get_network(name: str) -> Network:
    """Look up a well-known network by name (``mainnet`` is ``homestead``)."""

    key = normalize_network_name(name)
    try:
        return NETWORKS[key]
    except KeyError:
        raise UnsupportedNetworkError(f"unknown network - {name}") from None


def network_for_chain_id(chain_id: int) -> Network:
    for network in NETWORKS.values():
        if network.chain_id == chain_id:
            return network
    return Network("unknown", chain_id)


def namehash(name: str) -> bytes:
    """Compute the ENS namehash of ``name`` (lower-cased, not fully normalized)."""

    node = b"\x00" * 32
    if name:
        for label in reversed(name.lower().split(".")):
            node = keccak(node + keccak(text=label))
    return node


def _quantity(value: Any) -> str:
    if isinstance(value, str):
        return value
    return to_hex(int(value))


def to_rpc_transaction(tx: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a transaction request into JSON-RPC field names and encodings."""

    rpc_tx: dict[str, Any] = {}
    for key, rpc_key in (
        ("from", "from"),
        ("to", "to"),
        ("data", "data"),
    ):
        if tx.get(key) is not None:
            rpc_tx[rpc_key] = tx[key]
    for key, rpc_key in (
        ("value", "value"),
        ("nonce", "nonce"),
        ("gasLimit", "gas"),
        ("gasPrice", "gasPrice"),
        ("chainId", "chainId"),
    ):
        if tx.get(key) is not None:
            rpc_tx[rpc_key] = _quantity(tx[key])
    return rpc_tx


def _address_from_word(word: str | None) -> str | None:
    if not word or len(word) < 42:
        return None
    address = "0x" + word[-40:]
    if address == ZERO_ADDRESS:
        return None
    return to_checksum_address(address)


class BaseProvider:
    """Shared async helpers on top of a blocking :meth:`call`."""

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        raise NotImplementedError

    async def request(self, method: str, params: Optional[list[Any]] = None) -> Any:
        return await asyncio.to_thread(self.call, method, params)

    async def get_network(self) -> Network:
        chain_id = int(await self.request("eth_chainId"), 16)
        return network_for_chain_id(chain_id)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        return int(await self.request("eth_getBalance", [address, block]), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.request("eth_getTransactionCount", [address, block]), 16)

    async def get_gas_price(self) -> int:
        return int(await self.request("eth_gasPrice"), 16)

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        return int(await self.request("eth_estimateGas", [to_rpc_transaction(tx)]), 16)

    async def call_contract(self, tx: Mapping[str, Any], block: str = "latest") -> str:
        return await self.request("eth_call", [to_rpc_transaction(tx), block])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.request("eth_sendRawTransaction", [raw_tx])

    async def resolve_name(self, name: str) -> str | None:
        """Resolve an address or ENS name to a checksum address.

        Returns ``None`` when the name has no resolver or no address record.
        """

        if is_address(name):
            return to_checksum_address(name)
        if "." not in name:
            return None

        node = to_hex(namehash(name))[2:]
        resolver = _address_from_word(
            await self.call_contract({"to": ENS_REGISTRY, "data": _RESOLVER_SELECTOR + node})
        )
        if resolver is None:
            logger.debug("No ENS resolver configured for %s", name)
            return None
        return _address_from_word(
            await self.call_contract({"to": resolver, "data": _ADDR_SELECTOR + node})
        )


class JsonRpcProvider(BaseProvider):
    """Provider speaking JSON-RPC over HTTP(S) to a single endpoint."""

    def __init__(self, url: str, network: Network | None = None, timeout: float = 30) -> None:
        self.url = url
        self.network = network
        self.timeout = timeout
        self._session = requests.Session()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._display_url!r})"

    @property
    def _display_url(self) -> str:
        return self.url

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self.url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                f"RPC connection to {self._display_url} failed; check the --rpc URL or your network."
            ) from exc
        self._raise_for_status(response)
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if result.get("error"):
            error = result["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        # geth and erigon send JSON-RPC errors with HTTP 500 bodies
        if response.ok:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        logger.error("RPC HTTP error %s from %s", response.status_code, self._display_url)
        raise RPCTransportError(
            f"RPC server returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    async def get_network(self) -> Network:
        if self.network is not None:
            return self.network
        return await super().get_network()

    async def list_accounts(self) -> list[str]:
        accounts = await self.request("eth_accounts")
        return [to_checksum_address(account) for account in accounts or []]


class _HostedProvider(JsonRpcProvider):
    """JSON-RPC provider whose URL is derived from a network and an API key."""

    flag = ""
    hosts: dict[str, str] = {}

    def __init__(self, network: str | Network, api_key: str | None) -> None:
        resolved = network if isinstance(network, Network) else get_network(network)
        host = self.hosts.get(resolved.name)
        if host is None:
            raise UnsupportedNetworkError(f"--{self.flag} does not support network {resolved.name}")
        if not api_key:
            raise ConfigurationError(
                f"--{self.flag} requires an API key; set providers.{self.flag} in ~/.ethcli.yaml "
                "or the matching ETHCLI_* environment variable"
            )
        super().__init__(self.build_url(host, api_key), network=resolved)

    @property
    def _display_url(self) -> str:
        # API keys live in the last path segment or the query string
        return self.url.split("?", 1)[0].rsplit("/", 1)[0]

    def build_url(self, host: str, api_key: str) -> str:
        raise NotImplementedError


class AlchemyProvider(_HostedProvider):
    flag = "alchemy"
    hosts = {
        "homestead": "eth-mainnet",
        "goerli": "eth-goerli",
        "holesky": "eth-holesky",
        "sepolia": "eth-sepolia",
    }

    def build_url(self, host: str, api_key: str) -> str:
        return f"https://{host}.g.alchemy.com/v2/{api_key}"


class InfuraProvider(_HostedProvider):
    flag = "infura"
    hosts = {
        "homestead": "mainnet",
        "goerli": "goerli",
        "holesky": "holesky",
        "sepolia": "sepolia",
    }

    def build_url(self, host: str, api_key: str) -> str:
        return f"https://{host}.infura.io/v3/{api_key}"


class NodesmithProvider(_HostedProvider):
    flag = "nodesmith"
    hosts = {
        "homestead": "mainnet",
        "goerli": "goerli",
    }

    def build_url(self, host: str, api_key: str) -> str:
        return f"https://ethereum.api.nodesmith.io/v1/{host}/jsonrpc?apiKey={api_key}"


class EtherscanProvider(BaseProvider):
    """Provider backed by the Etherscan HTTP API (``module=proxy`` mostly)."""

    hosts = {
        "homestead": "https://api.etherscan.io/api",
        "goerli": "https://api-goerli.etherscan.io/api",
        "holesky": "https://api-holesky.etherscan.io/api",
        "sepolia": "https://api-sepolia.etherscan.io/api",
    }

    def __init__(self, network: str | Network, api_key: str | None, timeout: float = 30) -> None:
        self.network = network if isinstance(network, Network) else get_network(network)
        base_url = self.hosts.get(self.network.name)
        if base_url is None:
            raise UnsupportedNetworkError(f"--etherscan does not support network {self.network.name}")
        if not api_key:
            raise ConfigurationError(
                "--etherscan requires an API key; set providers.etherscan in ~/.ethcli.yaml "
                "or ETHCLI_ETHERSCAN_API_KEY"
            )
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._session = requests.Session()

    def __repr__(self) -> str:
        return f"EtherscanProvider({self.network.name!r})"

    def _query(self, query: dict[str, Any], *, post: bool = False) -> Any:
        query = {**query, "apikey": self.api_key}
        logger.debug("Etherscan %s.%s", query.get("module"), query.get("action"))
        try:
            if post:
                response = self._session.post(self.base_url, data=query, timeout=self.timeout)
            else:
                response = self._session.get(self.base_url, params=query, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except RequestException as exc:
            logger.error(
                "Etherscan request failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError("Etherscan request failed") from exc
        except ValueError as exc:
            raise RPCTransportError("Etherscan returned malformed JSON") from exc

        if isinstance(body.get("error"), dict):
            error = body["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        if body.get("status") == "0":
            raise RPCError(-1, str(body.get("result") or body.get("message")))
        return body.get("result")

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        params = params or []
        if method == "eth_chainId":
            return to_hex(self.network.chain_id)
        if method == "eth_getBalance":
            wei = self._query(
                {"module": "account", "action": "balance", "address": params[0], "tag": params[1]}
            )
            return to_hex(int(wei))
        if method in {"eth_blockNumber", "eth_gasPrice"}:
            return self._query({"module": "proxy", "action": method})
        if method == "eth_getTransactionCount":
            return self._query(
                {"module": "proxy", "action": method, "address": params[0], "tag": params[1]}
            )
        if method == "eth_sendRawTransaction":
            return self._query({"module": "proxy", "action": method, "hex": params[0]}, post=True)
        if method in {"eth_call", "eth_estimateGas"}:
            query = {"module": "proxy", "action": method, **params[0]}
            if method == "eth_call":
                query["tag"] = params[1] if len(params) > 1 else "latest"
            return self._query(query)
        raise RPCError(-32601, f"Etherscan does not support {method}")

    async def get_network(self) -> Network:
        return self.network


class FallbackProvider(BaseProvider):
    """Try each backend in order until one is reachable."""

    def __init__(self, providers: Sequence[BaseProvider]) -> None:
        if not providers:
            raise ValueError("FallbackProvider requires at least one provider")
        self.providers = list(providers)

    def __repr__(self) -> str:
        return f"FallbackProvider({self.providers!r})"

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        last_error: RPCTransportError | None = None
        for provider in self.providers:
            try:
                return provider.call(method, params)
            except RPCTransportError as exc:
                logger.warning("Provider %r unavailable for %s: %s", provider, method, exc)
                last_error = exc
        raise RPCTransportError(f"All providers failed for {method}") from last_error


PUBLIC_ENDPOINTS = {
    "homestead": "https://ethereum-rpc.publicnode.com",
    "holesky": "https://ethereum-holesky-rpc.publicnode.com",
    "sepolia": "https://ethereum-sepolia-rpc.publicnode.com",
}

HOSTED_PROVIDERS: dict[str, type] = {
    "alchemy": AlchemyProvider,
    "etherscan": EtherscanProvider,
    "infura": InfuraProvider,
    "nodesmith": NodesmithProvider,
}


def get_hosted_provider(flag: str, network: str, config: ProviderConfig) -> BaseProvider:
    return HOSTED_PROVIDERS[flag](network, config.api_key(flag))


def get_default_provider(network: str, config: ProviderConfig) -> BaseProvider:
    """Build the provider used when no explicit source was selected.

    The configured (or public) endpoint for ``network`` comes first, followed
    by every hosted provider that has an API key and serves the network.
    """

    resolved = get_network(network)
    providers: list[BaseProvider] = []
    endpoint = config.endpoint_for(resolved.name) or PUBLIC_ENDPOINTS.get(resolved.name)
    if endpoint:
        providers.append(JsonRpcProvider(endpoint, network=resolved))
    for flag, provider_cls in HOSTED_PROVIDERS.items():
        api_key = config.api_key(flag)
        if api_key and resolved.name in provider_cls.hosts:
            providers.append(provider_cls(resolved, api_key))

    if not providers:
        raise ConfigurationError(f"no default provider for network {resolved.name}; use --rpc URL")
    if len(providers) == 1:
        return providers[0]
    return FallbackProvider(providers)
