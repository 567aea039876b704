"""Base class for ethcli commands and the shared option pipeline.

Every command is a :class:`Plugin` subclass. Before a command sees its
positional arguments, :meth:`Plugin.prepare_options` consumes the global
options (network, providers, accounts and transaction defaults) and leaves
the plugin fully configured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, NoReturn, Sequence

from eth_utils import is_address, to_checksum_address

from .accounts import load_account, load_rpc_account, load_void_account
from .args import ArgParser, UsageError
from .authorized import AuthorizedSigner
from .config import ProviderConfig, load_provider_config
from .provider import (
    HOSTED_PROVIDERS,
    NO_NETWORK,
    ZERO_ADDRESS,
    BaseProvider,
    FallbackProvider,
    JsonRpcProvider,
    Network,
    get_default_provider,
    get_hosted_provider,
)
from .units import hexlify_data, parse_units

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "homestead"
ACCOUNT_OPTIONS = ["account", "account-rpc", "account-void"]


@dataclass(frozen=True)
class Help:
    name: str
    help: str


class Plugin:
    """A command plus the execution context built from the global options."""

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self.config = config
        self.network: Network | None = None
        self.provider: BaseProvider | None = None
        self.accounts: list[AuthorizedSigner] = []
        self.gas_limit: int | None = None
        self.gas_price: int | None = None
        self.nonce: int | None = None
        self.value: int | None = None
        self.data: str | None = None
        self.yes = False

    @staticmethod
    def get_help() -> Help | None:
        return None

    @staticmethod
    def get_option_help() -> list[Help]:
        return []

    async def prepare_options(self, arg_parser: ArgParser) -> None:
        self.yes = arg_parser.consume_flag("yes")
        config = self.config if self.config is not None else load_provider_config()

        # Provider

        network = arg_parser.consume_option("network") or DEFAULT_NETWORK
        providers: list[BaseProvider] = []

        rpc: list[JsonRpcProvider] = []
        for url in arg_parser.consume_options("rpc"):
            provider = JsonRpcProvider(url)
            providers.append(provider)
            rpc.append(provider)

        for flag in HOSTED_PROVIDERS:
            if arg_parser.consume_flag(flag):
                providers.append(get_hosted_provider(flag, network, config))

        if len(providers) == 1:
            self.provider = providers[0]
        elif providers:
            self.provider = FallbackProvider(providers)
        else:
            self.provider = get_default_provider(network, config)
        logger.debug("Using provider %r", self.provider)

        # Accounts

        accounts: list[AuthorizedSigner] = []
        for option in arg_parser.consume_multi_options(ACCOUNT_OPTIONS):
            if option.name == "account":
                identity = await load_account(option.value, self)
            elif option.name == "account-rpc":
                if len(rpc) != 1:
                    self.throw_usage_error("--account-rpc requires exactly one JSON-RPC provider")
                try:
                    identity = load_rpc_account(option.value, rpc[0])
                except ValueError:
                    self.throw_usage_error(f"invalid --account-rpc - {option.value}")
            else:
                identity = load_void_account(option.value, self.provider)
            accounts.append(AuthorizedSigner(identity, self))
        self.accounts = accounts

        # Transaction options

        self.gas_price = self._consume_parsed(
            arg_parser, "gas-price", lambda raw: parse_units(raw, "gwei")
        )
        self.gas_limit = self._consume_parsed(arg_parser, "gas-limit", _parse_quantity)
        self.nonce = self._consume_parsed(arg_parser, "nonce", _parse_quantity)
        self.value = self._consume_parsed(
            arg_parser, "value", lambda raw: parse_units(raw, "ether")
        )
        self.data = self._consume_parsed(arg_parser, "data", hexlify_data)

        # An unreachable provider records NO_NETWORK.
        try:
            self.network = await self.provider.get_network()
        except Exception as exc:
            logger.debug("Network detection failed: %s", exc, exc_info=True)
            self.network = NO_NETWORK

    def _consume_parsed(
        self, arg_parser: ArgParser, name: str, parse: Callable[[str], Any]
    ) -> Any:
        raw = arg_parser.consume_option(name)
        if raw is None:
            return None
        try:
            return parse(raw)
        except ValueError:
            self.throw_usage_error(f"invalid --{name} - {raw}")

    def transaction_defaults(self) -> dict[str, Any]:
        """Return the ``--gas-*``/``--nonce``/``--value``/``--data`` settings."""

        defaults = {
            "gasPrice": self.gas_price,
            "gasLimit": self.gas_limit,
            "nonce": self.nonce,
            "value": self.value,
            "data": self.data,
        }
        return {key: value for key, value in defaults.items() if value is not None}

    async def prepare_args(self, args: Sequence[str]) -> None:
        pass

    async def run(self) -> None:
        pass

    async def get_address(
        self, address_or_name: str, message: str | None = None, allow_zero: bool = False
    ) -> str:
        if is_address(address_or_name):
            address = to_checksum_address(address_or_name)
        else:
            address = await self.provider.resolve_name(address_or_name)
            if address is None:
                self.throw_error(f"ENS name not configured - {address_or_name}")

        if address.lower() == ZERO_ADDRESS and not allow_zero:
            self.throw_error(message or "cannot use the zero address")
        return address

    def throw_usage_error(self, message: str) -> NoReturn:
        raise UsageError(message)

    def throw_error(self, message: str) -> NoReturn:
        raise RuntimeError(message)


def _parse_quantity(raw: str) -> int:
    value = int(raw, 0) if raw.lower().startswith("0x") else int(raw)
    if value < 0:
        raise ValueError(f"negative quantity: {raw}")
    return value
