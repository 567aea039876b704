"""Credential-aware Ethereum command line tool."""

from .accounts import DeferredSigner, IncorrectPasswordError, load_account
from .args import ArgParser, Option, UsageError
from .authorized import AuthorizedSigner
from .cli import CLI
from .config import ConfigurationError, ProviderConfig, load_provider_config
from .plugin import Help, Plugin
from .prompt import OperationCancelled

__all__ = [
    "ArgParser",
    "AuthorizedSigner",
    "CLI",
    "ConfigurationError",
    "DeferredSigner",
    "Help",
    "IncorrectPasswordError",
    "OperationCancelled",
    "Option",
    "Plugin",
    "ProviderConfig",
    "UsageError",
    "load_account",
    "load_provider_config",
]
