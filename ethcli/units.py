"""Ether/gwei conversion and hex helpers shared by the CLI and summaries."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from eth_utils import from_wei, is_0x_prefixed, is_hex, to_wei


def parse_units(value: str, unit: str) -> int:
    """Convert a decimal string in ``unit`` (e.g. ``"gwei"``) to wei."""

    try:
        amount = Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid {unit} amount: {value}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"invalid {unit} amount: {value}")
    decimals = len(str(to_wei(1, unit))) - 1
    wei = amount.scaleb(decimals)
    if wei != wei.to_integral_value():
        raise ValueError(f"fractional component exceeds decimals: {value}")
    return int(wei)


def parse_ether(value: str) -> int:
    return parse_units(value, "ether")


def format_units(wei: int, unit: str) -> str:
    """Format a wei amount in ``unit``, always keeping one decimal place."""

    text = format(Decimal(from_wei(int(wei), unit)).normalize(), "f")
    if "." not in text:
        text += ".0"
    return text


def format_ether(wei: int) -> str:
    return format_units(wei, "ether")


def hexlify_data(data: str | bytes) -> str:
    """Return the canonical lowercase ``0x`` encoding of ``data``.

    ``0x``-prefixed strings are treated as hex; any other text is encoded as
    UTF-8.
    """

    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    if is_0x_prefixed(data):
        if not is_hex(data) or len(data) % 2:
            raise ValueError(f"invalid hex data: {data}")
        return data.lower()
    return "0x" + data.encode("utf-8").hex()
