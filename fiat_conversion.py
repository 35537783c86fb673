"""
Fiat-denominated withdraw requests.

Devices sign withdraw URLs with amounts in fiat units (e.g. "1.00" EUR). The
"url:signed" hook below looks up the current BTC price with the API key's
exchange-rates provider and rewrites the amounts to millisatoshis before the
LNURL server builds its response.
"""

import logging
from decimal import ROUND_FLOOR, Decimal

from lnurl_server import HttpError, LnurlServer

logger = logging.getLogger(__name__)

MSATS_PER_BTC = Decimal(100_000_000_000)


def to_millisatoshis(amount, rate) -> int:
    """Convert a fiat amount to msats given the BTC price in that fiat currency."""
    try:
        amount = Decimal(str(amount))
        rate = Decimal(str(rate))
        if not amount.is_finite() or not rate.is_finite() or rate <= 0:
            raise ValueError(f"Invalid amount or rate: {amount!r}, {rate!r}")
        return int((amount / rate * MSATS_PER_BTC).to_integral_value(rounding=ROUND_FLOOR))
    except ArithmeticError as e:
        # InvalidOperation, Overflow
        raise ValueError(f"Invalid amount or rate: {amount!r}, {rate!r}") from e


def make_signed_url_hook(server: LnurlServer):
    def convert_fiat_amounts(query: dict) -> None:
        api_key_id = query.get("id")
        if not api_key_id or not query.get("signature"):
            # Not a signed LNURL
            return

        tag = query.get("tag")
        if tag != "withdrawRequest":
            raise HttpError(f'Unsupported tag: "{tag}"', 400)
        fiat_currency = query.get("f") or query.get("fiatCurrency")
        if not fiat_currency:
            raise HttpError('Missing required fiat currency symbol: "f" or "fiatCurrency"', 400)
        if query.get("minWithdrawable") != query.get("maxWithdrawable"):
            raise HttpError("min/maxWithdrawable must be equal", 400)

        api_key = server.get_api_key(api_key_id)
        # The endpoint verifies the key first; this guards direct callers
        if not api_key:
            raise HttpError(f'API key does not exist: ID = "{api_key_id}"', 400)
        if not api_key.enabled:
            raise HttpError(f'API key disabled: ID = "{api_key_id}"', 400)

        rate = server.get_exchange_rate(
            {"from": "BTC", "to": fiat_currency},
            provider=api_key.exchange_rates_provider,
        )
        try:
            msats = to_millisatoshis(query.get("minWithdrawable"), rate)
        except ValueError:
            raise HttpError(f'Invalid fiat amount: "{query.get("minWithdrawable")}"', 400)
        if msats <= 0:
            raise HttpError(f'Invalid fiat amount: "{query.get("minWithdrawable")}"', 400)

        logger.debug("%s %s at %s = %d msats", query.get("minWithdrawable"), fiat_currency, rate, msats)
        query["minWithdrawable"] = query["maxWithdrawable"] = msats

    return convert_fiat_amounts
