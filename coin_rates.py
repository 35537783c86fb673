"""
Exchange rates: fetches the last trade price for a currency pair from one of
several public exchange APIs.

Rates are cached per (provider, from, to) for a short time. When a fetch
fails the last known rate is returned; without one, ExchangeRateError is
raised.
"""

import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import requests

import config

logger = logging.getLogger(__name__)

_cache: dict = {}
_cache_lock = threading.Lock()


class ExchangeRateError(Exception):
    pass


@dataclass(frozen=True)
class Provider:
    name: str
    build_url: Callable[[str, str], str]
    parse: Callable[[object, str, str], object]


def _kraken_symbol(code: str) -> str:
    return "XBT" if code == "BTC" else code


def _parse_kraken(data, from_code, to_code):
    if data.get("error"):
        raise ExchangeRateError(", ".join(data["error"]))
    result = data.get("result", {})
    pair = list(result.keys())[0] if result else None
    if not pair:
        return None
    return result[pair]["c"][0]


def _parse_coingecko(data, from_code, to_code):
    return data.get("bitcoin", {}).get(to_code.lower())


PROVIDERS = {
    provider.name: provider
    for provider in (
        Provider(
            name="binance",
            build_url=lambda f, t: f"https://api.binance.com/api/v3/ticker/price?symbol={f}{t}",
            parse=lambda data, f, t: data.get("price"),
        ),
        Provider(
            name="bitfinex",
            build_url=lambda f, t: f"https://api-pub.bitfinex.com/v2/ticker/t{f}{t}",
            # [BID, BID_SIZE, ASK, ASK_SIZE, DAILY_CHANGE, DAILY_CHANGE_REL, LAST_PRICE, ...]
            parse=lambda data, f, t: data[6] if isinstance(data, list) and len(data) > 6 else None,
        ),
        Provider(
            name="bitstamp",
            build_url=lambda f, t: f"https://www.bitstamp.net/api/v2/ticker/{f.lower()}{t.lower()}/",
            parse=lambda data, f, t: data.get("last"),
        ),
        Provider(
            name="coinbase",
            build_url=lambda f, t: f"https://api.coinbase.com/v2/prices/{f}-{t}/spot",
            parse=lambda data, f, t: data.get("data", {}).get("amount"),
        ),
        Provider(
            name="coingecko",
            build_url=lambda f, t: f"https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies={t.lower()}",
            parse=_parse_coingecko,
        ),
        Provider(
            name="kraken",
            build_url=lambda f, t: f"https://api.kraken.com/0/public/Ticker?pair={_kraken_symbol(f)}{_kraken_symbol(t)}",
            parse=_parse_kraken,
        ),
    )
}


def provider_names() -> list[str]:
    return sorted(PROVIDERS)


def _fetch_rate(provider: Provider, from_code: str, to_code: str) -> Decimal:
    if provider.name == "coingecko" and from_code != "BTC":
        raise ExchangeRateError(f"coingecko only supports BTC rates, not {from_code}")
    url = provider.build_url(from_code, to_code)
    resp = requests.get(url, timeout=config.COINRATES_TIMEOUT)
    resp.raise_for_status()
    value = provider.parse(resp.json(), from_code, to_code)
    if value is None:
        raise ExchangeRateError(f"{provider.name}: no rate for {from_code}/{to_code}")
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ExchangeRateError(f"{provider.name}: invalid rate {value!r}")
    if not rate.is_finite() or rate <= 0:
        raise ExchangeRateError(f"{provider.name}: invalid rate {value!r}")
    return rate


def get(currencies: dict, provider: Optional[str] = None) -> Decimal:
    """
    Return the price of one unit of currencies["from"] in currencies["to"].

    Example: get({"from": "BTC", "to": "EUR"}, provider="kraken")
    """
    provider_name = provider or config.COINRATES_DEFAULT_PROVIDER
    if provider_name not in PROVIDERS:
        raise ExchangeRateError(f'Unknown exchange rates provider: "{provider_name}"')
    from_code = (currencies.get("from") or "").strip().upper()
    to_code = (currencies.get("to") or "").strip().upper()
    if not from_code or not to_code:
        raise ExchangeRateError("Both currencies are required")

    key = (provider_name, from_code, to_code)
    now = time.time()
    with _cache_lock:
        cached = _cache.get(key)
        if cached is not None and (now - cached["ts"]) < config.COINRATES_CACHE_TTL:
            return cached["rate"]

    try:
        rate = _fetch_rate(PROVIDERS[provider_name], from_code, to_code)
    except (requests.RequestException, ValueError, KeyError, IndexError, TypeError, AttributeError, ExchangeRateError) as e:
        logger.warning("%s rate fetch failed for %s/%s: %s", provider_name, from_code, to_code, e)
        # Return stale cache rather than failing outright
        with _cache_lock:
            cached = _cache.get(key)
        if cached is not None:
            logger.warning("Returning stale %s rate %s/%s = %s", provider_name, from_code, to_code, cached["rate"])
            return cached["rate"]
        if isinstance(e, ExchangeRateError):
            raise
        raise ExchangeRateError(f"{provider_name}: failed to fetch {from_code}/{to_code} rate") from e

    with _cache_lock:
        _cache[key] = {"rate": rate, "ts": now}
    logger.debug("Rate %s %s/%s = %s", provider_name, from_code, to_code, rate)
    return rate


def clear_cache() -> None:
    with _cache_lock:
        _cache.clear()
