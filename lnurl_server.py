"""
LNURL server layer.

Owns the Flask app and the signed-URL endpoint that devices (ATMs, LNURLPoS)
call. A signed request carries the API key id, a nonce, the LNURL tag and
an HMAC-SHA256 signature over the sorted query string. After the signature
is verified the "url:signed" hooks run (they may rewrite the query or reject
the request) and the request handler builds the LNURL response.

Paying the withdraw invoice belongs to the Lightning backend integration and
is not done here.
"""

import hashlib
import hmac
import logging
import re
import secrets
import time
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Callable, Mapping, Optional
from urllib.parse import quote, urlencode

from flask import Flask, jsonify, request
from flask_cors import CORS

import coin_rates
from config_models import ApiKey
from config_store import ConfigStore

logger = logging.getLogger(__name__)

HOOK_URL_SIGNED = "url:signed"
HOOKS = (HOOK_URL_SIGNED,)

WITHDRAW_REQUEST_TTL_SECONDS = 600

SIGNED_PAYLOAD_SAFE = "!*'()"


class HttpError(Exception):
    """An error with an HTTP status that is safe to show to the client."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def generate_api_key(encoding: str = "hex", num_bytes: Optional[dict] = None) -> ApiKey:
    """
    Generate a new API key.

    The id and key are always hex strings; encoding tells the device how to
    turn the key string into HMAC key bytes.
    """
    num_bytes = num_bytes or {"id": 10, "key": 32}
    return ApiKey(
        id=secrets.token_hex(num_bytes["id"]),
        key=secrets.token_hex(num_bytes["key"]),
        encoding=encoding,
    )


def _quote_component(value, safe="", encoding=None, errors=None) -> str:
    # Same escaping as the devices use: "/" is encoded, !*'() are not
    return quote(value, safe=SIGNED_PAYLOAD_SAFE, encoding=encoding, errors=errors)


def prepare_signed_payload(query: Mapping[str, str]) -> str:
    """Sorted, URL-encoded query string without the signature itself."""
    items = sorted((k, v) for k, v in query.items() if k != "signature")
    return urlencode(items, quote_via=_quote_component)


def create_signature(payload: str, key: str, encoding: str = "hex") -> str:
    key_bytes = bytes.fromhex(key) if encoding == "hex" else key.encode("utf-8")
    return hmac.new(key_bytes, payload.encode("utf-8"), hashlib.sha256).hexdigest()


def stringify_key_value(data: Mapping[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in data.items())


def _parse_msats(query: Mapping, name: str) -> int:
    value = query.get(name)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise HttpError(f'Invalid "{name}": expected an amount in millisatoshis', 400)
    if not amount.is_finite() or amount != amount.to_integral_value() or amount <= 0:
        raise HttpError(f'Invalid "{name}": expected an amount in millisatoshis', 400)
    return int(amount)


class LnurlServer:
    """
    Signed-URL LNURL endpoint on top of a ConfigStore.

    Usage:
        server = LnurlServer(store)
        server.bind_to_hook("url:signed", my_hook)
        server.app.run()
    """

    def __init__(self, store: ConfigStore, app: Optional[Flask] = None):
        self.store = store
        self.app = app or Flask(__name__)
        self._hooks: dict[str, list[Callable]] = defaultdict(list)
        self._withdraw_requests: dict[str, dict] = {}
        self.request_handler: Callable[[dict], object] = self.handle_signed_request

        endpoint = store.current.endpoint
        self.app.add_url_rule(endpoint, "lnurl", self._handle_lnurl)
        # Wallets call the LNURL endpoint cross-origin
        CORS(self.app, resources={"^" + re.escape(endpoint) + "$": {"origins": "*"}})

    # --- Collaborator interface ---

    def get_callback_url(self) -> str:
        return self.store.current.callback_url

    def get_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        return self.store.current.find_api_key(api_key_id)

    def get_exchange_rate(self, currencies: dict, provider: Optional[str] = None) -> Decimal:
        provider = provider or self.store.current.coin_rates_default_provider
        return coin_rates.get(currencies, provider=provider)

    def bind_to_hook(self, name: str, fn: Callable[[dict], None]) -> None:
        if name not in HOOKS:
            raise ValueError(f'Unknown hook: "{name}"')
        self._hooks[name].append(fn)

    def run_hooks(self, name: str, query: dict) -> None:
        for fn in self._hooks[name]:
            fn(query)

    # --- Request handling ---

    def verify_signature(self, query: Mapping[str, str]) -> ApiKey:
        api_key = self.get_api_key(query.get("id", ""))
        if not api_key:
            raise HttpError("Invalid API key signature", 400)
        expected = create_signature(prepare_signed_payload(query), api_key.key, api_key.encoding)
        if not hmac.compare_digest(expected, query.get("signature", "")):
            raise HttpError("Invalid API key signature", 400)
        return api_key

    def handle_signed_request(self, query: dict):
        """Answer a verified signed request with the LNURL parameters."""
        tag = query.get("tag")
        if tag != "withdrawRequest":
            raise HttpError(f'Unsupported tag: "{tag}"', 400)
        min_withdrawable = _parse_msats(query, "minWithdrawable")
        max_withdrawable = _parse_msats(query, "maxWithdrawable")
        if max_withdrawable < min_withdrawable:
            raise HttpError('"maxWithdrawable" must be greater than or equal to "minWithdrawable"', 400)

        self._expire_withdraw_requests()
        k1 = secrets.token_hex(32)
        params = {
            "tag": "withdrawRequest",
            "callback": self.get_callback_url(),
            "k1": k1,
            "minWithdrawable": min_withdrawable,
            "maxWithdrawable": max_withdrawable,
            "defaultDescription": query.get("defaultDescription", ""),
        }
        self._withdraw_requests[k1] = {"params": params, "api_key_id": query.get("id"), "created_at": time.time()}
        logger.info("Withdraw request %s... for API key %s: %d msats", k1[:8], query.get("id"), max_withdrawable)
        return jsonify(params)

    def get_withdraw_request(self, k1: str) -> Optional[dict]:
        self._expire_withdraw_requests()
        entry = self._withdraw_requests.get(k1)
        return entry["params"] if entry else None

    def _expire_withdraw_requests(self) -> None:
        cutoff = time.time() - WITHDRAW_REQUEST_TTL_SECONDS
        for k1 in [k for k, v in self._withdraw_requests.items() if v["created_at"] < cutoff]:
            del self._withdraw_requests[k1]

    def _handle_lnurl(self):
        query = request.args.to_dict()
        try:
            if not query.get("id") or not query.get("signature"):
                raise HttpError("Missing signature", 400)
            self.verify_signature(query)
            self.run_hooks(HOOK_URL_SIGNED, query)
            return self.request_handler(query)
        except HttpError as e:
            logger.info("LNURL request rejected (%d): %s", e.status, e.message)
            return jsonify({"status": "ERROR", "reason": e.message}), e.status
        except Exception as e:
            logger.exception("LNURL request failed: %s", e)
            return jsonify({"status": "ERROR", "reason": "Unexpected error"}), 500
