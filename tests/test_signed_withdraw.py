"""Signed LNURL withdraw requests with fiat-denominated amounts."""

import hashlib
import hmac
from decimal import Decimal

import pytest

import coin_rates
from conftest import add_api_keys, new_api_key, sign_query
from fiat_conversion import to_millisatoshis
from lnurl_server import prepare_signed_payload


@pytest.fixture()
def api_key(server):
    api_key = new_api_key(exchange_rates_provider="bitstamp")
    add_api_keys(server, api_key)
    return api_key


def withdraw_query(**changes):
    query = {
        "tag": "withdrawRequest",
        "nonce": "a1b2c3d4",
        "minWithdrawable": "1.00",
        "maxWithdrawable": "1.00",
        "defaultDescription": "Bleskomat withdrawal",
        "f": "EUR",
    }
    query.update(changes)
    return {k: v for k, v in query.items() if v is not None}


def test_to_millisatoshis():
    assert to_millisatoshis("1.00", Decimal("50000")) == 2_000_000
    assert to_millisatoshis("0.10", "60000") == 166_666
    assert to_millisatoshis(3, 1) == 300_000_000_000
    with pytest.raises(ValueError):
        to_millisatoshis("abc", "50000")
    with pytest.raises(ValueError):
        to_millisatoshis("1.00", "0")
    with pytest.raises(ValueError):
        to_millisatoshis("1e1000000", "50000")


def test_withdraw_request(client, api_key, fake_rates):
    query = sign_query(api_key, withdraw_query())
    resp = client.get("/u", query_string=query, headers={"Origin": "https://wallet.example"})
    assert resp.status_code == 200, resp.get_json()
    data = resp.get_json()
    assert data["tag"] == "withdrawRequest"
    assert data["minWithdrawable"] == data["maxWithdrawable"] == 2_000_000
    assert data["callback"] == "http://127.0.0.1:3000/u"
    assert data["defaultDescription"] == "Bleskomat withdrawal"
    assert len(data["k1"]) == 64
    assert fake_rates[-1] == ("BTC", "EUR", "bitstamp")
    # flask-cors 6 echoes the request origin instead of "*"
    assert resp.headers["Access-Control-Allow-Origin"] in ("*", "https://wallet.example")


def test_fiat_currency_long_name(client, api_key):
    query = withdraw_query(f=None, fiatCurrency="USD", minWithdrawable="6", maxWithdrawable="6")
    resp = client.get("/u", query_string=sign_query(api_key, query))
    assert resp.status_code == 200
    assert resp.get_json()["maxWithdrawable"] == 10_000_000


def test_utf8_key(client, server):
    api_key = new_api_key(encoding="utf8")
    add_api_keys(server, api_key)
    resp = client.get("/u", query_string=sign_query(api_key, withdraw_query()))
    assert resp.status_code == 200


@pytest.mark.parametrize("changes, reason", [
    ({"maxWithdrawable": "2.00"}, "min/maxWithdrawable must be equal"),
    ({"f": None}, 'Missing required fiat currency symbol: "f" or "fiatCurrency"'),
    ({"tag": "payRequest"}, 'Unsupported tag: "payRequest"'),
    ({"minWithdrawable": "abc", "maxWithdrawable": "abc"}, 'Invalid fiat amount: "abc"'),
])
def test_rejected(client, api_key, changes, reason):
    resp = client.get("/u", query_string=sign_query(api_key, withdraw_query(**changes)))
    assert resp.status_code == 400
    assert resp.get_json() == {"status": "ERROR", "reason": reason}


def test_disabled_key(client, server):
    api_key = new_api_key(enabled=False)
    add_api_keys(server, api_key)
    resp = client.get("/u", query_string=sign_query(api_key, withdraw_query()))
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == f'API key disabled: ID = "{api_key.id}"'


def test_invalid_signature(client, api_key):
    query = sign_query(api_key, withdraw_query())
    query["minWithdrawable"] = query["maxWithdrawable"] = "100.00"
    resp = client.get("/u", query_string=query)
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "Invalid API key signature"


def test_unknown_key(client):
    query = sign_query(new_api_key(), withdraw_query())
    resp = client.get("/u", query_string=query)
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "Invalid API key signature"


def test_unsigned(client):
    resp = client.get("/u", query_string=withdraw_query())
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "Missing signature"


def test_rate_failure_propagates(client, api_key, monkeypatch):
    def failing_get(currencies, provider=None):
        raise coin_rates.ExchangeRateError("bitstamp: failed to fetch BTC/EUR rate")

    monkeypatch.setattr(coin_rates, "get", failing_get)
    resp = client.get("/u", query_string=sign_query(api_key, withdraw_query()))
    assert resp.status_code == 500
    assert resp.get_json()["status"] == "ERROR"


def test_withdraw_request_is_remembered(client, server, api_key):
    data = client.get("/u", query_string=sign_query(api_key, withdraw_query())).get_json()
    assert server.get_withdraw_request(data["k1"]) == data
    assert server.get_withdraw_request("0" * 64) is None


def test_get_api_key_defaults(server, api_key):
    assert server.get_api_key(api_key.id).enabled is True
    assert server.get_api_key("missing") is None


def test_device_payload_encoding(client, server):
    api_key = new_api_key(key="f1d2d2f924e986ac86fdf7b36c94bcdf32beec15f1d2d2f924e986ac86fdf7b3",
                          exchange_rates_provider="bitstamp")
    add_api_keys(server, api_key)
    query = withdraw_query(defaultDescription="ATM (1/2) it's *cool*!", id=api_key.id)
    # Encoded the way device firmware and the Node reference server do it
    payload = (
        "defaultDescription=ATM%20(1%2F2)%20it's%20*cool*!&f=EUR"
        f"&id={api_key.id}&maxWithdrawable=1.00&minWithdrawable=1.00"
        "&nonce=a1b2c3d4&tag=withdrawRequest"
    )
    assert prepare_signed_payload(query) == payload
    query["signature"] = hmac.new(bytes.fromhex(api_key.key), payload.encode(), hashlib.sha256).hexdigest()

    resp = client.get("/u", query_string=query)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()["defaultDescription"] == "ATM (1/2) it's *cool*!"


@pytest.mark.parametrize("amount", ["1e1000000", "-1e1000000"])
def test_amount_overflow(client, api_key, amount):
    query = sign_query(api_key, withdraw_query(minWithdrawable=amount, maxWithdrawable=amount))
    resp = client.get("/u", query_string=query)
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == f'Invalid fiat amount: "{amount}"'
