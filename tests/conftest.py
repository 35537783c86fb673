from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

import coin_rates
from app import create_server
from config_models import Settings
from env_file import EnvFile
from lnurl_server import create_signature, generate_api_key, prepare_signed_payload

TEST_PASSWORD = "test"

RATES = {
    "EUR": Decimal("50000"),
    "USD": Decimal("60000"),
    "CZK": Decimal("1250000"),
}


@pytest.fixture()
def fake_rates(monkeypatch):
    """Replace exchange-rate lookups with fixed BTC prices (no network)."""
    calls = []

    def fake_get(currencies, provider=None):
        calls.append((currencies["from"], currencies["to"], provider))
        to_code = currencies["to"].upper()
        if provider not in coin_rates.PROVIDERS or to_code not in RATES:
            raise coin_rates.ExchangeRateError(f"{provider}: no rate for {to_code}")
        return RATES[to_code]

    monkeypatch.setattr(coin_rates, "get", fake_get)
    return calls


@pytest.fixture()
def env_path(tmp_path):
    return tmp_path / ".env"


@pytest.fixture()
def make_server(env_path, fake_rates):
    def _make(password=TEST_PASSWORD, **overrides):
        data = {
            "url": "http://127.0.0.1:3000",
            "admin": {
                "web": True,
                "password": generate_password_hash(password, method="scrypt:16384:8:1") if password else "",
                "sessionSecret": "test-session-secret",
            },
        }
        data.update(overrides)
        settings = Settings.model_validate(data)
        server = create_server(settings, EnvFile(str(env_path)))
        server.app.config["TESTING"] = True
        return server

    return _make


@pytest.fixture()
def server(make_server):
    return make_server()


@pytest.fixture()
def client(server):
    return server.app.test_client()


@pytest.fixture()
def admin_client(client):
    resp = client.post("/admin/login", data={"password": TEST_PASSWORD})
    assert resp.status_code == 302
    return client


def read_env(path):
    return EnvFile(str(path)).read()


def add_api_keys(server, *api_keys):
    server.store.transaction("add test API keys", lambda s: s.with_api_keys(s.api_keys + api_keys))


def new_api_key(**changes):
    return generate_api_key(encoding="hex").model_copy(update=changes)


def sign_query(api_key, query):
    query = dict(query, id=api_key.id)
    query["signature"] = create_signature(prepare_signed_payload(query), api_key.key, api_key.encoding)
    return query
