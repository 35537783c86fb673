"""Startup settings: environment parsing and admin interface checks."""

import json

import pytest
from werkzeug.security import check_password_hash

import config
from config_models import ConfigurationError, LightningSettings, Settings


def test_build_settings_from_environ():
    environ = {
        "BLESKOMAT_SERVER_URL": "https://example.com",
        "BLESKOMAT_SERVER_PORT": "8080",
        "BLESKOMAT_SERVER_AUTH_API_KEYS": json.dumps([{"id": "abc", "key": "00ff", "fiatCurrency": "CZK"}]),
        "BLESKOMAT_SERVER_ADMIN_WEB": "false",
        "BLESKOMAT_SERVER_LIGHTNING": json.dumps({"backend": "lnbits", "config": {"baseUrl": "https://lnbits.example"}}),
    }
    settings = config.build_settings(environ)
    assert settings.url == "https://example.com"
    assert settings.port == 8080
    assert settings.endpoint == config.ENDPOINT
    assert settings.callback_url == "https://example.com" + config.ENDPOINT
    assert settings.admin.web is False
    assert settings.lightning.backend == "lnbits"
    api_key = settings.find_api_key("abc")
    assert api_key.fiat_currency == "CZK"
    assert api_key.enabled is True
    assert api_key.encoding == "hex"


def test_build_settings_bad_json():
    with pytest.raises(ConfigurationError):
        config.build_settings({"BLESKOMAT_SERVER_AUTH_API_KEYS": "[{"})


def test_plaintext_password_hashed():
    prepared = config.prepare_settings(Settings(), password_plaintext="hunter2")
    assert prepared.admin.password != "hunter2"
    assert check_password_hash(prepared.admin.password, "hunter2")


def test_existing_hash_kept():
    settings = Settings().with_admin(password="scrypt:existing", session_secret="s3cret")
    prepared = config.prepare_settings(settings, password_plaintext="ignored")
    assert prepared.admin.password == "scrypt:existing"
    assert prepared.admin.session_secret == "s3cret"


def test_session_secret_generated():
    prepared = config.prepare_settings(Settings(), password_plaintext="")
    assert len(prepared.admin.session_secret) == 64


def test_password_required_with_lightning_backend():
    settings = Settings(lightning=LightningSettings(backend="lnd", config={"baseUrl": "https://lnd:8080"}))
    with pytest.raises(ConfigurationError, match="A password is required"):
        config.prepare_settings(settings, password_plaintext="")


def test_dummy_backend_without_password():
    settings = Settings(lightning=LightningSettings(backend="dummy"))
    prepared = config.prepare_settings(settings, password_plaintext="")
    assert prepared.admin.password == ""


def test_admin_disabled_untouched():
    settings = Settings(lightning=LightningSettings(backend="lnd")).with_admin(web=False)
    assert config.prepare_settings(settings, password_plaintext="hunter2") is settings
