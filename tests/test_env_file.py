"""Env file persistence and the settings <-> env mapping."""

import json

import pytest

from config_models import ApiKey, ConfigurationError, LightningSettings, Settings
from env_file import KEY_API_KEYS, KEY_LIGHTNING, EnvFile, settings_data_from_env, to_env


def test_save_keeps_unmanaged_keys(tmp_path):
    path = tmp_path / ".env"
    path.write_text("DEBUG=true\nBLESKOMAT_SERVER_URL=http://old\n")
    env_file = EnvFile(str(path))

    env_file.save({"BLESKOMAT_SERVER_URL": "http://new"})

    assert env_file.read() == {"DEBUG": "true", "BLESKOMAT_SERVER_URL": "http://new"}


def test_awkward_values_survive(tmp_path):
    env_file = EnvFile(str(tmp_path / ".env"))
    values = {
        "MULTILINE": "-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----",
        "QUOTES": "it's \"quoted\"",
        "BACKSLASH": "C:\\path\\to",
        "DOLLARS": "scrypt:32768:8:1$salt$hash",
        "EMPTY": "",
    }
    env_file.save(values)
    assert env_file.read() == values


def test_settings_round_trip():
    settings = Settings(
        url="https://atm.example.com",
        api_keys=(ApiKey(id="abc", key="00" * 32, encoding="utf8", enabled=False, fiat_currency="CZK"),),
        lightning=LightningSettings(backend="lnd", config={"baseUrl": "https://127.0.0.1:8080"}),
        coin_rates_default_provider="coinbase",
    )
    env = to_env(settings)
    assert json.loads(env[KEY_API_KEYS])[0]["fiatCurrency"] == "CZK"
    assert json.loads(env[KEY_LIGHTNING]) == {"backend": "lnd", "config": {"baseUrl": "https://127.0.0.1:8080"}}

    restored = Settings.model_validate(settings_data_from_env(env))
    assert restored == settings


def test_invalid_json(tmp_path):
    with pytest.raises(ConfigurationError):
        settings_data_from_env({KEY_API_KEYS: "[{"})


def test_check_creates_file(tmp_path):
    path = tmp_path / ".env"
    EnvFile(str(path)).check()
    assert path.exists()


def test_check_missing_directory(tmp_path):
    with pytest.raises(ConfigurationError):
        EnvFile(str(tmp_path / "missing" / ".env")).check()
