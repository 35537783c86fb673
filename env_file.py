"""
Environment-file persistence for the server configuration.

The env file is the durable copy of the config snapshot. Managed keys are
rewritten on every save; any other keys already present in the file are kept.
Writes go to a temporary file first and are moved into place, so a reader
never sees a half-written file.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Mapping, Optional

from dotenv import dotenv_values

from config_models import ConfigurationError, Settings

logger = logging.getLogger(__name__)

PREFIX = "BLESKOMAT_SERVER_"

KEY_URL = PREFIX + "URL"
KEY_ENDPOINT = PREFIX + "ENDPOINT"
KEY_HOST = PREFIX + "HOST"
KEY_PORT = PREFIX + "PORT"
KEY_API_KEYS = PREFIX + "AUTH_API_KEYS"
KEY_ADMIN_WEB = PREFIX + "ADMIN_WEB"
KEY_ADMIN_PASSWORD = PREFIX + "ADMIN_PASSWORD"
KEY_LIGHTNING = PREFIX + "LIGHTNING"
KEY_COINRATES_PROVIDER = PREFIX + "COINRATES_DEFAULTS_PROVIDER"

MANAGED_KEYS = (
    KEY_URL,
    KEY_ENDPOINT,
    KEY_HOST,
    KEY_PORT,
    KEY_API_KEYS,
    KEY_ADMIN_WEB,
    KEY_ADMIN_PASSWORD,
    KEY_LIGHTNING,
    KEY_COINRATES_PROVIDER,
)


def to_env(settings: Settings) -> dict[str, str]:
    """Flatten a settings snapshot into env-file values."""
    return {
        KEY_URL: settings.url,
        KEY_ENDPOINT: settings.endpoint,
        KEY_HOST: settings.host,
        KEY_PORT: str(settings.port),
        KEY_API_KEYS: json.dumps([api_key.to_json() for api_key in settings.api_keys]),
        KEY_ADMIN_WEB: "true" if settings.admin.web else "false",
        KEY_ADMIN_PASSWORD: settings.admin.password,
        KEY_LIGHTNING: json.dumps(settings.lightning.to_json()) if settings.lightning else "",
        KEY_COINRATES_PROVIDER: settings.coin_rates_default_provider,
    }


def _parse_json(values: Mapping[str, Optional[str]], key: str, default):
    raw = (values.get(key) or "").strip()
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'Invalid JSON in "{key}": {e}') from e


def settings_data_from_env(values: Mapping[str, Optional[str]]) -> dict:
    """
    Read the managed keys out of an env mapping (os.environ or a parsed file).

    Returns keyword data for Settings.model_validate; keys absent from the
    mapping are left out so that model defaults apply.
    """
    data: dict = {}
    simple = {
        KEY_URL: "url",
        KEY_ENDPOINT: "endpoint",
        KEY_HOST: "host",
        KEY_PORT: "port",
        KEY_COINRATES_PROVIDER: "coinRatesDefaultProvider",
    }
    for env_key, field in simple.items():
        if values.get(env_key):
            data[field] = values[env_key]

    data["apiKeys"] = _parse_json(values, KEY_API_KEYS, [])
    lightning = _parse_json(values, KEY_LIGHTNING, None)
    if lightning:
        data["lightning"] = lightning

    admin: dict = {}
    if values.get(KEY_ADMIN_WEB):
        admin["web"] = values[KEY_ADMIN_WEB].strip().lower() in ("1", "true", "yes")
    if values.get(KEY_ADMIN_PASSWORD):
        admin["password"] = values[KEY_ADMIN_PASSWORD]
    data["admin"] = admin
    return data


def _quote(value: str) -> str:
    # dotenv_values decodes \\ and \' inside single quotes; newlines are kept
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class EnvFile:
    """
    Reads and writes a single env file.

    Usage:
        env = EnvFile(".env")
        env.check()             # startup sanity checks
        env.save(to_env(settings))
    """

    def __init__(self, path: str):
        self.path = Path(path).resolve()
        self._write_lock = Lock()

    def check(self) -> None:
        """Directory must exist and the file must be writable (created if missing)."""
        if not self.path.parent.is_dir():
            raise ConfigurationError(f"Env file directory does not exist: {self.path.parent}")
        with open(self.path, "a", encoding="utf-8"):
            pass

    def read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        return {k: v for k, v in dotenv_values(self.path, interpolate=False).items() if v is not None}

    def save(self, values: Mapping[str, str]) -> None:
        """Merge values over the current file contents and replace the file."""
        with self._write_lock:
            merged = self.read()
            merged.update(values)
            lines = [f"{key}={_quote(value or '')}" for key, value in merged.items()]
            content = "\n".join(lines) + "\n"

            fd, tmp_path = tempfile.mkstemp(prefix=".env-", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                if self.path.exists():
                    os.chmod(tmp_path, self.path.stat().st_mode & 0o777)
                os.replace(tmp_path, self.path)
            except Exception:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            logger.debug("Wrote %d keys to %s", len(merged), self.path)
