"""
Configuration for the Bleskomat server.

Set via environment variables or the env file named by BLESKOMAT_SERVER_ENV_FILE.
The admin interface writes its changes back to that same file.
"""

import os
import secrets
from typing import Mapping, Optional

from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

from config_models import ConfigurationError, Settings
from env_file import settings_data_from_env

# Env file: read at startup, rewritten by the admin interface
ENV_FILE_PATH = os.getenv("BLESKOMAT_SERVER_ENV_FILE", ".env")
load_dotenv(ENV_FILE_PATH, override=False)

DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

# Public base URL; the LNURL callback URL is BASE_URL + ENDPOINT
URL = os.getenv("BLESKOMAT_SERVER_URL", "http://localhost:3000")
ENDPOINT = os.getenv("BLESKOMAT_SERVER_ENDPOINT", "/u")
HOST = os.getenv("BLESKOMAT_SERVER_HOST", "localhost")
PORT = int(os.getenv("BLESKOMAT_SERVER_PORT", "3000"))

# Admin web interface
ADMIN_WEB = os.getenv("BLESKOMAT_SERVER_ADMIN_WEB", "true").lower() == "true"
# Hashed on startup when no hash is configured, then dropped from the environment
ADMIN_PASSWORD_PLAINTEXT = os.getenv("BLESKOMAT_SERVER_ADMIN_PASSWORD_PLAINTEXT", "")
ADMIN_SESSION_SECRET = os.getenv("BLESKOMAT_SERVER_ADMIN_SESSION_SECRET", "")
# werkzeug method string: scrypt:N:r:p
ADMIN_SCRYPT = os.getenv("BLESKOMAT_SERVER_ADMIN_SCRYPT", "scrypt:32768:8:1")

# Exchange rates
COINRATES_DEFAULT_PROVIDER = os.getenv("BLESKOMAT_SERVER_COINRATES_DEFAULTS_PROVIDER", "kraken")
COINRATES_TIMEOUT = float(os.getenv("BLESKOMAT_SERVER_COINRATES_TIMEOUT", "10"))
COINRATES_CACHE_TTL = int(os.getenv("BLESKOMAT_SERVER_COINRATES_CACHE_TTL", "30"))


def hash_password(password: str) -> str:
    return generate_password_hash(password, method=ADMIN_SCRYPT)


def build_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build the startup snapshot from the environment."""
    environ = os.environ if environ is None else environ
    data = settings_data_from_env(environ)
    data.setdefault("url", URL)
    data.setdefault("endpoint", ENDPOINT)
    data.setdefault("host", HOST)
    data.setdefault("port", PORT)
    data.setdefault("coinRatesDefaultProvider", COINRATES_DEFAULT_PROVIDER)
    data["admin"].setdefault("web", ADMIN_WEB)
    data["admin"]["sessionSecret"] = ADMIN_SESSION_SECRET
    data["envFilePath"] = os.path.abspath(ENV_FILE_PATH) if ENV_FILE_PATH else None
    return Settings.model_validate(data)


def prepare_settings(settings: Settings, password_plaintext: Optional[str] = None) -> Settings:
    """
    Startup checks for the admin interface.

    Hashes a plaintext admin password when no hash is configured, refuses to
    expose an unprotected admin interface in front of a real Lightning
    backend, and generates a session secret when none is set.
    """
    if not settings.admin.web:
        return settings

    if password_plaintext is None:
        password_plaintext = ADMIN_PASSWORD_PLAINTEXT
    if password_plaintext:
        if not settings.admin.password:
            settings = settings.with_admin(password=hash_password(password_plaintext))
        os.environ.pop("BLESKOMAT_SERVER_ADMIN_PASSWORD_PLAINTEXT", None)

    lightning = settings.lightning
    if not settings.admin.password and lightning and lightning.backend != "dummy":
        raise ConfigurationError("A password is required to use the admin interface with a configured Lightning backend")

    if not settings.admin.session_secret:
        settings = settings.with_admin(session_secret=secrets.token_hex(32))
    return settings
