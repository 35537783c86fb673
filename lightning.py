"""
Lightning backends known to the server and the credentials each one needs.

Supports:
- dummy: no Lightning node; withdraw requests are answered but never paid
- lnd: Lightning Network Daemon REST API (base URL, TLS cert, admin macaroon)
- lnbits: LNbits wallet API (base URL, admin key)

Only the credentials live here; talking to the node is the job of the
payment integration.
"""

import re
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse

from config_models import LightningSettings

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


@dataclass(frozen=True)
class Credential:
    key: str
    label: str
    widget: str = "text"
    check: Optional[str] = None  # "url" | "hex"


@dataclass(frozen=True)
class Backend:
    name: str
    label: str
    credentials: tuple[Credential, ...] = ()


BACKENDS = {
    backend.name: backend
    for backend in (
        Backend(name="dummy", label="Dummy (no payments)"),
        Backend(
            name="lnd",
            label="Lightning Network Daemon (lnd)",
            credentials=(
                Credential("baseUrl", "Base URL", check="url"),
                Credential("cert", "TLS Certificate", widget="textarea"),
                Credential("macaroon", "Macaroon (hex)", widget="textarea", check="hex"),
            ),
        ),
        Backend(
            name="lnbits",
            label="LNbits",
            credentials=(
                Credential("baseUrl", "Base URL", check="url"),
                Credential("adminKey", "Admin Key"),
            ),
        ),
    )
}


def backend_options() -> list[tuple[str, str]]:
    return [(backend.name, backend.label) for backend in BACKENDS.values()]


def get_backend(name: str) -> Backend:
    try:
        return BACKENDS[name]
    except KeyError:
        raise ValueError(f'Unsupported Lightning backend: "{name}"')


def input_name(backend: str, key: str) -> str:
    """HTML input name for a backend credential, e.g. lnd[baseUrl]."""
    return f"{backend}[{key}]"


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def check_credentials(backend_name: str, config: Mapping[str, Optional[str]]) -> list[str]:
    """Return error messages for missing or malformed credentials."""
    backend = get_backend(backend_name)
    errors = []
    for credential in backend.credentials:
        value = (config.get(credential.key) or "").strip()
        if not value:
            errors.append(f'"{credential.label}" is required')
        elif credential.check == "url" and not _is_http_url(value):
            errors.append(f'"{credential.label}" must be a valid http(s) URL')
        elif credential.check == "hex" and not _HEX_RE.match(value):
            errors.append(f'"{credential.label}" must be hexadecimal')
    return errors


def lightning_settings(backend_name: str, config: Mapping[str, Optional[str]]) -> LightningSettings:
    backend = get_backend(backend_name)
    return LightningSettings(
        backend=backend.name,
        config={c.key: (config.get(c.key) or "").strip() for c in backend.credentials},
    )
