"""
Immutable configuration snapshot for the Bleskomat server.

Every admin write produces a new snapshot (copy-on-write) through
config_store.ConfigStore; nothing here is ever mutated in place.
Field aliases are the camelCase names used in the persisted JSON.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConfigurationError(ValueError):
    """Raised when the server cannot start with the given settings."""


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class ApiKey(FrozenModel):
    """Credential pair used by a device to sign LNURLs."""

    id: str
    key: str
    encoding: Literal["hex", "utf8"] = "hex"
    enabled: bool = True
    fiat_currency: str = Field(default="EUR", alias="fiatCurrency")
    exchange_rates_provider: str = Field(default="kraken", alias="exchangeRatesProvider")
    fee_percent: str = Field(default="0.00", alias="feePercent")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class AdminSettings(FrozenModel):
    web: bool = True
    # werkzeug scrypt hash; empty until the setup form has been submitted
    password: str = ""
    session_secret: str = Field(default="", alias="sessionSecret")


class LightningSettings(FrozenModel):
    backend: str = "dummy"
    config: dict = Field(default_factory=dict)

    def to_json(self) -> dict:
        return {"backend": self.backend, "config": dict(self.config)}


class Settings(FrozenModel):
    url: str = "http://localhost:3000"
    endpoint: str = "/u"
    host: str = "localhost"
    port: int = 3000
    admin: AdminSettings = Field(default_factory=AdminSettings)
    api_keys: tuple[ApiKey, ...] = Field(default=(), alias="apiKeys")
    lightning: Optional[LightningSettings] = None
    coin_rates_default_provider: str = Field(default="kraken", alias="coinRatesDefaultProvider")
    env_file_path: Optional[str] = Field(default=None, alias="envFilePath")

    @property
    def callback_url(self) -> str:
        return f"{self.url.rstrip('/')}{self.endpoint}"

    def find_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        for api_key in self.api_keys:
            if api_key.id == api_key_id:
                return api_key
        return None

    def with_api_keys(self, api_keys) -> "Settings":
        return self.model_copy(update={"api_keys": tuple(api_keys)})

    def with_admin(self, **changes) -> "Settings":
        return self.model_copy(update={"admin": self.admin.model_copy(update=changes)})
