"""
Admin settings pages: general server settings, login credentials and the
Lightning backend configuration.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from flask import Blueprint, redirect, request
from pydantic import ValidationInfo, field_validator, model_validator
from werkzeug.security import check_password_hash

import coin_rates
import config
import lightning
from admin_auth import get_store, render_form, render_http_error, require_login
from forms import Form, FormSchema, Group, ValidationError, form_error, input_field
from lnurl_server import HttpError

logger = logging.getLogger(__name__)

bp = Blueprint("admin_settings", __name__, url_prefix="/admin/settings")

SAVED = "Settings were saved successfully."


# --- General ---

class GeneralSettingsForm(FormSchema):
    url: str = input_field(
        "Server Base URL",
        required=True,
        help="Public URL of this server; devices and wallets use it to reach the LNURL endpoint.",
    )
    default_exchange_rates_provider: str = input_field(
        "Exchange Rates Provider",
        required=True,
        name="defaultExchangeRatesProvider",
        widget="select",
        options=lambda: [(name, name) for name in coin_rates.provider_names()],
    )

    @field_validator("url")
    @classmethod
    def url_is_http(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise form_error('"Server Base URL" must be a valid http(s) URL')
        return value.rstrip("/")

    @field_validator("default_exchange_rates_provider")
    @classmethod
    def provider_is_known(cls, value: str) -> str:
        if value not in coin_rates.PROVIDERS:
            raise form_error(f'Unknown exchange rates provider: "{value}"')
        return value


general_form = Form(GeneralSettingsForm, title="General Settings", action="/admin/settings/general")


# --- Login credentials ---

class LoginSettingsForm(FormSchema):
    current_password: str = input_field("Current Password", required=True, name="currentPassword", widget="password")
    new_password: str = input_field("New Password", required=True, name="newPassword", widget="password")
    verify_new_password: str = input_field(
        "Verify New Password", required=True, name="verifyNewPassword", widget="password"
    )

    @field_validator("current_password")
    @classmethod
    def current_password_matches(cls, value: str, info: ValidationInfo) -> str:
        password_hash = (info.context or {}).get("password_hash")
        if not password_hash or not check_password_hash(password_hash, value):
            raise form_error('"Current Password" was incorrect')
        return value

    @model_validator(mode="after")
    def new_passwords_match(self):
        if self.new_password != self.verify_new_password:
            raise form_error('"Verify New Password" must match "New Password"')
        return self


login_form = Form(LoginSettingsForm, title="Login Credentials", action="/admin/settings/login")


# --- Lightning ---

class LightningSettingsForm(FormSchema):
    backend: str = input_field(
        "Backend",
        required=True,
        widget="select",
        options=lightning.backend_options,
        initial="dummy",
    )
    lnd_base_url: Optional[str] = input_field("Base URL", name="lnd[baseUrl]")
    lnd_cert: Optional[str] = input_field("TLS Certificate", name="lnd[cert]", widget="textarea")
    lnd_macaroon: Optional[str] = input_field("Macaroon (hex)", name="lnd[macaroon]", widget="textarea")
    lnbits_base_url: Optional[str] = input_field("Base URL", name="lnbits[baseUrl]")
    lnbits_admin_key: Optional[str] = input_field("Admin Key", name="lnbits[adminKey]")

    @field_validator("backend")
    @classmethod
    def backend_is_known(cls, value: str) -> str:
        if value not in lightning.BACKENDS:
            raise form_error(f'Unsupported Lightning backend: "{value}"')
        return value

    def credentials(self) -> dict:
        prefix = f"{self.backend}_"
        return {
            "baseUrl": getattr(self, prefix + "base_url", None),
            "cert": getattr(self, prefix + "cert", None),
            "macaroon": getattr(self, prefix + "macaroon", None),
            "adminKey": getattr(self, prefix + "admin_key", None),
        }

    @model_validator(mode="after")
    def credentials_complete(self):
        errors = lightning.check_credentials(self.backend, self.credentials())
        if errors:
            # several messages at once; passes through pydantic untouched
            raise ValidationError(errors)
        return self


lightning_form = Form(
    LightningSettingsForm,
    title="Lightning Configuration",
    action="/admin/settings/lightning",
    groups=[
        Group(name="backend", fields=("backend",)),
        Group(
            name="lnd",
            fields=("lnd_base_url", "lnd_cert", "lnd_macaroon"),
            instructions="Required when the backend is lnd.",
        ),
        Group(
            name="lnbits",
            fields=("lnbits_base_url", "lnbits_admin_key"),
            instructions="Required when the backend is LNbits.",
        ),
    ],
)


def _lightning_values(settings) -> dict:
    current = settings.lightning
    if not current:
        return {"backend": "dummy"}
    values = {"backend": current.backend}
    for key, value in current.config.items():
        values[lightning.input_name(current.backend, key)] = value
    return values


# --- Routes ---

@bp.before_request
def _require_login():
    return require_login()


@bp.errorhandler(HttpError)
def handle_http_error(error):
    return render_http_error(error)


@bp.route("", strict_slashes=False)
def index():
    return redirect("/admin/settings/general")


@bp.route("/general", methods=["GET", "POST"])
def general():
    store = get_store()
    if request.method == "GET":
        settings = store.current
        values = {"url": settings.url, "defaultExchangeRatesProvider": settings.coin_rates_default_provider}
        return render_form(general_form, general_form.serialize(values=values))

    try:
        values = general_form.validate(request.form.to_dict())
    except ValidationError as e:
        return render_form(general_form, general_form.serialize(values=request.form, errors=e.messages), 400)

    settings = store.transaction(
        "update general settings",
        lambda s: s.model_copy(update={
            "url": values.url,
            "coin_rates_default_provider": values.default_exchange_rates_provider,
        }),
    )
    saved = {"url": settings.url, "defaultExchangeRatesProvider": settings.coin_rates_default_provider}
    return render_form(general_form, general_form.serialize(values=saved, success=SAVED))


@bp.route("/login", methods=["GET", "POST"])
def login_credentials():
    store = get_store()
    if request.method == "GET":
        return render_form(login_form, login_form.serialize())

    try:
        values = login_form.validate(request.form.to_dict(), context={"password_hash": store.current.admin.password})
    except ValidationError as e:
        return render_form(login_form, login_form.serialize(errors=e.messages), 400)

    password_hash = config.hash_password(values.new_password)
    store.transaction("change admin password", lambda s: s.with_admin(password=password_hash))
    logger.info("Admin password changed")
    return render_form(login_form, login_form.serialize(success=SAVED))


@bp.route("/lightning", methods=["GET", "POST"])
def lightning_settings():
    store = get_store()
    if request.method == "GET":
        return render_form(lightning_form, lightning_form.serialize(values=_lightning_values(store.current)))

    try:
        values = lightning_form.validate(request.form.to_dict())
    except ValidationError as e:
        return render_form(lightning_form, lightning_form.serialize(values=request.form, errors=e.messages), 400)

    new_lightning = lightning.lightning_settings(values.backend, values.credentials())
    settings = store.transaction(
        f"configure Lightning backend {new_lightning.backend}",
        lambda s: s.model_copy(update={"lightning": new_lightning}),
    )
    return render_form(lightning_form, lightning_form.serialize(values=_lightning_values(settings), success=SAVED))
