"""
Admin routes for API keys: create, edit, delete and download the device
configuration file.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Literal

from flask import Blueprint, Response, redirect, request
from pydantic import field_validator, model_validator

import coin_rates
from admin_auth import get_server, get_store, render_form, render_http_error, require_login
from forms import Form, FormSchema, Group, ValidationError, form_error, input_field
from lnurl_server import HttpError, generate_api_key, stringify_key_value

logger = logging.getLogger(__name__)

bp = Blueprint("admin_api_keys", __name__, url_prefix="/admin/api-keys")

ENCODING_OPTIONS = [("hex", "hexadecimal"), ("utf8", "utf-8")]


def _provider_options():
    return [(name, name) for name in coin_rates.provider_names()]


class ApiKeyOptionsForm(FormSchema):
    enabled: bool = input_field("Enabled", default=False, widget="checkbox", initial=True)
    fiat_currency: str = input_field("Fiat Currency", required=True, name="fiatCurrency", initial="EUR")
    exchange_rates_provider: str = input_field(
        "Exchange Rates Provider",
        required=True,
        name="exchangeRatesProvider",
        widget="select",
        options=_provider_options,
        initial="kraken",
    )
    fee_percent: str = input_field("Fee Percent (%)", required=True, name="feePercent", initial="0.00")

    @field_validator("fiat_currency")
    @classmethod
    def upper_case_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("fee_percent")
    @classmethod
    def fee_percent_is_number(cls, value: str) -> str:
        try:
            number = Decimal(value)
        except InvalidOperation:
            raise form_error("Fee Percent (%) must be a number")
        if not number.is_finite():
            raise form_error("Fee Percent (%) must be a number")
        return value

    @model_validator(mode="after")
    def provider_supports_currency(self):
        provider = self.exchange_rates_provider
        try:
            coin_rates.get({"from": "BTC", "to": self.fiat_currency}, provider=provider)
        except coin_rates.ExchangeRateError as e:
            logger.warning("Rate check failed for %s via %s: %s", self.fiat_currency, provider, e)
            raise form_error(f'Fiat currency ("{self.fiat_currency}") not supported by the selected provider ("{provider}")')
        return self

    def options(self) -> dict:
        return {
            "enabled": self.enabled,
            "fiat_currency": self.fiat_currency,
            "exchange_rates_provider": self.exchange_rates_provider,
            "fee_percent": self.fee_percent,
        }


class CreateApiKeyForm(ApiKeyOptionsForm):
    encoding: Literal["hex", "utf8"] = input_field(
        "API Key Encoding",
        required=True,
        widget="select",
        options=ENCODING_OPTIONS,
        initial="hex",
        help="Legacy LNURLPoS device firmware requires utf-8. Most other devices use hexadecimal.",
    )


class EditApiKeyForm(ApiKeyOptionsForm):
    id: str = input_field("API Key ID", widget="text", readonly=True)
    encoding: str = input_field("Encoding", widget="text", readonly=True)


_option_fields = ("enabled", "fiat_currency", "exchange_rates_provider", "fee_percent")

create_form = Form(
    CreateApiKeyForm,
    title="Create New API Key",
    action="/admin/api-keys/create",
    submit="Create",
    instructions="Use the form below to create a new API key",
    groups=[
        Group(name="apiKey", fields=("encoding",)),
        Group(name="options", fields=_option_fields),
    ],
)

edit_form = Form(
    EditApiKeyForm,
    title="Edit API Key",
    submit="Save",
    groups=[
        Group(name="apiKey", fields=("id", "encoding")),
        Group(name="options", fields=_option_fields),
    ],
)


@bp.before_request
def _require_login():
    return require_login()


@bp.errorhandler(HttpError)
def handle_http_error(error):
    return render_http_error(error)


@bp.route("/create", methods=["GET", "POST"])
def create():
    if request.method == "GET":
        return render_form(create_form, create_form.serialize())

    try:
        values = create_form.validate(request.form.to_dict())
    except ValidationError as e:
        return render_form(create_form, create_form.serialize(values=request.form, errors=e.messages), 400)

    api_key = generate_api_key(encoding="hex").model_copy(update={"encoding": values.encoding, **values.options()})
    get_store().transaction(
        f"create API key {api_key.id}",
        lambda settings: settings.with_api_keys(settings.api_keys + (api_key,)),
    )
    return redirect("/admin/overview")


@bp.route("/add")
def add():
    """Quick create: a hex key with the default options."""
    api_key = generate_api_key(encoding="hex")
    get_store().transaction(
        f"add API key {api_key.id}",
        lambda settings: settings.with_api_keys(settings.api_keys + (api_key,)),
    )
    return redirect("/admin/overview")


@bp.route("/<api_key_id>/delete")
def delete(api_key_id):
    get_store().transaction(
        f"delete API key {api_key_id}",
        lambda settings: settings.with_api_keys(k for k in settings.api_keys if k.id != api_key_id),
    )
    return redirect("/admin/overview")


@bp.route("/<api_key_id>/download-config")
def download_config(api_key_id):
    api_key = get_store().current.find_api_key(api_key_id)
    if not api_key:
        raise HttpError(f'Cannot download configuration file because API Key with ID "{api_key_id}" was not found.', 404)
    output = stringify_key_value({
        "apiKey.id": api_key.id,
        "apiKey.key": api_key.key,
        "apiKey.encoding": api_key.encoding,
        "callbackUrl": get_server().get_callback_url(),
    })
    return Response(
        output,
        headers={
            "Content-Type": "text/plain",
            "Content-Disposition": "attachment; filename=bleskomat.conf",
        },
    )


@bp.route("/<api_key_id>/edit", methods=["GET", "POST"])
def edit(api_key_id):
    store = get_store()
    api_key = store.current.find_api_key(api_key_id)
    if not api_key:
        raise HttpError(f"API key does not exist: ID = {api_key_id}", 400)

    if request.method == "GET":
        success = "Changes saved successfully." if "success" in request.args else ""
        return render_form(edit_form, edit_form.serialize(values=api_key.to_json(), success=success))

    form_data = request.form.to_dict()
    form_data.update({"id": api_key.id, "encoding": api_key.encoding})
    try:
        values = edit_form.validate(form_data)
    except ValidationError as e:
        return render_form(edit_form, edit_form.serialize(values=form_data, errors=e.messages), 400)

    def apply(settings):
        if not settings.find_api_key(api_key_id):
            raise HttpError(f"API key does not exist: ID = {api_key_id}", 400)
        return settings.with_api_keys(
            k.model_copy(update=values.options()) if k.id == api_key_id else k
            for k in settings.api_keys
        )

    store.transaction(f"edit API key {api_key_id}", apply)
    return redirect(f"/admin/api-keys/{api_key_id}/edit?success")
