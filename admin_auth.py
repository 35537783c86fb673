"""
Admin interface: setup, login/logout and the overview page, plus the helpers
shared by the other admin route modules.
"""

import logging

from flask import Blueprint, current_app, redirect, render_template, request, session
from pydantic import model_validator
from werkzeug.security import check_password_hash

import config
from config_store import ConfigStore
from forms import Form, FormSchema, Group, ValidationError, form_error, input_field
from lnurl_server import HttpError, LnurlServer

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__, url_prefix="/admin")


# --- Shared helpers ---

def get_store() -> ConfigStore:
    return current_app.extensions["config_store"]


def get_server() -> LnurlServer:
    return current_app.extensions["lnurl_server"]


def is_logged_in() -> bool:
    return bool(session.get("logged_in"))


def require_login():
    """before_request guard for admin blueprints."""
    if not get_store().current.admin.password:
        return redirect("/admin/setup")
    if not is_logged_in():
        return redirect("/admin/login")
    return None


def render_form(form: Form, context: dict, status: int = 200):
    return render_template("form.html", form=context, title=form.title), status


def render_http_error(error: HttpError):
    return render_template("error.html", title="Error", message=error.message), error.status


# --- Forms ---

class SetupForm(FormSchema):
    password: str = input_field("Password", required=True, widget="password")
    verify_password: str = input_field("Verify Password", required=True, widget="password", name="verifyPassword")

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.verify_password:
            raise form_error('"Verify Password" must match "Password"')
        return self


class LoginForm(FormSchema):
    password: str = input_field("Password", required=True, widget="password")


setup_form = Form(
    SetupForm,
    title="Admin Interface Setup",
    action="/admin/setup",
    submit="Save",
    groups=[
        Group(
            name="login",
            fields=("password", "verify_password"),
            instructions="Set an administrator password to protect the admin interface.",
        ),
    ],
)

login_form = Form(LoginForm, title="Login", action="/admin/login", submit="Login")


# --- Routes ---

@bp.errorhandler(HttpError)
def handle_http_error(error):
    return render_http_error(error)


@bp.route("", strict_slashes=False)
def index():
    guard = require_login()
    if guard is not None:
        return guard
    return redirect("/admin/overview")


@bp.route("/setup", methods=["GET", "POST"])
def setup():
    store = get_store()
    if store.current.admin.password:
        return redirect("/admin/login")

    if request.method == "GET":
        return render_form(setup_form, setup_form.serialize())

    try:
        values = setup_form.validate(request.form.to_dict())
    except ValidationError as e:
        return render_form(setup_form, setup_form.serialize(values=request.form, errors=e.messages), 400)

    password_hash = config.hash_password(values.password)
    store.transaction("set admin password", lambda settings: settings.with_admin(password=password_hash))
    session.clear()
    session["logged_in"] = True
    logger.info("Admin password set via setup form")
    return redirect("/admin")


@bp.route("/login", methods=["GET", "POST"])
def login():
    store = get_store()
    if not store.current.admin.password:
        return redirect("/admin/setup")
    if is_logged_in():
        return redirect("/admin/overview")

    if request.method == "GET":
        return render_form(login_form, login_form.serialize())

    try:
        values = login_form.validate(request.form.to_dict())
    except ValidationError as e:
        return render_form(login_form, login_form.serialize(errors=e.messages), 400)

    if not check_password_hash(store.current.admin.password, values.password):
        logger.warning("Failed admin login from %s", request.remote_addr)
        return render_form(login_form, login_form.serialize(errors=["Invalid password"]), 400)

    session.clear()
    session["logged_in"] = True
    logger.info("Admin logged in from %s", request.remote_addr)
    return redirect("/admin/overview")


@bp.route("/logout")
def logout():
    session.clear()
    return redirect("/admin/login")


@bp.route("/overview")
def overview():
    guard = require_login()
    if guard is not None:
        return guard
    settings = get_store().current
    return render_template(
        "overview.html",
        title="Overview",
        api_keys=settings.api_keys,
        callback_url=get_server().get_callback_url(),
        lightning=settings.lightning,
        default_provider=settings.coin_rates_default_provider,
    )
