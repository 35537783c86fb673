#!/usr/bin/env python3
"""
Bleskomat server

Flask application:
- Signed LNURL endpoint for ATMs / LNURLPoS devices (fiat amounts converted to msats)
- Web-based admin interface: API keys, exchange rates, Lightning backend credentials
- All admin changes persisted to the env file
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify

import admin_api_keys
import admin_auth
import admin_settings
import config
from config_models import Settings
from config_store import ConfigStore
from env_file import EnvFile
from fiat_conversion import make_signed_url_hook
from lnurl_server import HOOK_URL_SIGNED, LnurlServer

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


def create_server(settings: Optional[Settings] = None, env_file: Optional[EnvFile] = None) -> LnurlServer:
    """
    Build the LNURL server and, when enabled, the admin interface.

    settings defaults to the environment (see config.py); env_file defaults to
    the file named in settings. Pass both explicitly in tests.
    """
    if settings is None:
        settings = config.build_settings()
    if env_file is None and settings.env_file_path:
        env_file = EnvFile(settings.env_file_path)
    if env_file is not None:
        env_file.check()

    prepared = config.prepare_settings(settings)
    store = ConfigStore(prepared, env_file)
    if prepared.admin.password != settings.admin.password:
        # Plaintext admin password was hashed at startup
        store.save()

    app = Flask(__name__)
    app.secret_key = prepared.admin.session_secret
    server = LnurlServer(store, app)
    server.bind_to_hook(HOOK_URL_SIGNED, make_signed_url_hook(server))

    app.extensions["config_store"] = store
    app.extensions["lnurl_server"] = server

    if prepared.admin.web:
        app.register_blueprint(admin_auth.bp)
        app.register_blueprint(admin_api_keys.bp)
        app.register_blueprint(admin_settings.bp)

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "service": "bleskomat-server",
        }), 200

    logger.info(
        "Server ready: callback URL %s, %d API key(s), admin interface %s",
        server.get_callback_url(),
        len(prepared.api_keys),
        "enabled" if prepared.admin.web else "disabled",
    )
    return server


if __name__ == "__main__":
    server = create_server()
    settings = server.store.current
    server.app.run(host=settings.host, port=settings.port, debug=config.DEBUG)
