import logging
from typing import Any, Mapping, Optional

from flask import Flask

from juanlms.cli_fields import register_fields_commands
from juanlms.config import load_config
from juanlms.crypto import FieldCipher, cipher_config_from_mapping
from juanlms.db import db, migrate
from juanlms.version import __version__


def create_app(
    config: Optional[Mapping[str, Any]] = None, *, cipher: Optional[FieldCipher] = None
) -> Flask:
    app = Flask(__name__)

    if app.config["DEBUG"] or app.config["TESTING"]:
        app.logger.setLevel(logging.DEBUG)
    else:
        logging.basicConfig(format="%(levelname)s:%(message)s")

    app.logger.info(f"Starting juanlms {__version__}")

    if not config:
        config = load_config()

    app.config.from_mapping(config)

    # a missing or malformed key must stop the process here, not on the first write
    if cipher is None:
        cipher = FieldCipher(cipher_config_from_mapping(app.config))
    app.config["FIELD_CIPHER"] = cipher
    app.logger.debug(f"Field encryption ready, active key {cipher.config.active_key_id!r}")

    db.init_app(app)
    migrate.init_app(app, db)

    register_commands(app)

    return app


def register_commands(app: Flask) -> None:
    register_fields_commands(app)
