from secrets import token_bytes
from typing import Any, Generator

import pytest
from flask import Flask

from juanlms import create_app
from juanlms.crypto import CipherConfig, FieldCipher
from juanlms.db import db


@pytest.fixture()
def key() -> bytes:
    return token_bytes(32)


@pytest.fixture()
def other_key() -> bytes:
    return token_bytes(32)


@pytest.fixture()
def cipher(key: bytes) -> FieldCipher:
    return FieldCipher(CipherConfig.single(key))


@pytest.fixture()
def strict_cipher(key: bytes) -> FieldCipher:
    """Same key, but without the legacy CBC fallback on reads."""
    return FieldCipher(CipherConfig.single(key, accept_legacy_cbc=False))


@pytest.fixture()
def app_config(key: bytes) -> dict[str, Any]:
    return {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "FIELD_ENCRYPTION_KEY": key.hex(),
        "FIELD_ENCRYPTION_LEGACY_CBC": True,
    }


@pytest.fixture()
def app(app_config: dict[str, Any]) -> Generator[Flask, None, None]:
    app = create_app(app_config)
    app.config["TESTING"] = True

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()

