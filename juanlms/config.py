import json
import os
from json import JSONDecodeError
from typing import Any, Mapping, Optional

from juanlms.utils import parse_bool

_STRING_CFG_PREFIX = "JUANLMS_CFG_"
_JSON_CFG_PREFIX = "JUANLMS_CFG_JSON_"


class ConfigParseError(Exception):
    pass


def load_config(env: Optional[Mapping[str, str]] = None) -> Mapping[str, Any]:
    if env is None:
        env = os.environ

    config: dict[str, Any] = {}
    for func in [
        _load_flask,
        _load_sqlalchemy,
        _load_field_encryption,
        # load strings and JSON last as overrides
        _load_strings,
        _load_json,
    ]:
        config |= func(env)

    return config


def _load_flask(env: Mapping[str, str]) -> Mapping[str, Any]:
    data = {}

    for key in ["FLASK_ENV", "SECRET_KEY"]:
        if val := env.get(key):
            data[key] = val

    return data


def _load_sqlalchemy(env: Mapping[str, str]) -> Mapping[str, Any]:
    data: dict[str, Any] = {}

    if db_uri := env.get("SQLALCHEMY_DATABASE_URI"):
        # if it's a Postgres URI, replace the scheme with `postgresql+psycopg`
        # because we're using the psycopg driver
        if db_uri.startswith("postgresql://"):
            db_uri = db_uri.replace("postgresql://", "postgresql+psycopg://", 1)
        data["SQLALCHEMY_DATABASE_URI"] = db_uri

    data["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    return data


def _load_field_encryption(env: Mapping[str, str]) -> Mapping[str, Any]:
    data: dict[str, Any] = {}

    # `ENCRYPTION_KEY` is the name the legacy deployment used
    if key := env.get("FIELD_ENCRYPTION_KEY") or env.get("ENCRYPTION_KEY"):
        data["FIELD_ENCRYPTION_KEY"] = key

    if keys := env.get("FIELD_ENCRYPTION_KEYS"):
        try:
            parsed = json.loads(keys)
        except JSONDecodeError:
            raise ConfigParseError("Env var 'FIELD_ENCRYPTION_KEYS' could not be parsed as JSON")
        if not isinstance(parsed, dict):
            raise ConfigParseError("Env var 'FIELD_ENCRYPTION_KEYS' must be a JSON object")
        data["FIELD_ENCRYPTION_KEYS"] = parsed

    if active := env.get("FIELD_ENCRYPTION_ACTIVE_KEY"):
        data["FIELD_ENCRYPTION_ACTIVE_KEY"] = active

    if lookup := env.get("FIELD_ENCRYPTION_LOOKUP_KEY"):
        data["FIELD_ENCRYPTION_LOOKUP_KEY"] = lookup

    if legacy := env.get("FIELD_ENCRYPTION_LEGACY_CBC"):
        try:
            data["FIELD_ENCRYPTION_LEGACY_CBC"] = parse_bool(legacy)
        except ValueError as e:
            raise ConfigParseError(str(e))
    else:
        data["FIELD_ENCRYPTION_LEGACY_CBC"] = True

    return data


def _load_strings(env: Mapping[str, str]) -> Mapping[str, Any]:
    return {
        k[len(_STRING_CFG_PREFIX) :]: v
        for k, v in env.items()
        if k.startswith(_STRING_CFG_PREFIX) and not k.startswith(_JSON_CFG_PREFIX)
    }


def _load_json(env: Mapping[str, str]) -> Mapping[str, Any]:
    data = {}

    for k, v in env.items():
        if not k.startswith(_JSON_CFG_PREFIX):
            continue

        try:
            data[k[len(_JSON_CFG_PREFIX) :]] = json.loads(v)
        except JSONDecodeError:
            raise ConfigParseError(f"Env var {k!r} could not be parsed as JSON")

    return data
