"""
Key material for the field cipher.

Keys are supplied out-of-band through configuration and are never written
into an encrypted value. A value only carries the id of the key that
produced it, and only when that key is not the one designated for untagged
values.
"""

import binascii
import re
from base64 import b64decode, urlsafe_b64encode
from dataclasses import dataclass, field
from secrets import token_bytes
from types import MappingProxyType
from typing import Any, Mapping, Optional

from juanlms.crypto.errors import ConfigurationError
from juanlms.utils import parse_bool

KEY_SIZE = 32
DEFAULT_KEY_ID = "default"
KEY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,32}$")

_HEX_KEY_LENGTH = 2 * KEY_SIZE
_B64_KEY_LENGTH = 44


def parse_key(value: str) -> bytes:
    """
    Decode a configured key. Accepts 64 hex characters, a 44 character
    URL-safe base64 string (the Fernet key format) or a raw string whose UTF-8
    encoding is exactly 32 bytes. Error messages never include the key.
    """
    value = value.strip()
    if not value:
        raise ConfigurationError("Field encryption key is empty")

    if len(value) == _HEX_KEY_LENGTH:
        try:
            return bytes.fromhex(value)
        except ValueError:
            raise ConfigurationError("Field encryption key of 64 characters must be hex") from None

    if len(value) == _B64_KEY_LENGTH:
        try:
            key = b64decode(value, altchars=b"-_", validate=True)
        except (binascii.Error, ValueError):
            raise ConfigurationError(
                "Field encryption key of 44 characters must be URL-safe base64"
            ) from None
        if len(key) != KEY_SIZE:
            raise ConfigurationError(f"Field encryption key must decode to {KEY_SIZE} bytes")
        return key

    key = value.encode()
    if len(key) != KEY_SIZE:
        raise ConfigurationError(
            f"Field encryption key must decode to {KEY_SIZE} bytes, got {len(key)}"
        )
    return key


def generate_key(fmt: str = "hex") -> str:
    key = token_bytes(KEY_SIZE)
    match fmt:
        case "hex":
            return key.hex()
        case "base64":
            return urlsafe_b64encode(key).decode()
    raise ValueError(f"Unknown key format: {fmt!r}")


@dataclass(frozen=True)
class CipherConfig:
    keys: Mapping[str, bytes] = field(repr=False)
    active_key_id: str
    untagged_key_id: Optional[str] = None
    accept_legacy_cbc: bool = True
    # resolved in __post_init__; must stay the same across rotations of the active key
    lookup_key_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.keys:
            raise ConfigurationError("No field encryption key is configured")

        for key_id, key in self.keys.items():
            if not KEY_ID_PATTERN.match(key_id):
                raise ConfigurationError(f"Invalid field encryption key id: {key_id!r}")
            if len(key) != KEY_SIZE:
                raise ConfigurationError(
                    f"Field encryption key {key_id!r} must be {KEY_SIZE} bytes, got {len(key)}"
                )

        if self.active_key_id not in self.keys:
            raise ConfigurationError(
                f"Active field encryption key {self.active_key_id!r} is not configured"
            )
        if self.untagged_key_id is not None and self.untagged_key_id not in self.keys:
            raise ConfigurationError(
                f"Untagged field encryption key {self.untagged_key_id!r} is not configured"
            )

        lookup_key_id = self.lookup_key_id or self.untagged_key_id
        if lookup_key_id is None:
            if len(self.keys) != 1:
                raise ConfigurationError(
                    "A lookup key must be designated when several field encryption keys "
                    "are configured and none of them is untagged"
                )
            lookup_key_id = next(iter(self.keys))
        elif lookup_key_id not in self.keys:
            raise ConfigurationError(
                f"Lookup field encryption key {lookup_key_id!r} is not configured"
            )
        object.__setattr__(self, "lookup_key_id", lookup_key_id)

        # freeze a private copy so callers can't swap keys out from under a cipher
        frozen_keys = MappingProxyType({k: bytes(v) for k, v in self.keys.items()})
        object.__setattr__(self, "keys", frozen_keys)

    @classmethod
    def single(cls, key: bytes, *, accept_legacy_cbc: bool = True) -> "CipherConfig":
        return cls(
            keys={DEFAULT_KEY_ID: key},
            active_key_id=DEFAULT_KEY_ID,
            untagged_key_id=DEFAULT_KEY_ID,
            accept_legacy_cbc=accept_legacy_cbc,
        )

    def tag_for(self, key_id: str) -> Optional[str]:
        """The tag written in front of values produced with `key_id`, if any."""
        if key_id == self.untagged_key_id:
            return None
        return key_id


def cipher_config_from_mapping(config: Mapping[str, Any]) -> CipherConfig:
    keys: dict[str, bytes] = {}
    untagged_key_id = None

    if raw_key := config.get("FIELD_ENCRYPTION_KEY"):
        keys[DEFAULT_KEY_ID] = parse_key(raw_key)
        untagged_key_id = DEFAULT_KEY_ID

    for key_id, raw_key in (config.get("FIELD_ENCRYPTION_KEYS") or {}).items():
        if not isinstance(raw_key, str):
            raise ConfigurationError(f"Field encryption key {key_id!r} must be a string")
        if key_id in keys:
            raise ConfigurationError(f"Duplicate field encryption key id: {key_id!r}")
        keys[key_id] = parse_key(raw_key)

    if not keys:
        raise ConfigurationError(
            "Field encryption key not found. Set FIELD_ENCRYPTION_KEY or FIELD_ENCRYPTION_KEYS."
        )

    active_key_id = config.get("FIELD_ENCRYPTION_ACTIVE_KEY") or untagged_key_id
    if active_key_id is None:
        if len(keys) != 1:
            raise ConfigurationError(
                "FIELD_ENCRYPTION_ACTIVE_KEY must name one of the configured keys"
            )
        active_key_id = next(iter(keys))

    accept_legacy_cbc = config.get("FIELD_ENCRYPTION_LEGACY_CBC", True)
    # string overrides such as JUANLMS_CFG_FIELD_ENCRYPTION_LEGACY_CBC arrive unparsed
    if isinstance(accept_legacy_cbc, str):
        try:
            accept_legacy_cbc = parse_bool(accept_legacy_cbc)
        except ValueError as e:
            raise ConfigurationError(f"FIELD_ENCRYPTION_LEGACY_CBC: {e}") from None
    if not isinstance(accept_legacy_cbc, bool):
        raise ConfigurationError("FIELD_ENCRYPTION_LEGACY_CBC must be a boolean")

    return CipherConfig(
        keys=keys,
        active_key_id=active_key_id,
        untagged_key_id=untagged_key_id,
        accept_legacy_cbc=accept_legacy_cbc,
        lookup_key_id=config.get("FIELD_ENCRYPTION_LOOKUP_KEY") or None,
    )
