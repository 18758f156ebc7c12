"""
Facilitates the transparent encryption & decryption of sensitive database
fields.
"""

from typing import Any

from flask import current_app

from juanlms.crypto.field_cipher import FieldCipher


def get_cipher() -> FieldCipher:
    return current_app.config["FIELD_CIPHER"]


def encrypt_field(data: str | None, *, domain: str | None = None) -> str | None:
    # absent and empty values are stored as they are
    if not data:
        return data

    return get_cipher().encrypt(data, domain=domain)


def decrypt_field(data: Any, *, domain: str | None = None) -> Any:
    result = get_cipher().decrypt_result(data, domain=domain)
    if result.reason is not None:
        # never log the stored value itself
        current_app.logger.warning(
            f"Stored field {domain or '-'} could not be decrypted "
            f"(reason={result.reason.value}, key={result.key_id!r}); returning it unchanged"
        )
    return result.value
