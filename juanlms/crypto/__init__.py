"""
A subpackage to organize juanlms's cryptographic functionalities.
"""

from .db_field_encryption import decrypt_field, encrypt_field
from .errors import (
    ConfigurationError,
    DecryptionFailure,
    EncryptionFailure,
    FailureReason,
    FieldCipherError,
)
from .field_cipher import DecryptResult, DecryptStatus, FieldCipher
from .keys import CipherConfig, cipher_config_from_mapping, generate_key, parse_key

__all__ = [
    "CipherConfig",
    "ConfigurationError",
    "DecryptResult",
    "DecryptStatus",
    "DecryptionFailure",
    "EncryptionFailure",
    "FailureReason",
    "FieldCipher",
    "FieldCipherError",
    "cipher_config_from_mapping",
    "decrypt_field",
    "encrypt_field",
    "generate_key",
    "parse_key",
]
