"""
Encryption of individual string fields before they are persisted.

An encrypted field is stored as `<iv_hex>:<ciphertext_hex>`, where the IV is
16 random bytes drawn per call and the ciphertext is AES-256-GCM output with
its authentication tag appended. Values written under a key other than the
one designated for untagged values carry a `<key_id>$` prefix so several keys
can be live during a rotation.

A caller may pass a `domain`, such as `users.email`, which is bound to the
ciphertext as GCM associated data, so a value copied into another column no
longer authenticates. The domain is not stored in the value.

Untagged values written by the legacy system use AES-256-CBC with PKCS#7
padding in the same shape. They remain readable while `accept_legacy_cbc` is
enabled and are rewritten by `rekey`.
"""

import hashlib
import hmac
import os
import re
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from juanlms.crypto.errors import DecryptionFailure, EncryptionFailure, FailureReason
from juanlms.crypto.keys import KEY_ID_PATTERN, KEY_SIZE, CipherConfig

IV_SIZE = 16
FIELD_SEPARATOR = ":"
TAG_SEPARATOR = "$"

_IV_HEX_LENGTH = 2 * IV_SIZE
_CBC_BLOCK_SIZE = algorithms.AES.block_size // 8
_HEX = re.compile(r"^[0-9a-fA-F]+$")
_LOOKUP_INFO = b"juanlms.lookup"


@unique
class DecryptStatus(Enum):
    PLAIN = "plain"
    DECRYPTED = "decrypted"
    FAILED = "failed"


@dataclass(frozen=True)
class DecryptResult:
    status: DecryptStatus
    # keep plaintext out of reprs that might end up in a log line
    value: Any = field(repr=False)
    reason: Optional[FailureReason] = None
    key_id: Optional[str] = None
    legacy: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not DecryptStatus.FAILED

    def unwrap(self) -> Any:
        if self.reason is not None:
            raise DecryptionFailure(self.reason)
        return self.value


@dataclass(frozen=True)
class _ParsedField:
    tag: Optional[str]
    iv: bytes
    ciphertext: bytes


def _parse_field(value: str) -> Optional[_ParsedField]:
    head, sep, body = value.partition(FIELD_SEPARATOR)
    if not sep:
        return None

    tag = None
    if TAG_SEPARATOR in head:
        tag, _, head = head.partition(TAG_SEPARATOR)
        if not KEY_ID_PATTERN.match(tag):
            return None

    if len(head) != _IV_HEX_LENGTH or not _HEX.match(head):
        return None
    if len(body) % 2 or not _HEX.match(body):
        return None

    return _ParsedField(tag=tag, iv=bytes.fromhex(head), ciphertext=bytes.fromhex(body))


def _aad(domain: Optional[str]) -> Optional[bytes]:
    return domain.encode() if domain else None


class FieldCipher:
    __slots__ = ("_config", "_aeads", "_lookup_key")

    def __init__(self, config: CipherConfig) -> None:
        self._config = config
        self._aeads = {key_id: AESGCM(key) for key_id, key in config.keys.items()}
        self._lookup_key = HKDF(
            algorithm=hashes.SHA256(), length=KEY_SIZE, salt=None, info=_LOOKUP_INFO
        ).derive(config.keys[config.lookup_key_id])

    @property
    def config(self) -> CipherConfig:
        return self._config

    def encrypt(self, plaintext: str, *, domain: Optional[str] = None) -> str:
        """
        Encrypt `plaintext` under the active key with a fresh IV. This is not
        idempotent: an already encrypted value gets encrypted again.
        """
        if not isinstance(plaintext, str):
            raise TypeError(f"Only str fields can be encrypted, got {type(plaintext).__name__}")

        key_id = self._config.active_key_id
        iv = os.urandom(IV_SIZE)
        try:
            ciphertext = self._aeads[key_id].encrypt(iv, plaintext.encode(), _aad(domain))
        except Exception as e:
            raise EncryptionFailure("Field encryption failed") from e

        encoded = f"{iv.hex()}{FIELD_SEPARATOR}{ciphertext.hex()}"
        if (tag := self._config.tag_for(key_id)) is not None:
            return f"{tag}{TAG_SEPARATOR}{encoded}"
        return encoded

    def decrypt(self, value: Any, *, domain: Optional[str] = None) -> Any:
        """
        Decrypt a stored value. Anything that is not an encrypted field, or
        that fails to decrypt, is returned unchanged.
        """
        return self.decrypt_result(value, domain=domain).value

    def decrypt_strict(self, value: Any, *, domain: Optional[str] = None) -> Any:
        return self.decrypt_result(value, domain=domain).unwrap()

    def decrypt_result(self, value: Any, *, domain: Optional[str] = None) -> DecryptResult:
        if not isinstance(value, str) or (parsed := _parse_field(value)) is None:
            return DecryptResult(DecryptStatus.PLAIN, value)

        key_id = parsed.tag if parsed.tag is not None else self._config.untagged_key_id
        if key_id is None or key_id not in self._aeads:
            return self._failed(value, FailureReason.UNKNOWN_KEY, key_id)

        legacy = False
        try:
            data = self._aeads[key_id].decrypt(parsed.iv, parsed.ciphertext, _aad(domain))
        except InvalidTag:
            # the legacy system never tagged its values
            if parsed.tag is not None or not self._config.accept_legacy_cbc:
                return self._failed(value, FailureReason.INTEGRITY, key_id)
            if (legacy_data := self._decrypt_legacy_cbc(key_id, parsed)) is None:
                return self._failed(value, FailureReason.INTEGRITY, key_id)
            data = legacy_data
            legacy = True

        try:
            plaintext = data.decode()
        except UnicodeDecodeError:
            return self._failed(value, FailureReason.ENCODING, key_id)

        return DecryptResult(DecryptStatus.DECRYPTED, plaintext, key_id=key_id, legacy=legacy)

    def _decrypt_legacy_cbc(self, key_id: str, parsed: _ParsedField) -> Optional[bytes]:
        if not parsed.ciphertext or len(parsed.ciphertext) % _CBC_BLOCK_SIZE:
            return None

        decryptor = Cipher(
            algorithms.AES(self._config.keys[key_id]), modes.CBC(parsed.iv)
        ).decryptor()
        padded = decryptor.update(parsed.ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            return None

    @staticmethod
    def _failed(value: str, reason: FailureReason, key_id: Optional[str]) -> DecryptResult:
        return DecryptResult(DecryptStatus.FAILED, value, reason=reason, key_id=key_id)

    def is_encrypted(self, value: Any) -> bool:
        """
        Whether `value` has the shape of an encrypted field. Callers that may
        see a value twice use this to avoid encrypting it again.
        """
        return isinstance(value, str) and _parse_field(value) is not None

    def needs_rekey(self, value: Any, *, domain: Optional[str] = None) -> bool:
        if not isinstance(value, str) or not value:
            return False

        result = self.decrypt_result(value, domain=domain)
        match result.status:
            case DecryptStatus.PLAIN:
                return True
            case DecryptStatus.FAILED:
                return False
        return result.legacy or result.key_id != self._config.active_key_id

    def rekey(self, value: str, *, domain: Optional[str] = None) -> str:
        """Re-encrypt a stored value under the active key."""
        return self.encrypt(self.decrypt_strict(value, domain=domain), domain=domain)

    def lookup_hash(self, value: str) -> str:
        """
        A deterministic, keyed digest of `value` for equality lookups on an
        encrypted column. Case-insensitive, like the email lookups it serves.
        """
        return hmac.new(self._lookup_key, value.lower().encode(), hashlib.sha256).hexdigest()
