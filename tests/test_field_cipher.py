import re
from concurrent.futures import ThreadPoolExecutor
from secrets import token_bytes

import pytest
from helpers import flip_ciphertext_byte, legacy_encrypt

from juanlms.crypto import (
    CipherConfig,
    DecryptionFailure,
    DecryptStatus,
    EncryptionFailure,
    FailureReason,
    FieldCipher,
)

ENCRYPTED_FIELD_PATTERN = re.compile(r"^[0-9a-f]{32}:[0-9a-f]+$")


@pytest.mark.parametrize(
    "plaintext",
    [
        "",
        "student@example.com",
        "S-2024-00017",
        "Magandang umaga, klase! 🌞",
        "ñ é ü 漢字 \u0000 tab\tnewline\n",
        "colons: are: fine",
        "x" * 4096,
    ],
)
def test_round_trip(cipher: FieldCipher, plaintext: str) -> None:
    encrypted = cipher.encrypt(plaintext)
    assert ENCRYPTED_FIELD_PATTERN.match(encrypted)
    assert cipher.decrypt(encrypted) == plaintext

    result = cipher.decrypt_result(encrypted)
    assert result.status is DecryptStatus.DECRYPTED
    assert result.key_id == "default"
    assert not result.legacy


def test_every_encryption_uses_a_fresh_iv(cipher: FieldCipher) -> None:
    values = [cipher.encrypt("student@example.com") for _ in range(100)]
    assert len(set(values)) == len(values)
    assert len({value.split(":")[0] for value in values}) == len(values)


def test_encrypting_twice_is_not_idempotent(cipher: FieldCipher) -> None:
    once = cipher.encrypt("student@example.com")
    twice = cipher.encrypt(once)
    assert cipher.decrypt(twice) == once
    assert cipher.decrypt(cipher.decrypt(twice)) == "student@example.com"


def test_concrete_scenario(cipher: FieldCipher, other_key: bytes) -> None:
    encrypted = cipher.encrypt("student@example.com")
    assert encrypted.count(":") == 1
    assert cipher.decrypt(encrypted) == "student@example.com"

    other = FieldCipher(CipherConfig.single(other_key))
    assert other.decrypt(encrypted) != "student@example.com"

    strict_other = FieldCipher(CipherConfig.single(other_key, accept_legacy_cbc=False))
    result = strict_other.decrypt_result(encrypted)
    assert result.status is DecryptStatus.FAILED
    assert result.reason is FailureReason.INTEGRITY
    with pytest.raises(DecryptionFailure) as e_info:
        strict_other.decrypt_strict(encrypted)
    assert e_info.value.reason is FailureReason.INTEGRITY


@pytest.mark.parametrize(
    "value",
    [
        "plain-value-without-colon",
        "short:abcd",
        "Meeting at 10:30",
        f"{'a' * 32}:",
        f"{'a' * 32}:abc",
        f"{'a' * 32}:not-hex",
        f"{'g' * 32}:abcd",
        f"bad key id${'a' * 32}:abcd",
        "",
    ],
)
def test_values_that_are_not_encrypted_pass_through(cipher: FieldCipher, value: str) -> None:
    assert cipher.decrypt(value) == value
    assert cipher.decrypt_strict(value) == value

    result = cipher.decrypt_result(value)
    assert result.status is DecryptStatus.PLAIN
    assert result.ok
    assert not cipher.is_encrypted(value)


@pytest.mark.parametrize("value", [None, 42, b"aa:bb", ["a:b"]])
def test_non_strings_pass_through(cipher: FieldCipher, value: object) -> None:
    assert cipher.decrypt(value) is value
    assert cipher.decrypt_result(value).status is DecryptStatus.PLAIN


@pytest.mark.parametrize("value", [None, 42, b"bytes"])
def test_only_strings_can_be_encrypted(cipher: FieldCipher, value: object) -> None:
    with pytest.raises(TypeError, match="Only str fields"):
        cipher.encrypt(value)  # type: ignore[arg-type]


def test_encryption_failure_is_surfaced(cipher: FieldCipher) -> None:
    # a lone surrogate can't be encoded to UTF-8
    with pytest.raises(EncryptionFailure) as e_info:
        cipher.encrypt("\ud800")
    assert isinstance(e_info.value.__cause__, UnicodeEncodeError)


@pytest.mark.parametrize("index", [0, 5, -1])
def test_tampering_is_detected(strict_cipher: FieldCipher, index: int) -> None:
    tampered = flip_ciphertext_byte(strict_cipher.encrypt("student@example.com"), index)

    result = strict_cipher.decrypt_result(tampered)
    assert result.status is DecryptStatus.FAILED
    assert result.reason is FailureReason.INTEGRITY
    assert not result.ok
    assert strict_cipher.decrypt(tampered) == tampered


def test_tampering_with_legacy_reads_enabled_never_raises(cipher: FieldCipher) -> None:
    for plaintext in ["student@example.com", "exactly sixteen!", ""]:
        tampered = flip_ciphertext_byte(cipher.encrypt(plaintext))
        assert cipher.decrypt(tampered) != plaintext


def test_legacy_cbc_values_are_readable(cipher: FieldCipher, key: bytes) -> None:
    legacy = legacy_encrypt(key, "student@example.com")
    assert ENCRYPTED_FIELD_PATTERN.match(legacy)

    result = cipher.decrypt_result(legacy)
    assert result.status is DecryptStatus.DECRYPTED
    assert result.value == "student@example.com"
    assert result.legacy
    assert cipher.decrypt(legacy) == "student@example.com"
    assert cipher.decrypt(legacy.upper()) == "student@example.com"


def test_legacy_cbc_reads_can_be_disabled(strict_cipher: FieldCipher, key: bytes) -> None:
    legacy = legacy_encrypt(key, "student@example.com")

    result = strict_cipher.decrypt_result(legacy)
    assert result.status is DecryptStatus.FAILED
    assert result.reason is FailureReason.INTEGRITY
    assert strict_cipher.decrypt(legacy) == legacy


def test_legacy_cbc_with_the_wrong_key_is_not_a_crash(other_key: bytes, key: bytes) -> None:
    legacy = legacy_encrypt(key, "student@example.com")
    other = FieldCipher(CipherConfig.single(other_key))
    assert other.decrypt(legacy) != "student@example.com"


def test_invalid_utf8_is_reported(cipher: FieldCipher, key: bytes) -> None:
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    iv = token_bytes(16)
    ciphertext = AESGCM(key).encrypt(iv, b"\xff\xfe\xfd", None)
    value = f"{iv.hex()}:{ciphertext.hex()}"

    result = cipher.decrypt_result(value)
    assert result.status is DecryptStatus.FAILED
    assert result.reason is FailureReason.ENCODING
    assert cipher.decrypt(value) == value


def test_result_repr_hides_plaintext(cipher: FieldCipher) -> None:
    result = cipher.decrypt_result(cipher.encrypt("student@example.com"))
    assert "student@example.com" not in repr(result)


def test_is_encrypted(cipher: FieldCipher, key: bytes) -> None:
    assert cipher.is_encrypted(cipher.encrypt("hello"))
    assert cipher.is_encrypted(legacy_encrypt(key, "hello"))
    assert not cipher.is_encrypted("hello")
    assert not cipher.is_encrypted(None)


def test_lookup_hash(cipher: FieldCipher, other_key: bytes) -> None:
    digest = cipher.lookup_hash("Student@Example.com")
    assert re.match(r"^[0-9a-f]{64}$", digest)
    assert digest == cipher.lookup_hash("student@example.com")
    assert digest != cipher.lookup_hash("faculty@example.com")

    other = FieldCipher(CipherConfig.single(other_key))
    assert digest != other.lookup_hash("student@example.com")


def test_cipher_is_safe_to_share_between_threads(cipher: FieldCipher) -> None:
    values = [f"user-{i}@example.com" for i in range(200)]
    with ThreadPoolExecutor(max_workers=8) as pool:
        round_trips = list(pool.map(lambda v: cipher.decrypt(cipher.encrypt(v)), values))
    assert round_trips == values


class TestKeyRotation:
    @pytest.fixture()
    def rotated(self, key: bytes, other_key: bytes) -> FieldCipher:
        return FieldCipher(
            CipherConfig(
                keys={"default": key, "2026": other_key},
                active_key_id="2026",
                untagged_key_id="default",
            )
        )

    def test_new_writes_carry_the_key_tag(self, rotated: FieldCipher) -> None:
        encrypted = rotated.encrypt("student@example.com")
        tag, _, body = encrypted.partition("$")
        assert tag == "2026"
        assert ENCRYPTED_FIELD_PATTERN.match(body)

        result = rotated.decrypt_result(encrypted)
        assert result.value == "student@example.com"
        assert result.key_id == "2026"
        assert rotated.is_encrypted(encrypted)

    def test_old_values_still_decrypt(
        self, rotated: FieldCipher, cipher: FieldCipher, key: bytes
    ) -> None:
        old = cipher.encrypt("student@example.com")
        legacy = legacy_encrypt(key, "student@example.com")
        assert rotated.decrypt(old) == "student@example.com"
        assert rotated.decrypt(legacy) == "student@example.com"

    def test_the_previous_cipher_cannot_read_tagged_values(
        self, rotated: FieldCipher, cipher: FieldCipher
    ) -> None:
        encrypted = rotated.encrypt("student@example.com")
        result = cipher.decrypt_result(encrypted)
        assert result.status is DecryptStatus.FAILED
        assert result.reason is FailureReason.UNKNOWN_KEY
        assert cipher.decrypt(encrypted) == encrypted

    def test_tagged_values_never_fall_back_to_cbc(self, rotated: FieldCipher) -> None:
        tampered = flip_ciphertext_byte(rotated.encrypt("student@example.com"))
        result = rotated.decrypt_result(tampered)
        assert result.reason is FailureReason.INTEGRITY

    def test_untagged_values_need_an_untagged_key(self, key: bytes, other_key: bytes) -> None:
        untagged = FieldCipher(CipherConfig.single(key)).encrypt("hello")
        tagged_only = FieldCipher(CipherConfig(keys={"2026": other_key}, active_key_id="2026"))
        assert tagged_only.decrypt_result(untagged).reason is FailureReason.UNKNOWN_KEY

    def test_needs_rekey_and_rekey(
        self, rotated: FieldCipher, cipher: FieldCipher, key: bytes
    ) -> None:
        old = cipher.encrypt("student@example.com")
        legacy = legacy_encrypt(key, "student@example.com")
        current = rotated.encrypt("student@example.com")

        assert rotated.needs_rekey(old)
        assert rotated.needs_rekey(legacy)
        assert rotated.needs_rekey("student@example.com")
        assert not rotated.needs_rekey(current)
        assert not rotated.needs_rekey(None)
        assert not rotated.needs_rekey("")

        for value in [old, legacy, "student@example.com"]:
            rekeyed = rotated.rekey(value)
            assert rekeyed.startswith("2026$")
            assert rotated.decrypt(rekeyed) == "student@example.com"
            assert not rotated.needs_rekey(rekeyed)

    def test_legacy_values_need_rekey_under_the_same_key(
        self, cipher: FieldCipher, key: bytes
    ) -> None:
        assert cipher.needs_rekey(legacy_encrypt(key, "hello"))
        assert not cipher.needs_rekey(cipher.encrypt("hello"))

    def test_rekey_refuses_undecryptable_values(self, strict_cipher: FieldCipher) -> None:
        tampered = flip_ciphertext_byte(strict_cipher.encrypt("student@example.com"))
        assert not strict_cipher.needs_rekey(tampered)
        with pytest.raises(DecryptionFailure):
            strict_cipher.rekey(tampered)

    def test_lookup_hash_survives_rotation(self, rotated: FieldCipher, cipher: FieldCipher) -> None:
        assert rotated.lookup_hash("student@example.com") == cipher.lookup_hash(
            "student@example.com"
        )


class TestDomainBinding:
    def test_round_trip_within_a_domain(self, cipher: FieldCipher) -> None:
        encrypted = cipher.encrypt("S-1", domain="messages.sender_id")
        assert ENCRYPTED_FIELD_PATTERN.match(encrypted)
        assert cipher.decrypt(encrypted, domain="messages.sender_id") == "S-1"
        assert not cipher.needs_rekey(encrypted, domain="messages.sender_id")

    @pytest.mark.parametrize("domain", ["messages.receiver_id", None])
    def test_values_do_not_authenticate_in_another_domain(
        self, strict_cipher: FieldCipher, domain: str | None
    ) -> None:
        encrypted = strict_cipher.encrypt("S-1", domain="messages.sender_id")

        result = strict_cipher.decrypt_result(encrypted, domain=domain)
        assert result.status is DecryptStatus.FAILED
        assert result.reason is FailureReason.INTEGRITY
        assert strict_cipher.decrypt(encrypted, domain=domain) == encrypted

    def test_rekey_keeps_the_domain(
        self, cipher: FieldCipher, rotated: FieldCipher, key: bytes
    ) -> None:
        for value in [
            cipher.encrypt("S-1", domain="tickets.user_id"),
            legacy_encrypt(key, "S-1"),
        ]:
            rekeyed = rotated.rekey(value, domain="tickets.user_id")
            assert rotated.decrypt(rekeyed, domain="tickets.user_id") == "S-1"
            assert rotated.decrypt_result(rekeyed).reason is FailureReason.INTEGRITY

    @pytest.fixture()
    def rotated(self, key: bytes, other_key: bytes) -> FieldCipher:
        return FieldCipher(
            CipherConfig(
                keys={"default": key, "2026": other_key},
                active_key_id="2026",
                untagged_key_id="default",
            )
        )


def test_lookup_hash_survives_keys_only_rotation(key: bytes, other_key: bytes) -> None:
    before = FieldCipher(CipherConfig(keys={"k1": key}, active_key_id="k1"))
    after = FieldCipher(
        CipherConfig(keys={"k1": key, "k2": other_key}, active_key_id="k2", lookup_key_id="k1")
    )
    assert before.lookup_hash("student@example.com") == after.lookup_hash("student@example.com")
    assert after.encrypt("x").startswith("k2$")
