import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


def legacy_encrypt(key: bytes, plaintext: str) -> str:
    """Encrypt the way the legacy deployment did: AES-256-CBC, PKCS#7, `iv:ct` hex."""
    iv = os.urandom(16)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{iv.hex()}:{ciphertext.hex()}"


def flip_ciphertext_byte(value: str, index: int = 0) -> str:
    head, _, body = value.partition(":")
    ciphertext = bytearray.fromhex(body)
    ciphertext[index] ^= 0x01
    return f"{head}:{ciphertext.hex()}"
