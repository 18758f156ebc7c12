from enum import Enum, unique


class FieldCipherError(Exception):
    pass


class ConfigurationError(FieldCipherError, ValueError):
    pass


class EncryptionFailure(FieldCipherError):
    pass


@unique
class FailureReason(Enum):
    UNKNOWN_KEY = "unknown_key"
    INTEGRITY = "integrity"
    ENCODING = "encoding"


class DecryptionFailure(FieldCipherError):
    def __init__(self, reason: FailureReason, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or f"Field could not be decrypted: {reason.value}")
