from enum import Enum

class FailureKind(Enum):
    MALFORMED_INPUT = "malformed_input"
    CRYPTO_REJECTED = "crypto_rejected"
    NETWORK_TRANSIENT = "network_transient"
    CONFIGURATION = "configuration"

class NostrError(ValueError):
    """Base failure. Callers branch on ``kind`` instead of the message text."""
    kind:FailureKind = FailureKind.MALFORMED_INPUT

    def __init__(self, message:str="", cause:BaseException=None):
        super(NostrError, self).__init__(message)
        self.cause = cause

class MalformedInput(NostrError):
    kind = FailureKind.MALFORMED_INPUT

class CryptoRejected(NostrError):
    kind = FailureKind.CRYPTO_REJECTED

class NetworkTransient(NostrError):
    kind = FailureKind.NETWORK_TRANSIENT

class ConfigurationError(NostrError):
    kind = FailureKind.CONFIGURATION
