__version__ = "0.1.0"

from typing import Tuple
from .errors import (
    FailureKind,
    NostrError,
    MalformedInput,
    CryptoRejected,
    NetworkTransient,
    ConfigurationError,
)
from .event import NostrEvent
from .keys import KeyPair
from .listener import GiftWrapListener
from .relay import RelayClient, RelaySnapshot, RelayStatus
__all__: Tuple[str, ...] = (
    "FailureKind",
    "NostrError",
    "MalformedInput",
    "CryptoRejected",
    "NetworkTransient",
    "ConfigurationError",
    "NostrEvent",
    "KeyPair",
    "GiftWrapListener",
    "RelayClient",
    "RelaySnapshot",
    "RelayStatus",
)

def __dir__() -> Tuple[str, ...]:
    return __all__ + ("__doc__",)
