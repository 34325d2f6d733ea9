import secrets
from typing import Callable

from .bip0340 import Bip0340, N
from .errors import MalformedInput
from .nips import Nip19

_curve = Bip0340()
_nip19 = Nip19()

class KeyPair:
    """secp256k1 secret scalar with its x-only (BIP-340) public key. Immutable."""
    __slots__ = ('_secret', '_public')

    def __init__(self, secret:bytes):
        # validates the scalar range and derives Q = d*G
        public = _curve.get_public_key(bytes(secret))
        object.__setattr__(self, '_secret', bytes(secret))
        object.__setattr__(self, '_public', public)

    def __setattr__(self, name, value):
        raise AttributeError("KeyPair is immutable")

    @classmethod
    def generate(cls, rng:Callable[[int], bytes]=secrets.token_bytes) -> "KeyPair":
        while True:
            sk = rng(32)
            if len(sk) != 32:
                raise MalformedInput("rng must return the requested number of bytes")
            if 0 < int.from_bytes(sk, 'big') < N:
                return cls(sk)

    @classmethod
    def from_secret(cls, secret:bytes|str) -> "KeyPair":
        if isinstance(secret, str):
            if len(secret) != 64:
                raise MalformedInput("hex secret must be 64 characters")
            try:
                secret = bytes.fromhex(secret)
            except ValueError as e:
                raise MalformedInput("hex secret is not hex", e) from e
        return cls(secret)

    @classmethod
    def from_nsec(cls, nsec:str) -> "KeyPair":
        hrp, secret = _nip19.decode_nip19(nsec)
        if hrp != 'nsec':
            raise MalformedInput(f"expected nsec, got {hrp}")
        return cls(secret)

    @property
    def secret(self) -> bytes:
        return self._secret

    @property
    def public(self) -> bytes:
        return self._public

    @property
    def secret_hex(self) -> str:
        return self._secret.hex()

    @property
    def public_hex(self) -> str:
        return self._public.hex()

    @property
    def nsec(self) -> str:
        return _nip19.encode_nsec(self._secret)

    @property
    def npub(self) -> str:
        return _nip19.encode_npub(self._public)

    def nprofile(self, relays:list[str]=None) -> str:
        return _nip19.encode_nprofile(self._public, relays)

    def __eq__(self, other) -> bool:
        return isinstance(other, KeyPair) and self._secret == other._secret

    def __hash__(self) -> int:
        return hash(self._public)

    def __repr__(self) -> str:
        return f"KeyPair(public={self.public_hex})"
