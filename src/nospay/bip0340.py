import hashlib
import logging

from .errors import CryptoRejected, MalformedInput

logger = logging.getLogger(__name__)

secp256k1_CURVE:tuple = (
    0xfffffffffffffffffffffffffffffffffffffffffffffffffffffffefffffc2f, #p
    0xfffffffffffffffffffffffffffffffebaaedce6af48a03bbfd25e8cd0364141, #n
    1, #h
    0, #a
    7, #b
    0x79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798, #Gx
    0x483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8, #Gy
)
P, N, _b, Gx, Gy = (secp256k1_CURVE[0], secp256k1_CURVE[1], secp256k1_CURVE[4], secp256k1_CURVE[5], secp256k1_CURVE[6])
L, L2 = (32, 64)

# Affine points are (x, y) tuples, None is the point at infinity.
G:tuple[int, int] = (Gx, Gy)
I = None

class Bip0340:
    def __init__(self):
        super(Bip0340, self).__init__()

    def M(self, a:int, b:int=P) -> int:
        return a % b

    def modN(self, a:int) -> int:
        return a % N

    def arange(self, n:int, min:int, max:int) -> int|None:
        if isinstance(n, int) and min <= n < max: return n
        return None

    def koblitz(self, x:int) -> int:
        return self.M(self.M(x * x) * x + _b)

    def is_even(self, y:int) -> bool:
        return (y & 1) == 0

    def invert(self, num:int, md:int=P) -> int:
        return pow(num, -1, md)

    def sqrt_mod_p(self, c:int) -> int|None:
        # p = 3 mod 4, so c^((p+1)/4) is a root whenever one exists
        r = pow(c, (P + 1) // 4, P)
        return r if self.M(r * r) == self.M(c) else None

    def lift_x(self, x:int) -> tuple[int, int]|None:
        if self.arange(x, 1, P) is None: return None
        y = self.sqrt_mod_p(self.koblitz(x))
        if y is None: return None

        return (x, y if self.is_even(y) else P - y)

    def is_on_curve(self, point:tuple[int, int]|None) -> bool:
        if point is I: return True
        x, y = point
        return 0 <= x < P and 0 <= y < P and self.M(y * y) == self.koblitz(x)

    def point_negate(self, point:tuple[int, int]|None) -> tuple[int, int]|None:
        if point is I: return I
        return (point[0], self.M(-point[1]))

    def point_add(self, p1:tuple[int, int]|None, p2:tuple[int, int]|None) -> tuple[int, int]|None:
        if p1 is I: return p2
        if p2 is I: return p1

        x1, y1 = p1
        x2, y2 = p2
        if x1 == x2 and y1 != y2: return I

        if p1 == p2:
            lam = self.M(3 * x1 * x1 * self.invert(2 * y1))
        else:
            lam = self.M((y2 - y1) * self.invert(x2 - x1))
        x3 = self.M(lam * lam - x1 - x2)

        return (x3, self.M(lam * (x1 - x3) - y1))

    def point_mul(self, point:tuple[int, int]|None, n:int) -> tuple[int, int]|None:
        """Double-and-add. Variable time, only fed public or ephemeral scalars."""
        r = I
        d = point
        n = self.modN(n)
        while n > 0:
            if n & 1: r = self.point_add(r, d)
            d = self.point_add(d, d)
            n >>= 1

        return r

    def bytes_from_point(self, point:tuple[int, int]) -> bytes:
        return int.to_bytes(point[0], 32, 'big')

    def scalar_from_bytes(self, seckey:bytes) -> int:
        if not isinstance(seckey, (bytes, bytearray)) or len(seckey) != L:
            raise MalformedInput("secret key must be 32 bytes")
        d = self.arange(int.from_bytes(seckey, 'big'), 1, N)
        if d is None:
            raise CryptoRejected("secret key scalar out of range")
        return d

    def get_public_key(self, seckey:bytes) -> bytes:
        return self.bytes_from_point(self.point_mul(G, self.scalar_from_bytes(seckey)))

    def get_shared_x(self, seckey:bytes, pubkey_x:bytes) -> bytes:
        d = self.scalar_from_bytes(seckey)
        if not isinstance(pubkey_x, (bytes, bytearray)) or len(pubkey_x) != L:
            raise MalformedInput("x-only public key must be 32 bytes")
        point = self.lift_x(int.from_bytes(pubkey_x, 'big'))
        if point is None:
            raise CryptoRejected("public key is not a valid x coordinate")

        shared = self.point_mul(point, d)
        if shared is I:
            raise CryptoRejected("shared point is infinity")
        return self.bytes_from_point(shared)

    def tagged_hash(self, tag:str, *messages:bytes) -> bytes:
        tag_hash = hashlib.sha256(('BIP0340/' + tag).encode()).digest()
        return hashlib.sha256(tag_hash + tag_hash + b''.join(messages)).digest()

    def verify_schnorr(self, pubkey_x:bytes, message:bytes, signature:bytes) -> bool:
        if not all(isinstance(v, (bytes, bytearray)) for v in (pubkey_x, message, signature)): return False
        if len(pubkey_x) != L or len(message) != L or len(signature) != L2:
            logger.debug("schnorr: wrong lengths pub=%d msg=%d sig=%d", len(pubkey_x), len(message), len(signature))
            return False

        x = self.arange(int.from_bytes(pubkey_x, 'big'), 1, P)
        r = self.arange(int.from_bytes(signature[0:L], 'big'), 1, P)
        s = self.arange(int.from_bytes(signature[L:L2], 'big'), 1, N)
        if x is None or r is None or s is None:
            logger.debug("schnorr: pubkey, r or s out of range")
            return False

        point = self.lift_x(x)
        if point is None:
            logger.debug("schnorr: pubkey is not on the curve")
            return False

        e = self.modN(int.from_bytes(self.tagged_hash('challenge', signature[0:L], pubkey_x, message), 'big'))
        if e == 0:
            logger.debug("schnorr: zero challenge")
            return False

        R = self.point_add(self.point_mul(G, s), self.point_negate(self.point_mul(point, e)))
        if R is I:
            logger.debug("schnorr: R is infinity")
            return False
        if not self.is_even(R[1]):
            logger.debug("schnorr: R has odd y")
            return False

        return R[0] == r
