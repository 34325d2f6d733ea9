from Crypto.Cipher import ChaCha20
from base64 import b64decode
import binascii
import hashlib
import hmac
import logging
import struct

from .bip0173 import Bip0173
from .bip0340 import Bip0340
from .errors import CryptoRejected, MalformedInput

logger = logging.getLogger(__name__)

class Nip19(Bip0173):
    def __init__(self):
        super(Nip19, self).__init__()

    def encode_bytes32(self, prefix:str, value:bytes) -> str:
        if not isinstance(value, (bytes, bytearray)) or len(value) != 32:
            raise MalformedInput(f"{prefix}: value must be 32 bytes")
        return self.bech32_encode(prefix, self.convert_bits(value, 8, 5, True))

    def encode_nsec(self, secret:bytes) -> str:
        return self.encode_bytes32('nsec', secret)

    def encode_npub(self, pubkey:bytes) -> str:
        return self.encode_bytes32('npub', pubkey)

    def encode_nprofile(self, pubkey:bytes, relays:list[str]=None) -> str:
        if not isinstance(pubkey, (bytes, bytearray)) or len(pubkey) != 32:
            raise MalformedInput("nprofile: pubkey must be 32 bytes")

        tlv_bytes:bytes = struct.pack('BB', 0, 32) + bytes(pubkey)
        for relay in relays or []:
            if not isinstance(relay, str): continue
            v = relay.encode('utf-8')
            # silently skipped, the length has to fit in one byte
            if len(v) == 0 or len(v) > 255: continue
            tlv_bytes += struct.pack('BB', 1, len(v)) + v

        return self.bech32_encode('nprofile', self.convert_bits(tlv_bytes, 8, 5, True))

    def parse_tlv(self, data:bytes) -> list[tuple[int, bytes]]:
        tlvs:list[tuple[int, bytes]] = []
        i = 0
        while i < len(data):
            if i + 2 > len(data) or i + 2 + data[i + 1] > len(data):
                raise MalformedInput("nip19: truncated TLV")
            t, l = (data[i], data[i + 1])
            tlvs.append((t, bytes(data[i + 2:i + 2 + l])))
            i += 2 + l

        return tlvs

    def decode_nip19(self, entity:str) -> tuple[str, bytes|dict]:
        hrp, data = self.bech32_decode(entity)
        data_bytes = bytes(self.convert_bits(data, 5, 8, False))

        match hrp:
            case 'nsec'|'npub':
                if len(data_bytes) != 32:
                    raise MalformedInput(f"{hrp}: value must be 32 bytes")
                return (hrp, data_bytes)
            case 'nprofile':
                profile:dict = {'pubkey': None, 'relays': []}
                for t, v in self.parse_tlv(data_bytes):
                    match t:
                        case 0:
                            if len(v) != 32:
                                raise MalformedInput("nprofile: pubkey must be 32 bytes")
                            profile['pubkey'] = v.hex()
                        case 1:
                            try:
                                profile['relays'].append(v.decode('utf-8'))
                            except UnicodeDecodeError as e:
                                raise MalformedInput("nprofile: relay is not utf-8", e) from e
                        case _:
                            pass
                if profile['pubkey'] is None:
                    raise MalformedInput("nprofile: missing pubkey")
                return (hrp, profile)
            case _:
                raise MalformedInput(f"nip19: unsupported prefix {hrp!r}")

class Nip44(Bip0340):
    """NIP-44 version 2, decryption side only."""
    def __init__(self):
        super(Nip44, self).__init__()

    def hkdf_extract(self, salt:bytes, ikm:bytes) -> bytes:
        return hmac.new(salt, ikm, hashlib.sha256).digest()

    def hkdf_expand(self, prk:bytes, info:bytes, length:int) -> bytes:
        okm, t = (b'', b'')
        i = 1
        while len(okm) < length:
            t = hmac.new(prk, t + info + bytes([i]), hashlib.sha256).digest()
            okm += t
            i += 1

        return okm[:length]

    def derive_conversation_key(self, seckey:bytes, pubkey_x:bytes) -> bytes:
        shared_x = self.get_shared_x(seckey, pubkey_x)
        return self.hkdf_extract('nip44-v2'.encode('utf-8'), shared_x)

    def get_message_keys(self, conversation_key:bytes, nonce:bytes) -> tuple[bytes, bytes, bytes]:
        if len(conversation_key) != 32:
            raise MalformedInput("nip44: conversation key must be 32 bytes")
        if len(nonce) != 32:
            raise MalformedInput("nip44: nonce must be 32 bytes")

        keys = self.hkdf_expand(conversation_key, nonce, 76)
        chacha_key = keys[0:32]
        chacha_nonce = keys[32:44]
        hmac_key = keys[44:76]

        return (chacha_key, chacha_nonce, hmac_key)

    def hmac_aad(self, key:bytes, ciphertext:bytes, aad:bytes) -> bytes:
        return hmac.new(key, aad + ciphertext, digestmod=hashlib.sha256).digest()

    def decode_payload(self, payload:str) -> tuple[bytes, bytes, bytes]:
        if not isinstance(payload, str) or len(payload) == 0:
            raise MalformedInput("nip44: empty payload")
        if payload[0] == '#':
            raise MalformedInput("nip44: unsupported version prefix '#'")

        try:
            data = b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedInput("nip44: invalid base64", e) from e

        dlen = len(data)
        if dlen < 99 or dlen > 65603:
            raise MalformedInput(f"nip44: invalid payload length {dlen}")

        vers = data[0]
        if vers != 2:
            raise CryptoRejected(f"nip44: unknown version {vers}")

        nonce = data[1:33]
        ciphertext = data[33:dlen - 32]
        mac = data[dlen - 32:dlen]

        return (nonce, ciphertext, mac)

    def decrypt(self, payload:str, conversation_key:bytes) -> str:
        nonce, ciphertext, mac = self.decode_payload(payload)
        chacha_key, chacha_nonce, hmac_key = self.get_message_keys(conversation_key, nonce)

        calculated_mac = self.hmac_aad(hmac_key, ciphertext, nonce)
        if not hmac.compare_digest(calculated_mac, mac):
            raise CryptoRejected("nip44: invalid MAC")

        padded = ChaCha20.new(key=chacha_key, nonce=chacha_nonce).decrypt(ciphertext)
        unpadded = self.unpad(padded)
        try:
            return unpadded.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedInput("nip44: plaintext is not utf-8", e) from e

    def decrypt_from(self, seckey:bytes, pubkey_x:bytes, payload:str) -> str:
        return self.decrypt(payload, self.derive_conversation_key(seckey, pubkey_x))

    def unpad(self, padded:bytes) -> bytes:
        if len(padded) < 2:
            raise CryptoRejected("nip44: padded message too short")
        unpadded_len = struct.unpack('>H', padded[0:2])[0]
        if unpadded_len == 0 or 2 + unpadded_len > len(padded):
            raise CryptoRejected(f"nip44: invalid plaintext length {unpadded_len}")
        if len(padded) != 2 + self.calc_padded_len(unpadded_len):
            raise CryptoRejected("nip44: invalid padding")

        return bytes(padded[2:2 + unpadded_len])

    def calc_padded_len(self, unpadded_len:int) -> int:
        if unpadded_len < 1 or unpadded_len > 65535:
            raise MalformedInput(f"nip44: invalid unpadded length {unpadded_len}")
        if unpadded_len <= 32: return 32

        next_power = 1 << (unpadded_len - 1).bit_length()
        chunk = 32 if next_power <= 256 else next_power // 8

        return chunk * ((unpadded_len - 1) // chunk + 1)

class Nips(
    Nip19,
    Nip44,
):
    def __init__(self):
        super(Nips, self).__init__()
