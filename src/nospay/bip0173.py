from .errors import MalformedInput

CHARSET:str = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
GENERATOR:tuple = (0x3b6a57b2, 0x26508e6d, 0x1ea119fa, 0x3d4233dd, 0x2a1462b3)
CHECKSUM_LENGTH:int = 6

class Bip0173:
    """Bech32 (not Bech32m) without the segwit 90 character limit."""
    def __init__(self):
        super(Bip0173, self).__init__()

    def polymod(self, values:list[int]) -> int:
        chk = 1
        for v in values:
            top = chk >> 25
            chk = (chk & 0x1ffffff) << 5 ^ v
            for i in range(5):
                if (top >> i) & 1: chk ^= GENERATOR[i]
        return chk

    def hrp_expand(self, hrp:str) -> list[int]:
        return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]

    def verify_checksum(self, hrp:str, data:list[int]) -> bool:
        return self.polymod(self.hrp_expand(hrp) + list(data)) == 1

    def create_checksum(self, hrp:str, data:list[int]) -> list[int]:
        mod = self.polymod(self.hrp_expand(hrp) + list(data) + [0] * CHECKSUM_LENGTH) ^ 1
        return [(mod >> 5 * (5 - i)) & 31 for i in range(CHECKSUM_LENGTH)]

    def bech32_encode(self, hrp:str, data:list[int]) -> str:
        if not isinstance(hrp, str) or hrp == "":
            raise MalformedInput("bech32: empty hrp")
        if any(not 33 <= ord(c) <= 126 for c in hrp):
            raise MalformedInput("bech32: hrp character out of range")
        for v in data:
            if not isinstance(v, int) or v < 0 or v > 31:
                raise MalformedInput(f"bech32: invalid data value {v!r}")

        hrp = hrp.lower()
        combined = list(data) + self.create_checksum(hrp, data)
        return hrp + '1' + ''.join(CHARSET[d] for d in combined)

    def bech32_decode(self, bech:str) -> tuple[str, list[int]]:
        if not isinstance(bech, str):
            raise MalformedInput("bech32: not a string")
        s = bech.strip()
        if s.lower() != s and s.upper() != s:
            raise MalformedInput("bech32: mixed case")
        s = s.lower()

        pos = s.rfind('1')
        if pos < 1 or pos + 1 + CHECKSUM_LENGTH > len(s):
            raise MalformedInput("bech32: missing separator or too short")
        hrp = s[:pos]
        if any(not 33 <= ord(c) <= 126 for c in hrp):
            raise MalformedInput("bech32: hrp character out of range")

        data:list[int] = []
        for c in s[pos + 1:]:
            idx = CHARSET.find(c)
            if idx == -1:
                raise MalformedInput(f"bech32: invalid character {c!r}")
            data.append(idx)

        if not self.verify_checksum(hrp, data):
            raise MalformedInput("bech32: invalid checksum")

        return (hrp, data[:-CHECKSUM_LENGTH])

    def convert_bits(self, data:bytes|list[int], from_bits:int, to_bits:int, pad:bool=True) -> list[int]:
        acc, bits = (0, 0)
        maxv = (1 << to_bits) - 1
        max_acc = (1 << (from_bits + to_bits - 1)) - 1
        ret:list[int] = []
        for value in data:
            if value < 0 or value >> from_bits:
                raise MalformedInput(f"convert_bits: value {value} exceeds {from_bits} bits")
            acc = ((acc << from_bits) | value) & max_acc
            bits += from_bits
            while bits >= to_bits:
                bits -= to_bits
                ret.append((acc >> bits) & maxv)

        if pad:
            if bits: ret.append((acc << (to_bits - bits)) & maxv)
        elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
            raise MalformedInput("convert_bits: invalid leftover bits")

        return ret
