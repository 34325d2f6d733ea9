import re

from .errors import ConfigurationError
from .kinds import Kinds

pubkey_match = re.compile(r'[a-fA-F0-9]{64}')

class Filter:
    def __init__(self):
        super(Filter, self).__init__()

    def isValidPubkey(self, pubkey:str) -> bool:
        return isinstance(pubkey, str) and pubkey_match.fullmatch(pubkey) is not None

    def giftWrapFilter(self, pubkey:str) -> dict:
        if not self.isValidPubkey(pubkey):
            raise ConfigurationError(f"invalid pubkey for #p filter: {pubkey!r}")

        return {"kinds": [Kinds.GiftWrap], "#p": [pubkey.lower()]}
