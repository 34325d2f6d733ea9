from dataclasses import dataclass, field
import hashlib
import json
import logging
import re

from .bip0340 import Bip0340
from .errors import MalformedInput

logger = logging.getLogger(__name__)

_curve = Bip0340()

hex64_match = re.compile(r'[0-9a-f]{64}')
hex128_match = re.compile(r'[0-9a-f]{128}')

def _freeze_tags(tags) -> tuple[tuple[str, ...], ...]:
    if tags is None: return ()
    if not isinstance(tags, (list, tuple)):
        raise MalformedInput("event tags must be a list")
    frozen = []
    for sublist in tags:
        if not isinstance(sublist, (list, tuple)):
            raise MalformedInput("event tag must be a list")
        for item in sublist:
            if not isinstance(item, str):
                raise MalformedInput("event tag items must be strings")
        frozen.append(tuple(sublist))
    return tuple(frozen)

@dataclass(frozen=True)
class NostrEvent:
    """NIP-01 event. ``id`` and ``sig`` are carried as received, never computed here."""
    kind:int
    created_at:int
    pubkey:str|None = None
    tags:tuple[tuple[str, ...], ...] = field(default_factory=tuple)
    content:str|None = ""
    id:str|None = None
    sig:str|None = None

    def __post_init__(self):
        object.__setattr__(self, 'tags', _freeze_tags(self.tags))

    @classmethod
    def from_dict(cls, event:dict) -> "NostrEvent":
        if not isinstance(event, dict):
            raise MalformedInput("event must be a JSON object")

        kind, created_at = (event.get('kind'), event.get('created_at'))
        if type(kind) is not int:
            raise MalformedInput("event kind must be an integer")
        if type(created_at) is not int:
            raise MalformedInput("event created_at must be an integer")
        for key in ('id', 'pubkey', 'content', 'sig'):
            if event.get(key) is not None and not isinstance(event[key], str):
                raise MalformedInput(f"event {key} must be a string")

        return cls(
            kind=kind,
            created_at=created_at,
            pubkey=event.get('pubkey'),
            tags=event.get('tags'),
            content=event.get('content'),
            id=event.get('id'),
            sig=event.get('sig'),
        )

    @classmethod
    def from_json(cls, text:str) -> "NostrEvent":
        try:
            return cls.from_dict(json.loads(text))
        except MalformedInput:
            raise
        except (ValueError, RecursionError) as e:
            raise MalformedInput("event is not valid JSON", e) from e

    def to_dict(self) -> dict:
        event = {
            "kind": self.kind,
            "tags": [list(t) for t in self.tags],
            "content": self.content,
            "created_at": self.created_at,
            "pubkey": self.pubkey,
        }
        if self.id is not None: event["id"] = self.id
        if self.sig is not None: event["sig"] = self.sig
        return event

    def serialize(self) -> str:
        return json.dumps(
            [0,
             self.pubkey if self.pubkey is not None else "",
             self.created_at,
             self.kind,
             [list(t) for t in self.tags],
             self.content if self.content is not None else ""
            ],
            ensure_ascii=False,
            separators=(',', ':')
        )

    def compute_id(self) -> bytes:
        return hashlib.sha256(self.serialize().encode('utf-8')).digest()

    def compute_id_hex(self) -> str:
        return self.compute_id().hex()

    def verify(self) -> bool:
        try:
            expected = self.compute_id_hex()
            if self.id is None or self.id != expected:
                logger.debug("event id mismatch kind=%s id=%s computed=%s", self.kind, self.id, expected)
                return False
            if self.pubkey is None or self.sig is None:
                logger.debug("event missing pubkey or sig kind=%s", self.kind)
                return False
            if not hex64_match.fullmatch(self.pubkey) or not hex128_match.fullmatch(self.sig):
                logger.debug("event pubkey or sig is not lower-case hex of the right length kind=%s", self.kind)
                return False
            msg, sig, pub = (bytes.fromhex(self.id), bytes.fromhex(self.sig), bytes.fromhex(self.pubkey))

            valid = _curve.verify_schnorr(pub, msg, sig)
            if not valid:
                logger.debug("schnorr verify failed kind=%s id=%s pubkey=%s", self.kind, self.id, self.pubkey)
            return valid
        except (TypeError, ValueError) as e:
            logger.warning("event verify error kind=%s: %s", self.kind, e)
            return False
