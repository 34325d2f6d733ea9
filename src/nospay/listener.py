import inspect
import logging
import secrets
from collections import OrderedDict
from typing import Any, Awaitable, Callable

from .errors import CryptoRejected, MalformedInput, NetworkTransient, NostrError
from .event import NostrEvent
from .keys import KeyPair
from .kinds import Kinds
from .nips import Nip44
from .relay import RelayClient

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, NostrEvent], Awaitable[None]|None]
ErrorCallback = Callable[[str, NostrError], Awaitable[None]|None]

class GiftWrapListener(Nip44):
    """Ephemeral identity that receives NIP-17 direct messages over NIP-59 gift wraps.

    ``on_message(content, rumor)`` is called once per gift wrap that verifies and
    decrypts; ``on_error(relay_url, error)`` receives every discarded wrap and relay
    failure, with ``error.kind`` telling malformed, rejected and transient apart.
    """
    def __init__(
            self,
            relays:list[str],
            on_message:MessageCallback,
            on_error:ErrorCallback=None,
            keypair:KeyPair=None,
            rng:Callable[[int], bytes]=secrets.token_bytes,
            cache_size:int=1024,
            **relay_options:Any,
        ):
        super(GiftWrapListener, self).__init__()

        self.keypair:KeyPair = keypair if keypair is not None else KeyPair.generate(rng)
        self.relays:list[str] = list(relays) if relays else []
        self.on_message = on_message
        self.on_error_callback = on_error
        self.cache_size:int = cache_size
        self.conversation_keys:OrderedDict[str, bytes] = OrderedDict()
        self.seen_ids:OrderedDict[str, None] = OrderedDict()

        self.client = RelayClient(self.relays, self.keypair.public_hex, self, **relay_options)

    @property
    def pubkey(self) -> str:
        return self.keypair.public_hex

    @property
    def npub(self) -> str:
        return self.keypair.npub

    def nprofile(self, relays:list[str]=None) -> str:
        return self.keypair.nprofile(self.relays if relays is None else relays)

    async def start(self) -> None:
        await self.client.start()

    async def stop(self) -> None:
        await self.client.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.stop()
        return False

    def conversation_key(self, pubkey:str) -> bytes:
        key = self.conversation_keys.get(pubkey)
        if key is not None:
            self.conversation_keys.move_to_end(pubkey)
            return key

        try:
            pubkey_x = bytes.fromhex(pubkey)
        except (TypeError, ValueError) as e:
            raise MalformedInput(f"invalid pubkey {pubkey!r}", e) from e
        key = self.derive_conversation_key(self.keypair.secret, pubkey_x)

        self.conversation_keys[pubkey] = key
        if len(self.conversation_keys) > self.cache_size:
            self.conversation_keys.popitem(last=False)
        return key

    def unwrap(self, wrap:NostrEvent) -> NostrEvent:
        if wrap.kind != Kinds.GiftWrap:
            raise MalformedInput(f"expected kind {Kinds.GiftWrap}, got {wrap.kind}")
        if not wrap.verify():
            raise CryptoRejected(f"gift wrap {wrap.id} failed verification")

        seal = NostrEvent.from_json(self.decrypt(wrap.content, self.conversation_key(wrap.pubkey)))
        if seal.kind != Kinds.Seal:
            raise MalformedInput(f"expected seal kind {Kinds.Seal}, got {seal.kind}")
        if not seal.verify():
            raise CryptoRejected(f"seal {seal.id} failed verification")

        rumor = NostrEvent.from_json(self.decrypt(seal.content, self.conversation_key(seal.pubkey)))
        # the seal signature is the only proof of authorship for the unsigned rumor
        if rumor.pubkey != seal.pubkey:
            raise CryptoRejected("rumor pubkey does not match seal author")
        if rumor.id is not None and rumor.id != rumor.compute_id_hex():
            raise CryptoRejected("rumor id mismatch")
        if not Kinds.isDirectMessageKind(rumor.kind):
            logger.debug("unwrapped rumor of unexpected kind %s", rumor.kind)

        return rumor

    def remember(self, event_id:str) -> None:
        self.seen_ids[event_id] = None
        if len(self.seen_ids) > self.cache_size:
            self.seen_ids.popitem(last=False)

    async def on_event(self, relay_url:str, event:NostrEvent) -> None:
        if event.id in self.seen_ids:
            logger.debug("duplicate gift wrap %s from %s", event.id, relay_url)
            return

        try:
            rumor = self.unwrap(event)
        except NostrError as e:
            logger.warning("discarding gift wrap %s from %s: %s", event.id, relay_url, e)
            await self.report(relay_url, e)
            return

        # only remembered once valid, so a forged copy cannot shadow the real one
        self.remember(event.id)
        logger.info("received direct message from %s via %s", rumor.pubkey, relay_url)
        result = self.on_message(rumor.content, rumor)
        if inspect.isawaitable(result):
            await result

    async def on_error(self, relay_url:str, message:str, cause:BaseException|None) -> None:
        error = cause if isinstance(cause, NostrError) else NetworkTransient(message, cause)
        await self.report(relay_url, error)

    async def report(self, relay_url:str, error:NostrError) -> None:
        if self.on_error_callback is None: return
        result = self.on_error_callback(relay_url, error)
        if inspect.isawaitable(result):
            await result
