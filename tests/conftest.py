"""
Shared fixtures for nospay tests.

Provides:
- A BIP-340 signer and NIP-44 encryptor, the halves of the protocol nospay
  itself never needs, used to build signed events and gift wraps
- In-memory websockets and connectors for driving RelayClient offline
"""

import asyncio
import base64
import json
import logging
import struct
from dataclasses import replace
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType
from Crypto.Cipher import ChaCha20

from nospay.bip0340 import G, N
from nospay.event import NostrEvent
from nospay.keys import KeyPair
from nospay.kinds import Kinds
from nospay.nips import Nips

# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Signing and encryption helpers
# ============================================================================


class Signer(Nips):
    """Produces what a sending client would: Schnorr signatures, NIP-44 payloads, gift wraps."""

    def sign(self, secret: bytes, message: bytes, aux: bytes = bytes(32)) -> bytes:
        d0 = self.scalar_from_bytes(secret)
        point = self.point_mul(G, d0)
        d = d0 if self.is_even(point[1]) else N - d0
        pubkey = self.bytes_from_point(point)

        t = (d ^ int.from_bytes(self.tagged_hash("aux", aux), "big")).to_bytes(32, "big")
        k0 = self.modN(int.from_bytes(self.tagged_hash("nonce", t, pubkey, message), "big"))
        assert k0 != 0
        R = self.point_mul(G, k0)
        k = k0 if self.is_even(R[1]) else N - k0
        r = self.bytes_from_point(R)
        e = self.modN(int.from_bytes(self.tagged_hash("challenge", r, pubkey, message), "big"))

        return r + self.modN(k + e * d).to_bytes(32, "big")

    def sign_event(self, keypair: KeyPair, event: NostrEvent) -> NostrEvent:
        event = replace(event, pubkey=keypair.public_hex, id=None, sig=None)
        event_id = event.compute_id()
        return replace(event, id=event_id.hex(), sig=self.sign(keypair.secret, event_id).hex())

    def encrypt(self, plaintext: str, conversation_key: bytes, nonce: bytes) -> str:
        chacha_key, chacha_nonce, hmac_key = self.get_message_keys(conversation_key, nonce)
        data = plaintext.encode("utf-8")
        padded = struct.pack(">H", len(data)) + data + bytes(self.calc_padded_len(len(data)) - len(data))
        ciphertext = ChaCha20.new(key=chacha_key, nonce=chacha_nonce).encrypt(padded)
        mac = self.hmac_aad(hmac_key, ciphertext, nonce)
        return base64.b64encode(bytes([2]) + nonce + ciphertext + mac).decode()

    def encrypt_to(self, sender: KeyPair, recipient_pubkey: str, plaintext: str, nonce: bytes) -> str:
        key = self.derive_conversation_key(sender.secret, bytes.fromhex(recipient_pubkey))
        return self.encrypt(plaintext, key, nonce)

    def gift_wrap(
        self,
        sender: KeyPair,
        recipient_pubkey: str,
        content: str,
        rumor_pubkey: str = None,
        rumor_kind: int = Kinds.PrivateDirectMessage,
        seal_kind: int = Kinds.Seal,
        created_at: int = 1700000000,
    ) -> NostrEvent:
        rumor = NostrEvent(
            kind=rumor_kind,
            created_at=created_at,
            pubkey=rumor_pubkey or sender.public_hex,
            tags=[["p", recipient_pubkey]],
            content=content,
        )
        rumor = replace(rumor, id=rumor.compute_id_hex())

        seal = self.sign_event(
            sender,
            NostrEvent(
                kind=seal_kind,
                created_at=created_at,
                content=self.encrypt_to(sender, recipient_pubkey, json.dumps(rumor.to_dict()), bytes([1]) * 32),
            ),
        )

        ephemeral = KeyPair.from_secret(bytes([7]) * 32)
        return self.sign_event(
            ephemeral,
            NostrEvent(
                kind=Kinds.GiftWrap,
                created_at=created_at,
                tags=[["p", recipient_pubkey]],
                content=self.encrypt_to(ephemeral, recipient_pubkey, json.dumps(seal.to_dict()), bytes([2]) * 32),
            ),
        )


@pytest.fixture
def signer() -> Signer:
    return Signer()


@pytest.fixture
def sender() -> KeyPair:
    return KeyPair.from_secret(bytes([3]) * 32)


@pytest.fixture
def recipient() -> KeyPair:
    return KeyPair.from_secret(bytes([5]) * 32)


# ============================================================================
# Fake transport
# ============================================================================


def text_frame(data: str) -> SimpleNamespace:
    return SimpleNamespace(type=WSMsgType.TEXT, data=data)


class FakeWebSocket:
    """Async iterable of frames; iteration ends on close() or end()."""

    def __init__(self, frames=()):
        self.sent: list[str] = []
        self.closed = False
        self.frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.frames.put_nowait(frame)

    async def send_str(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self.frames.put_nowait(None)

    def exception(self):
        return None

    def push(self, data: str) -> None:
        self.frames.put_nowait(text_frame(data))

    def end(self) -> None:
        self.frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Hands out a FakeWebSocket per connect, or raises for urls listed in ``failing``."""

    def __init__(self, failing=(), close_immediately=False):
        self.failing = set(failing)
        self.close_immediately = close_immediately
        self.calls: dict[str, int] = {}
        self.sockets: dict[str, list[FakeWebSocket]] = {}

    async def __call__(self, url: str) -> FakeWebSocket:
        self.calls[url] = self.calls.get(url, 0) + 1
        if url in self.failing:
            raise OSError(f"connection refused: {url}")
        websocket = FakeWebSocket()
        if self.close_immediately:
            websocket.end()
        self.sockets.setdefault(url, []).append(websocket)
        return websocket

    def latest(self, url: str) -> FakeWebSocket:
        return self.sockets[url][-1]


class RecordingHandler:
    def __init__(self):
        self.events: list[tuple[str, NostrEvent]] = []
        self.errors: list[tuple[str, str, BaseException]] = []

    def on_event(self, relay_url, event):
        self.events.append((relay_url, event))

    def on_error(self, relay_url, message, cause):
        self.errors.append((relay_url, message, cause))


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()
