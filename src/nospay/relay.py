import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol
from aiohttp import ClientSession, ClientTimeout, ClientError, ClientWSTimeout, WSMsgType

from .errors import ConfigurationError, MalformedInput, NetworkTransient
from .event import NostrEvent
from .message import Message

logger = logging.getLogger(__name__)

INITIAL_BACKOFF:float = 1.0
MAX_BACKOFF:float = 60.0
CONNECT_TIMEOUT:float = 20.0
HEARTBEAT:float = 30.0

class RelayStatus(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    BACKOFF = "backoff"
    STOPPED = "stopped"

@dataclass(frozen=True)
class RelaySnapshot:
    url:str
    status:RelayStatus
    backoff:float
    backoff_until:float|None
    failures:int
    connects:int

class RelayState:
    """Per relay bookkeeping, only written by that relay's own task."""
    def __init__(self, url:str, backoff:float):
        self.url:str = url
        self.status:RelayStatus = RelayStatus.IDLE
        self.backoff:float = backoff
        self.backoff_until:float|None = None
        self.failures:int = 0
        self.connects:int = 0
        self.websocket:Any = None

    def snapshot(self) -> RelaySnapshot:
        return RelaySnapshot(
            url=self.url,
            status=self.status,
            backoff=self.backoff,
            backoff_until=self.backoff_until,
            failures=self.failures,
            connects=self.connects,
        )

class EventHandler(Protocol):
    def on_event(self, relay_url:str, event:NostrEvent) -> Awaitable[None]|None: ...

    def on_error(self, relay_url:str, message:str, cause:BaseException|None) -> Awaitable[None]|None: ...

class RelayClient(Message):
    """Subscribes to gift wraps for one pubkey on every relay, reconnecting with backoff.

    Each relay runs in its own task with its own inbox queue and backoff. Events and
    errors from all relays are funnelled through one delivery queue and handed to
    ``handler`` by a single dispatcher task.
    """
    def __init__(
            self,
            relays:list[str],
            pubkey:str,
            handler:EventHandler,
            subscription_id:str=None,
            initial_backoff:float=INITIAL_BACKOFF,
            max_backoff:float=MAX_BACKOFF,
            connector:Callable[[str], Awaitable[Any]]=None,
            sleep:Callable[[float], Awaitable[None]]=asyncio.sleep,
            timeout:float=CONNECT_TIMEOUT,
            heartbeat:float|None=HEARTBEAT,
            client_ssl_on:bool=True,
        ):
        super(RelayClient, self).__init__()

        self.relays:list[str] = list(relays) if relays else []
        self.pubkey:str = pubkey
        self.handler:EventHandler = handler
        self.subscription_id:str = subscription_id if subscription_id else uuid.uuid4().hex[:8]
        self.initial_backoff:float = initial_backoff
        self.max_backoff:float = max_backoff
        self.connector = connector if connector is not None else self.open_websocket
        self.sleep = sleep
        self.timeout:float = timeout
        self.heartbeat:float|None = heartbeat
        self.client_ssl_on:bool = client_ssl_on

        self.running:bool = False
        self.session:ClientSession = None
        self.states:dict[str, RelayState] = {}
        self.tasks:dict[str, asyncio.Task] = {}
        self.deliveries:asyncio.Queue = asyncio.Queue()
        self.dispatcher:asyncio.Task = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.stop()
        return False

    def snapshot(self) -> dict[str, RelaySnapshot]:
        return {url: state.snapshot() for url, state in list(self.states.items())}

    async def start(self) -> None:
        if self.running: return

        urls:list[str] = []
        for url in self.relays:
            if not isinstance(url, str) or url == "":
                logger.warning("skipping empty relay url")
                continue
            if url not in urls: urls.append(url)
        if not urls:
            logger.error("no relay urls configured, subscription %s not started", self.subscription_id)
            return
        if not self.isValidPubkey(self.pubkey):
            logger.error("invalid pubkey=%r, relays will connect but no REQ is sent", self.pubkey)

        self.running = True
        logger.info("starting relay client subscription=%s pubkey=%s relays=%s", self.subscription_id, self.pubkey, urls)

        self.deliveries = asyncio.Queue()
        self.dispatcher = asyncio.create_task(self.dispatch(), name="relay-dispatcher")
        for url in urls:
            self.states[url] = RelayState(url, self.initial_backoff)
            self.tasks[url] = asyncio.create_task(self.run_relay(url), name=f"relay:{url}")

    async def stop(self) -> None:
        if not self.running and not self.tasks: return
        self.running = False
        logger.info("stopping relay client subscription=%s", self.subscription_id)

        # a handler may call stop() from inside the dispatcher, which must not cancel itself
        current = asyncio.current_task()
        tasks = [t for t in (*self.tasks.values(), self.dispatcher) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        for state in self.states.values():
            state.status = RelayStatus.STOPPED
            await self.send_close(state.url, state.websocket)
            await self.close_socket(state.url, state.websocket)
            state.websocket = None
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.session is not None:
            await self.session.close()
            self.session = None
        self.tasks.clear()
        self.states.clear()
        self.dispatcher = None

    async def open_websocket(self, url:str):
        if self.session is None or self.session.closed:
            ctimeout = ClientTimeout(
                total=None,
                connect=self.timeout,
                sock_connect=self.timeout,
                sock_read=None
            )
            self.session = ClientSession(timeout=ctimeout)
        wstimeout = ClientWSTimeout(ws_receive=None, ws_close=self.timeout)

        return await self.session.ws_connect(url=url, timeout=wstimeout, heartbeat=self.heartbeat, ssl=self.client_ssl_on)

    async def send_close(self, url:str, websocket) -> None:
        if websocket is None: return
        try:
            await websocket.send_str(self.closeMessage(self.subscription_id))
        except (ClientError, OSError, asyncio.TimeoutError) as e:
            logger.debug("error sending CLOSE to %s: %s", url, e)

    async def close_socket(self, url:str, websocket) -> None:
        if websocket is None: return
        try:
            await websocket.close()
        except (ClientError, OSError, asyncio.TimeoutError) as e:
            logger.debug("error closing %s: %s", url, e)

    async def run_relay(self, url:str) -> None:
        state = self.states[url]
        while self.running:
            state.status = RelayStatus.CONNECTING
            state.connects += 1
            logger.debug("connecting to relay %s attempt=%d", url, state.connects)
            try:
                websocket = await self.connector(url)
            except ValueError as e:
                # includes aiohttp.InvalidURL
                logger.error("relay %s is misconfigured, giving up: %s", url, e)
                self.report_error(url, "configuration error", ConfigurationError(str(e), e))
                state.status = RelayStatus.IDLE
                return
            except (ClientError, OSError, asyncio.TimeoutError) as e:
                state.failures += 1
                self.report_error(url, "connect failed", NetworkTransient(f"connect to {url} failed: {e}", e))
            else:
                await self.serve(url, state, websocket)

            if not self.running: break

            delay = state.backoff
            state.backoff = min(state.backoff * 2, self.max_backoff)
            state.status = RelayStatus.BACKOFF
            state.backoff_until = asyncio.get_running_loop().time() + delay
            logger.info("reconnecting to %s in %.1fs", url, delay)
            await self.sleep(delay)
            state.backoff_until = None

        logger.debug("relay task for %s finished", url)

    async def serve(self, url:str, state:RelayState, websocket) -> None:
        if not self.running:
            await self.close_socket(url, websocket)
            return

        state.websocket = websocket
        state.status = RelayStatus.OPEN
        state.backoff = self.initial_backoff
        logger.info("websocket open: %s", url)

        inbox:asyncio.Queue = asyncio.Queue()
        consumer = asyncio.create_task(self.consume(url, inbox), name=f"relay-inbox:{url}")
        try:
            await self.send_subscription(url, websocket)
            async for msg in websocket:
                match(msg.type):
                    case WSMsgType.TEXT:
                        inbox.put_nowait(msg.data)
                    case WSMsgType.BINARY:
                        inbox.put_nowait(bytes(msg.data).decode('utf-8', errors='replace'))
                    case WSMsgType.ERROR:
                        state.failures += 1
                        self.report_error(url, "websocket failure", NetworkTransient(f"websocket error on {url}", websocket.exception()))
                        break
                    case WSMsgType.CLOSE|WSMsgType.CLOSING|WSMsgType.CLOSED:
                        logger.info("websocket closed: %s data=%s", url, msg.data)
                        break
                    case _:
                        logger.debug("ignoring %s frame from %s", msg.type, url)
        except (ClientError, OSError, asyncio.TimeoutError) as e:
            state.failures += 1
            self.report_error(url, "websocket failure", NetworkTransient(f"websocket failure on {url}: {e}", e))
        finally:
            state.websocket = None
            if self.running:
                inbox.put_nowait(None)
                await consumer
            else:
                consumer.cancel()
            await self.close_socket(url, websocket)

    async def send_subscription(self, url:str, websocket) -> None:
        if not self.isValidPubkey(self.pubkey):
            logger.error("cannot send REQ to %s: invalid pubkey=%r", url, self.pubkey)
            return
        message = self.reqMessage(self.subscription_id, self.giftWrapFilter(self.pubkey))
        logger.debug("sending REQ to %s: %s", url, message)
        await websocket.send_str(message)

    async def consume(self, url:str, inbox:asyncio.Queue) -> None:
        while True:
            text = await inbox.get()
            if text is None: return
            try:
                self.handle_message(url, text)
            except Exception:
                logger.exception("error handling message from %s", url)

    def handle_message(self, url:str, text:str) -> None:
        try:
            message = self.parseRelayMessage(text)
        except MalformedInput as e:
            logger.warning("error parsing message from %s: %s", url, e)
            self.report_error(url, "parse error", e)
            return
        if message is None: return

        match(message[0]):
            case "EVENT":
                if len(message) < 3: return
                if message[1] != self.subscription_id:
                    logger.debug("dropping event for foreign subscription %r from %s", message[1], url)
                    return
                try:
                    event = NostrEvent.from_dict(message[2])
                except MalformedInput as e:
                    logger.warning("malformed event from %s: %s", url, e)
                    self.report_error(url, "parse error", e)
                    return
                self.deliveries.put_nowait(("event", url, event))
            case "NOTICE":
                logger.warning("NOTICE from %s: %s", url, message[1] if len(message) > 1 else "")
            case "CLOSED":
                logger.warning("CLOSED from %s sub=%s reason=%s", url,
                               message[1] if len(message) > 1 else "", message[2] if len(message) > 2 else "")
            case "EOSE":
                logger.debug("EOSE from %s", url)
            case _:
                logger.debug("unhandled %s message from %s", message[0], url)

    def report_error(self, url:str, message:str, cause:BaseException|None=None) -> None:
        logger.warning("%s: %s (%s)", url, message, cause)
        if self.running:
            self.deliveries.put_nowait(("error", url, (message, cause)))

    async def dispatch(self) -> None:
        while self.running:
            kind, url, payload = await self.deliveries.get()
            if not self.running: return
            try:
                if kind == "event":
                    result = self.handler.on_event(url, payload)
                else:
                    result = self.handler.on_error(url, *payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s handler raised for %s", kind, url)
