"""
Push-notification session.

One SignalR connection per run, authenticated with the same Basic-Auth
header as the control plane and carried over WebSockets only.

Received hub events are decoded and pushed onto one bounded asyncio.Queue
per (hub, event) channel. Dispatch never waits on a consumer, so a slow
consumer on one channel cannot delay another channel; a full channel is
reported as a ChannelOverflowError.

Transport faults after connect() are reported through the error handler
instead of being raised, since they happen on the reader task.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from hpc_bvt.errors import ChannelOverflowError, HubInvocationError, TransportError
from hpc_bvt.events.protocol import (
    START_RESPONSE,
    NegotiateResponse,
    HubMessage,
    ServerMessage,
    encode_invocation,
    is_keep_alive,
    negotiate_params,
    parse_message,
    transport_params,
    websocket_url,
)
from hpc_bvt.infra.config import BvtConfig
from hpc_bvt.infra.tls import client_ssl_context

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[TransportError], None]
Decoder = Callable[[Sequence[Any]], Any]


@dataclass
class EventChannel:
    """Bounded queue receiving the decoded events of one hub event."""

    hub: str
    event: str
    decode: Decoder
    queue: asyncio.Queue


@dataclass
class _PendingInvocation:
    hub: str
    method: str
    future: asyncio.Future


def _channel_key(hub: str, event: str) -> Tuple[str, str]:
    return hub.lower(), event.lower()


class EventSession:
    """
    SignalR hub connection.

    Usage:
        session = EventSession(config, error_handler=on_fault)
        jobs = session.on("JobEventHub", "JobStateChange", decode_job_state_change)
        await session.connect()
        await session.invoke("JobEventHub", "BeginListen", job_id)
        event = await jobs.get()
        await session.close()
    """

    def __init__(
        self,
        config: BvtConfig,
        error_handler: Optional[ErrorHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Run configuration (endpoint, credentials, TLS, timeouts)
            error_handler: Called with every asynchronous transport fault
            transport: Optional httpx transport for the negotiate/start/abort
                requests, used by tests
        """
        self.config = config
        self._error_handler = error_handler
        self._authorization = config.credentials.authorization_header()
        self._ssl_context = client_ssl_context(config.verify_tls)
        self._http = httpx.AsyncClient(
            headers={"Authorization": self._authorization},
            verify=self._ssl_context,
            timeout=config.connect_timeout_seconds,
            transport=transport,
        )

        self._channels: Dict[Tuple[str, str], EventChannel] = {}
        self._pending: Dict[str, _PendingInvocation] = {}
        self._next_invocation_id = 0

        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._initialized = asyncio.Event()
        self._connection_token: Optional[str] = None
        self._closing = False

    @property
    def hubs(self) -> List[str]:
        """Hub names in registration order, without duplicates."""
        seen: List[str] = []
        for channel in self._channels.values():
            if channel.hub.lower() not in (hub.lower() for hub in seen):
                seen.append(channel.hub)
        return seen

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._initialized.is_set() and not self._closing

    def on(self, hub: str, event: str, decode: Decoder, maxsize: Optional[int] = None) -> asyncio.Queue:
        """
        Register a channel for one hub event.

        Must be called before connect(): the hub list is part of the
        negotiated connection.

        Args:
            hub: Hub name, e.g. "JobEventHub"
            event: Event name, e.g. "JobStateChange"
            decode: Turns the event argument list into the queued item
            maxsize: Queue bound (defaults to config.channel_size)

        Returns:
            asyncio.Queue: The channel's queue
        """
        if self._ws is not None:
            raise TransportError("Event channels must be registered before connect()")

        key = _channel_key(hub, event)
        if key in self._channels:
            raise ValueError(f"Channel {hub}.{event} is already registered")

        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or self.config.channel_size)
        self._channels[key] = EventChannel(hub=hub, event=event, decode=decode, queue=queue)
        return queue

    async def connect(self) -> None:
        """
        Negotiate, open the socket and start the connection.

        Raises:
            TransportError: If any step fails; the session is closed
        """
        if not self._channels:
            raise TransportError("No event channels registered")

        logger.info(f"Connecting to {self.config.event_url} ...")
        try:
            negotiation = await self._negotiate()
            if not negotiation.try_web_sockets:
                raise TransportError("Server does not accept the WebSockets transport")
            self._connection_token = negotiation.connection_token

            await self._open_socket()
            await self._wait_initialized()
            await self._start()
        except TransportError:
            await self.close()
            raise
        except (httpx.HTTPError, OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
            await self.close()
            raise TransportError(f"Exception on starting: {e!r}") from e

        logger.info(f"Connected to {self.config.event_url} (hubs: {', '.join(self.hubs)})")

    async def invoke(self, hub: str, method: str, *args: Any) -> Any:
        """
        Call a server hub method and wait for its result.

        Raises:
            HubInvocationError: If the session is not connected, the server
                returns an error, or no result arrives in time
        """
        if not self.connected:
            raise HubInvocationError(hub, method, "session is not connected")

        invocation_id = self._next_invocation_id
        self._next_invocation_id += 1
        key = str(invocation_id)
        future = asyncio.get_running_loop().create_future()
        self._pending[key] = _PendingInvocation(hub=hub, method=method, future=future)

        logger.debug(f"Invoking {hub}.{method}{tuple(args)} (I={invocation_id})")
        try:
            await self._ws.send(encode_invocation(hub, method, args, invocation_id))
            return await asyncio.wait_for(future, timeout=self.config.invoke_timeout_seconds)
        except asyncio.TimeoutError:
            raise HubInvocationError(
                hub, method, f"no result within {self.config.invoke_timeout_seconds}s"
            )
        except ConnectionClosed as e:
            raise HubInvocationError(hub, method, f"connection closed: {e}")
        finally:
            self._pending.pop(key, None)

    async def close(self) -> None:
        """Stop the reader, abort the connection on the server and release resources."""
        if self._closing:
            return
        self._closing = True

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        self._fail_pending("session closed")

        if self._ws is not None:
            if self._connection_token is not None:
                await self._abort()
            await self._ws.close()

        await self._http.aclose()
        logger.info("Event session closed")

    async def __aenter__(self) -> "EventSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Connection steps
    # -------------------------------------------------------------------------

    async def _negotiate(self) -> NegotiateResponse:
        response = await self._http.get(
            f"{self.config.event_url}/negotiate",
            params=negotiate_params(self.hubs),
        )
        if not response.is_success:
            raise TransportError(
                f"Negotiate failed: HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return NegotiateResponse.model_validate(response.json())
        except ValueError as e:
            raise TransportError(f"Invalid negotiate response: {e}")

    async def _open_socket(self) -> None:
        url = websocket_url(self.config.event_url, self._connection_token, self.hubs)
        options: Dict[str, Any] = {
            "additional_headers": {"Authorization": self._authorization},
            "open_timeout": self.config.connect_timeout_seconds,
        }
        if url.startswith("wss://"):
            options["ssl"] = self._ssl_context

        self._ws = await websockets.connect(url, **options)
        self._reader_task = asyncio.create_task(self._read_loop())

    async def _wait_initialized(self) -> None:
        init_wait = asyncio.create_task(self._initialized.wait())
        try:
            done, _ = await asyncio.wait(
                {init_wait, self._reader_task},
                timeout=self.config.connect_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            init_wait.cancel()

        if not self._initialized.is_set():
            if self._reader_task in done:
                raise TransportError("Connection closed before it was initialized")
            raise TransportError(
                f"No init message within {self.config.connect_timeout_seconds}s"
            )

    async def _start(self) -> None:
        response = await self._http.get(
            f"{self.config.event_url}/start",
            params=transport_params(self._connection_token, self.hubs),
        )
        if not response.is_success:
            raise TransportError(
                f"Start failed: HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            started = response.json().get("Response")
        except (ValueError, AttributeError):
            started = None
        if started != START_RESPONSE:
            raise TransportError(f"Unexpected start response: {response.text[:200]}")

    async def _abort(self) -> None:
        try:
            await self._http.get(
                f"{self.config.event_url}/abort",
                params=transport_params(self._connection_token, self.hubs),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Abort request failed: {e!r}")

    # -------------------------------------------------------------------------
    # Reader
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            if not self._closing:
                self._report(TransportError(f"Connection closed: {e}"))
        else:
            if not self._closing:
                self._report(TransportError("Connection closed by server"))
        finally:
            self._fail_pending("connection closed")

    def _handle_frame(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if is_keep_alive(raw):
            return

        try:
            message = parse_message(raw)
        except TransportError as e:
            self._report(e)
            return

        if message.is_init:
            self._initialized.set()
        if message.should_reconnect == 1:
            self._report(TransportError("Server requested the client to reconnect"))
        if message.is_invocation_result:
            self._resolve(message)
        for hub_message in message.messages:
            self._dispatch(hub_message)

    def _dispatch(self, hub_message: HubMessage) -> None:
        channel = self._channels.get(_channel_key(hub_message.hub, hub_message.method))
        if channel is None:
            logger.debug(f"No channel for {hub_message.hub}.{hub_message.method}, ignored")
            return

        try:
            item = channel.decode(hub_message.args)
        except (TypeError, ValueError) as e:
            self._report(TransportError(
                f"Bad arguments for {channel.hub}.{channel.event}: {e}"
            ))
            return

        try:
            channel.queue.put_nowait(item)
        except asyncio.QueueFull:
            self._report(ChannelOverflowError(channel.hub, channel.event, channel.queue.maxsize))

    def _resolve(self, message: ServerMessage) -> None:
        pending = self._pending.get(str(message.invocation_id))
        if pending is None or pending.future.done():
            logger.debug(f"Result for unknown invocation {message.invocation_id}")
            return

        if message.error is not None:
            pending.future.set_exception(
                HubInvocationError(pending.hub, pending.method, message.error)
            )
        else:
            pending.future.set_result(message.result)

    def _fail_pending(self, reason: str) -> None:
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(HubInvocationError(pending.hub, pending.method, reason))

    def _report(self, error: TransportError) -> None:
        logger.error(f"HubConnection Exception:\n{error}")
        if self._error_handler is not None:
            self._error_handler(error)
