"""
Classic ASP.NET SignalR wire protocol (client protocol 1.5).

Connection lifecycle, all under the hub endpoint (e.g. /hpc/signalr):
1. GET  negotiate?clientProtocol=1.5&connectionData=[{"name":"jobeventhub"}]
2. WS   connect?transport=webSockets&connectionToken=...&connectionData=...
        server sends the init frame {"S":1,"M":[]}
3. GET  start?transport=webSockets&...  -> {"Response":"started"}
4. GET  abort?transport=webSockets&...  on shutdown

Frames from the server:
- {}                                         keep-alive
- {"C":"cursor","M":[{"H":hub,"M":event,"A":[args]}]}   hub events
- {"I":"0","R":result} / {"I":"0","E":"error"}         invocation results
- {"I":"P|1","P":{...}}                      invocation progress
- {"T":1}                                    server asks the client to reconnect

Invocations from the client: {"H":hub,"M":method,"A":[args],"I":id}
"""

import json
from typing import Any, Iterable, List, Optional, Sequence, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hpc_bvt.errors import TransportError

CLIENT_PROTOCOL = "1.5"
WEBSOCKETS_TRANSPORT = "webSockets"
START_RESPONSE = "started"


class NegotiateResponse(BaseModel):
    """Body of the negotiate response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = Field(default="", alias="Url")
    connection_token: str = Field(..., alias="ConnectionToken")
    connection_id: str = Field(default="", alias="ConnectionId")
    keep_alive_timeout: Optional[float] = Field(default=None, alias="KeepAliveTimeout")
    disconnect_timeout: float = Field(default=30.0, alias="DisconnectTimeout")
    try_web_sockets: bool = Field(default=False, alias="TryWebSockets")
    protocol_version: str = Field(default=CLIENT_PROTOCOL, alias="ProtocolVersion")
    transport_connect_timeout: float = Field(default=5.0, alias="TransportConnectTimeout")


class HubMessage(BaseModel):
    """A hub event pushed by the server."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    hub: str = Field(..., alias="H")
    method: str = Field(..., alias="M")
    args: List[Any] = Field(default_factory=list, alias="A")


class ServerMessage(BaseModel):
    """Any non keep-alive frame received on the socket."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cursor: Optional[str] = Field(default=None, alias="C")
    # 1 on the init frame; invocation results reuse "S" for hub state
    initialized: Any = Field(default=None, alias="S")
    messages: List[HubMessage] = Field(default_factory=list, alias="M")
    invocation_id: Optional[Union[int, str]] = Field(default=None, alias="I")
    result: Any = Field(default=None, alias="R")
    error: Optional[str] = Field(default=None, alias="E")
    should_reconnect: Optional[int] = Field(default=None, alias="T")

    @property
    def is_init(self) -> bool:
        return self.initialized == 1

    @property
    def is_invocation_result(self) -> bool:
        return self.invocation_id is not None and not str(self.invocation_id).startswith("P|")

    @property
    def is_progress(self) -> bool:
        return self.invocation_id is not None and str(self.invocation_id).startswith("P|")


def connection_data(hubs: Iterable[str]) -> str:
    """JSON list of the hubs this connection uses."""
    return json.dumps([{"name": hub.lower()} for hub in hubs], separators=(",", ":"))


def negotiate_params(hubs: Sequence[str]) -> dict:
    return {
        "clientProtocol": CLIENT_PROTOCOL,
        "connectionData": connection_data(hubs),
    }


def transport_params(connection_token: str, hubs: Sequence[str]) -> dict:
    """Query parameters shared by connect, start and abort."""
    return {
        "transport": WEBSOCKETS_TRANSPORT,
        "clientProtocol": CLIENT_PROTOCOL,
        "connectionToken": connection_token,
        "connectionData": connection_data(hubs),
    }


def websocket_url(event_url: str, connection_token: str, hubs: Sequence[str]) -> str:
    """
    Build the socket URL for the connect request.

    https becomes wss and http becomes ws.
    """
    parts = urlsplit(event_url)
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    path = parts.path.rstrip("/") + "/connect"
    query = urlencode(transport_params(connection_token, hubs))
    return urlunsplit((scheme, parts.netloc, path, query, ""))


def encode_invocation(hub: str, method: str, args: Sequence[Any], invocation_id: int) -> str:
    return json.dumps({"H": hub, "M": method, "A": list(args), "I": invocation_id})


def is_keep_alive(raw: str) -> bool:
    return raw.strip() in ("", "{}")


def parse_message(raw: Union[str, bytes]) -> ServerMessage:
    """
    Decode one server frame.

    Raises:
        TransportError: If the frame is not a valid SignalR message
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TransportError(f"Undecodable frame {raw[:200]!r}: {e}")
    if not isinstance(data, dict):
        raise TransportError(f"Unexpected frame {raw[:200]!r}")
    try:
        return ServerMessage.model_validate(data)
    except ValidationError as e:
        raise TransportError(f"Invalid frame {raw[:200]!r}: {e}")
