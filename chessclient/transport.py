"""
Transport session: WebSocket channels for room and ranked-queue play, plus the
one-shot REST calls (bot moves, login, room creation, credential checks).

Every inbound frame is put on one asyncio.Queue as an `InboundEvent` tagged with
the channel it arrived on, in receipt order. Sends are fire-and-forget: a send
on a channel that is not open is dropped, never retried.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any, Awaitable, Callable
from urllib.parse import quote, urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from chessclient.config import ClientConfig
from chessclient.errors import AuthenticationRequired, ConnectionFailedError, RejectedMoveError
from chessclient.game_state import IN_PROGRESS, Move
from chessclient.protocol import RANKED_VOCABULARY, ROOM_VOCABULARY, Inbound

_log = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ChannelKind(StrEnum):
    ROOM = "room"
    RANKED = "ranked"


class ChannelState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True, eq=False)
class InboundEvent:
    channel: "Channel"
    raw: str | bytes


@dataclass(frozen=True, eq=False)
class ChannelClosed:
    """Queued once when the peer ends a channel we did not close ourselves."""

    channel: "Channel"


class Channel:
    def __init__(
        self,
        kind: ChannelKind,
        url: str,
        inbound: asyncio.Queue,
        room_id: str | None = None,
    ) -> None:
        self.kind = kind
        self.url = url
        self.room_id = room_id
        self.state = ChannelState.CONNECTING
        self._inbound = inbound
        self._ws: Any = None
        self._reader: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"<Channel {self.kind} {self.room_id or ''} {self.state.value}>"

    @property
    def vocabulary(self) -> dict[str, type[Inbound]]:
        return ROOM_VOCABULARY if self.kind is ChannelKind.ROOM else RANKED_VOCABULARY

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    async def open(self, connect: Connector) -> None:
        try:
            self._ws = await connect(self.url)
        except (OSError, WebSocketException) as exc:
            self.state = ChannelState.CLOSED
            raise ConnectionFailedError(f"could not open {self.kind} channel: {exc}") from exc

        self.state = ChannelState.OPEN
        self._reader = asyncio.create_task(self._read())
        _log.info("%s channel open", self.kind)

    async def _read(self) -> None:
        try:
            async for raw in self._ws:
                if self.state is not ChannelState.OPEN:
                    break
                self._inbound.put_nowait(InboundEvent(self, raw))
        except ConnectionClosed as exc:
            _log.info("%s channel dropped: %s", self.kind, exc)

        if self.state is ChannelState.OPEN:
            self.state = ChannelState.CLOSED
            self._inbound.put_nowait(ChannelClosed(self))

    async def send(self, text: str) -> None:
        if self.state is not ChannelState.OPEN:
            _log.debug("dropping send on %s channel (%s)", self.kind, self.state.value)
            return
        try:
            await self._ws.send(text)
        except ConnectionClosed:
            _log.debug("dropping send, %s channel went away", self.kind)

    async def close(self) -> None:
        """Safe to call any number of times."""
        self.state = ChannelState.CLOSED
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            _log.info("%s channel closed", self.kind)


@dataclass(frozen=True)
class BotReply:
    new_fen: str
    game_status: str = IN_PROGRESS


class ApiClient:
    """REST side of the authority. The credential travels as a bearer token."""

    def __init__(self, base_url: str, http: httpx.AsyncClient | None = None) -> None:
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url)

    @staticmethod
    def _auth(credential: str | None) -> dict:
        return {"Authorization": f"Bearer {credential}"} if credential else {}

    async def validate(self, credential: str | None) -> int | None:
        """The player's rating if the credential is still good, else None. Raises ConnectionFailedError if the authority is unreachable."""
        if not credential:
            return None
        try:
            resp = await self._http.get("/api/validate", headers=self._auth(credential))
        except httpx.HTTPError as exc:
            _log.warning("credential check failed: %s", exc)
            raise ConnectionFailedError(f"could not check the session: {exc}") from exc
        if not resp.is_success:
            return None
        try:
            return int(resp.json().get("elo", 0))
        except (ValueError, TypeError, AttributeError):
            return 0

    async def create_room(self, credential: str) -> str:
        try:
            resp = await self._http.post("/api/rooms/create", headers=self._auth(credential))
        except httpx.HTTPError as exc:
            raise ConnectionFailedError(f"could not create a room: {exc}") from exc
        if resp.status_code in (401, 403):
            raise AuthenticationRequired("session expired, please log in again")
        if not resp.is_success:
            raise ConnectionFailedError(f"could not create a room ({resp.status_code})")
        try:
            return str(resp.json()["roomID"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ConnectionFailedError("room creation reply had no roomID") from exc

    async def post_move(self, fen: str, move: Move, credential: str | None = None) -> BotReply:
        body = {
            "currentFen": fen,
            "playerMove": f"{move.from_square}{move.to_square}",
            "promotionPiece": move.promotion or "",
        }
        try:
            resp = await self._http.post("/api/bot/move", json=body, headers=self._auth(credential))
        except httpx.HTTPError as exc:
            raise RejectedMoveError(f"move {move.uci} not delivered: {exc}") from exc
        if not resp.is_success:
            raise RejectedMoveError(f"invalid move {move.uci}")
        try:
            data = resp.json()
            return BotReply(new_fen=data["newFen"], game_status=data.get("gameStatus", IN_PROGRESS))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise RejectedMoveError("unreadable reply from the bot") from exc

    async def login(self, email: str, password: str) -> str:
        try:
            resp = await self._http.post("/submit/login", json={"email": email, "password": password})
        except httpx.HTTPError as exc:
            raise ConnectionFailedError(f"login failed: {exc}") from exc
        if not resp.is_success:
            raise AuthenticationRequired("invalid credentials")
        try:
            return str(resp.json()["token"])
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationRequired("login reply had no token") from exc

    async def register(self, username: str, email: str, password: str) -> None:
        body = {"username": username, "email": email, "password": password}
        try:
            resp = await self._http.post("/api/register", json=body)
        except httpx.HTTPError as exc:
            raise ConnectionFailedError(f"registration failed: {exc}") from exc
        if not resp.is_success:
            try:
                reason = resp.json().get("error", resp.reason_phrase)
            except (ValueError, AttributeError):
                reason = resp.reason_phrase
            raise AuthenticationRequired(f"registration refused: {reason}")

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class TransportSession:
    def __init__(
        self,
        config: ClientConfig,
        inbound: asyncio.Queue | None = None,
        connect: Connector = websockets.connect,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.inbound: asyncio.Queue = inbound if inbound is not None else asyncio.Queue()
        self.api = ApiClient(config.base_url, http)
        self._connect = connect

    def _ws_url(self, path: str, credential: str) -> str:
        # the authority reads the token from the query string
        return f"{self.config.ws_base}{path}?{urlencode({'token': credential})}"

    async def open_room(self, room_id: str, credential: str) -> Channel:
        url = self._ws_url(f"/ws/game/{quote(room_id, safe='')}", credential)
        channel = Channel(ChannelKind.ROOM, url, self.inbound, room_id=room_id)
        await channel.open(self._connect)
        return channel

    async def open_ranked_queue(self, credential: str) -> Channel:
        channel = Channel(ChannelKind.RANKED, self._ws_url("/ws/game/ranked", credential), self.inbound)
        await channel.open(self._connect)
        return channel

    async def aclose(self) -> None:
        await self.api.aclose()
