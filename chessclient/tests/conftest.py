import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from chessclient import devserver
from chessclient.config import ClientConfig
from chessclient.controller import SessionController
from chessclient.credentials import CredentialStore
from chessclient.transport import InboundEvent, TransportSession

START = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
TOKEN = "tok-123"


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, action: str, payload: dict | None = None) -> None:
        self._incoming.put_nowait(json.dumps({"action": action, "payload": payload or {}}))

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    @property
    def messages(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]


class FakeConnector:
    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.live_at_connect: list[int] = []
        self.fail = False

    async def __call__(self, url: str) -> FakeSocket:
        self.live_at_connect.append(sum(not s.closed for s in self.sockets))
        if self.fail:
            raise OSError("connection refused")
        ws = FakeSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


class FakeAuthority:
    """httpx.MockTransport handler answering the REST half of the protocol."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.valid_tokens = {TOKEN}
        self.room_id = "R1"
        self.bot_reply: tuple[int, dict] = (200, {"newFen": AFTER_E4, "gameStatus": "in_progress"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        authorized = token in self.valid_tokens

        if path == "/api/validate":
            return httpx.Response(200, json={"elo": 1234}) if authorized else httpx.Response(401)
        if path == "/api/rooms/create":
            return httpx.Response(200, json={"roomID": self.room_id}) if authorized else httpx.Response(401)
        if path == "/api/bot/move":
            status, body = self.bot_reply
            return httpx.Response(status, json=body)
        if path == "/submit/login":
            body = json.loads(request.content)
            if body == {"email": "a@b.c", "password": "pw"}:
                return httpx.Response(200, json={"token": TOKEN})
            return httpx.Response(401, json={"error": "invalid credentials"})
        if path == "/api/register":
            return httpx.Response(201, json={"message": "registered"})
        return httpx.Response(404)

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


class RecordingView:
    def __init__(self) -> None:
        self.renders: list[str] = []
        self.notices: list[tuple[str, str]] = []
        self.game_overs: list[str] = []
        self.lobbies: list = []
        self.modes: list = []
        self.redirects = 0
        self.prompts = 0
        self.promotion_answer: str | None = "q"

    @property
    def board(self) -> str | None:
        return self.renders[-1] if self.renders else None

    def render(self, fen: str, last_move: dict | None) -> None:
        self.renders.append(fen)

    def notify(self, message: str, level: str = "info") -> None:
        self.notices.append((message, level))

    def game_over(self, game_status: str) -> None:
        self.game_overs.append(game_status)

    def lobby(self, room) -> None:
        self.lobbies.append(room)

    def mode_changed(self, mode) -> None:
        self.modes.append(mode)

    def prompt_promotion(self) -> str | None:
        self.prompts += 1
        return self.promotion_answer

    def redirect_to_login(self) -> None:
        self.redirects += 1


@pytest.fixture
def view() -> RecordingView:
    return RecordingView()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture
def config(tmp_path) -> ClientConfig:
    return ClientConfig(base_url="http://chess.test", credential_path=tmp_path / "token")


@pytest.fixture
def credentials(config) -> CredentialStore:
    store = CredentialStore(config.credential_path)
    store.set(TOKEN)
    return store


@pytest.fixture
def transport(config, connector, authority) -> TransportSession:
    http = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(authority))
    return TransportSession(config, connect=connector, http=http)


@pytest.fixture
def controller(view, transport, credentials, config) -> SessionController:
    return SessionController(view, transport, credentials, config)


async def deliver(controller: SessionController, action: str, payload: dict | None = None, channel=None) -> None:
    """Hand one inbound frame to the controller as if its channel had received it."""
    channel = channel or controller.channel
    raw = json.dumps({"action": action, "payload": payload if payload is not None else {}})
    await controller.dispatch(InboundEvent(channel, raw))


@pytest.fixture
def devserver_client():
    devserver.users.clear()
    devserver.tokens.clear()
    devserver.rooms.clear()
    devserver.ranked_queue.clear()
    return TestClient(devserver.app)


def token_for(client: TestClient, email: str = "ada@example.com") -> str:
    """Register an account on the dev authority and log it in."""
    client.post("/api/register", json={"username": email.split("@")[0], "email": email, "password": "pw"})
    resp = client.post("/submit/login", json={"email": email, "password": "pw"})
    assert resp.status_code == 200
    return resp.json()["token"]
