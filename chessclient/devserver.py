"""
Local stand-in for the game authority.

Speaks the same REST and WebSocket protocol as the production server so the
client can be played and tested without it. Rules and outcomes come straight
from python-chess; accounts, rooms and the ranked queue live in memory.

    uvicorn chessclient.devserver:app --reload
"""

import asyncio
import hashlib
import json
import random
import secrets
from typing import Any, Dict, List

import chess
from fastapi import Depends, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from chessclient.game_state import IN_PROGRESS

app = FastAPI(title="chessclient dev authority")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

DEFAULT_ELO = 1200


# ---- Game ----
class ChessGame:
    def __init__(self, fen: str = chess.STARTING_FEN) -> None:
        self.board = chess.Board(fen)

    def make_move(self, uci: str) -> bool:
        """Play a move in UCI notation. Returns False if it is not legal here."""
        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            return False
        if move not in self.board.legal_moves:
            return False
        self.board.push(move)
        return True

    @property
    def turn(self) -> str:
        return "white" if self.board.turn else "black"

    @property
    def status(self) -> str:
        outcome = self.board.outcome(claim_draw=True)
        if outcome is None:
            return IN_PROGRESS
        if outcome.termination == chess.Termination.CHECKMATE:
            return "checkmate"
        if outcome.termination == chess.Termination.STALEMATE:
            return "stalemate"
        return "draw"

    def state_payload(self) -> dict:
        return {"fen": self.board.fen(), "game_status": self.status}


def envelope(action: str, payload: dict | None = None) -> str:
    return json.dumps({"action": action, "payload": payload or {}})


# ---- Accounts ----
users: Dict[str, Dict[str, Any]] = {}  # email -> {username, password, elo}
tokens: Dict[str, str] = {}  # token -> email


def _hash(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def user_for_token(token: str | None) -> str | None:
    return tokens.get(token or "")


def current_user(authorization: str | None = Header(default=None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    email = user_for_token(token) if scheme.lower() == "bearer" else None
    if email is None:
        raise HTTPException(status_code=401, detail="invalid token")
    return email


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class BotMoveRequest(BaseModel):
    currentFen: str
    playerMove: str
    promotionPiece: str = ""


@app.post("/api/register", status_code=201)
async def register(request: RegisterRequest) -> dict:
    if request.email in users:
        raise HTTPException(status_code=409, detail="user already exists")
    users[request.email] = {
        "username": request.username,
        "password": _hash(request.password),
        "elo": DEFAULT_ELO,
    }
    return {"message": "registered"}


@app.post("/submit/login")
async def login(request: LoginRequest) -> dict:
    user = users.get(request.email)
    if user is None or user["password"] != _hash(request.password):
        raise HTTPException(status_code=401, detail="invalid credentials")
    token = secrets.token_urlsafe(24)
    tokens[token] = request.email
    return {"token": token}


@app.get("/api/validate")
async def validate(email: str = Depends(current_user)) -> dict:
    return {"elo": users[email]["elo"]}


@app.post("/api/rooms/create")
async def create_room(email: str = Depends(current_user)) -> dict:
    room_id = secrets.token_hex(4)
    rooms[room_id] = new_room()
    return {"roomID": room_id}


@app.post("/api/bot/move")
async def bot_move(request: BotMoveRequest) -> dict:
    try:
        game = ChessGame(request.currentFen)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid FEN")
    if game.status != IN_PROGRESS:
        raise HTTPException(status_code=400, detail="game is over")
    if not game.make_move(request.playerMove + request.promotionPiece.lower()[:1]):
        raise HTTPException(status_code=400, detail="illegal move")

    if game.status == IN_PROGRESS:
        game.board.push(random.choice(list(game.board.legal_moves)))
    return {"newFen": game.board.fen(), "gameStatus": game.status}


# ---- Rooms ----
Room = Dict[str, Any]
rooms: Dict[str, Room] = {}


def new_room(game_type: str = "casual") -> Room:
    return {
        "game": ChessGame(),
        "game_type": game_type,
        "state": "waiting",            # "waiting" / "in_progress"
        "host": None,                  # websocket of the room creator
        "players": [],                 # host first, then guest
        "spectators": set(),
        "colors": {},                  # websocket -> "white" / "black"
        "ready": {},                   # websocket -> bool
        "reserved": {},                # email -> colour, ranked rooms only
    }


def get_room(room_id: str) -> Room:
    room = rooms.get(room_id)
    if room is None:
        room = new_room()
        rooms[room_id] = room
    return room


def room_clients(room: Room) -> List[WebSocket]:
    return list(room["players"]) + list(room["spectators"])


async def broadcast(room: Room, message: str) -> None:
    await asyncio.gather(
        *[ws.send_text(message) for ws in room_clients(room)],
        return_exceptions=True,
    )


async def broadcast_lobby(room: Room) -> None:
    host = room["host"]
    guest = next((p for p in room["players"] if p is not host), None)
    for ws in room_clients(room):
        payload = {
            "player_count": len(room["players"]),
            "is_host": ws is host,
            "host_ready": room["ready"].get(host, False),
            "guest_ready": room["ready"].get(guest, False),
            "host_color": room["colors"].get(host),
            "game_type": room["game_type"],
            "game_state": room["state"],
        }
        await ws.send_text(envelope("lobby_state", payload))


async def start(room: Room) -> None:
    room["state"] = "in_progress"
    for ws in room["players"]:
        await ws.send_text(envelope("player_assigned", {"color": room["colors"][ws]}))
    await broadcast(room, envelope("game_state", room["game"].state_payload()))


async def handle_lobby_action(room: Room, ws: WebSocket, action: str, payload: dict) -> None:
    host = room["host"]
    guest = next((p for p in room["players"] if p is not host), None)

    if action == "assign_color":
        if ws is not host:
            await ws.send_text(envelope("error", {"message": "Only the host can assign colors."}))
            return
        choice = payload.get("color")
        if choice == "random":
            choice = random.choice(["white", "black"])
        if choice not in ("white", "black"):
            await ws.send_text(envelope("error", {"message": "Invalid color selection."}))
            return
        room["colors"] = {host: choice}
        if guest is not None:
            room["colors"][guest] = "black" if choice == "white" else "white"
        await broadcast_lobby(room)
    elif action == "player_ready":
        room["ready"][ws] = not room["ready"].get(ws, False)
        await broadcast_lobby(room)
    elif action == "start_game":
        if ws is not host:
            error = "Only the host can start the game."
        elif guest is None:
            error = "Two players are required to start."
        elif not room["ready"].get(guest):
            error = "Guest must be ready."
        elif host not in room["colors"]:
            error = "The host must select a color first."
        else:
            if guest not in room["colors"]:
                room["colors"][guest] = "black" if room["colors"][host] == "white" else "white"
            await start(room)
            return
        await ws.send_text(envelope("error", {"message": error}))


async def handle_move(room: Room, ws: WebSocket, payload: dict) -> None:
    game: ChessGame = room["game"]
    colour = room["colors"].get(ws)
    if colour is None:
        error = "Spectators cannot make moves."
    elif game.status != IN_PROGRESS:
        error = "The game is over."
    elif colour != game.turn:
        error = "It's not your turn."
    elif not game.make_move(f"{payload.get('from', '')}{payload.get('to', '')}{payload.get('promotion') or ''}"):
        error = "Invalid move."
    else:
        await broadcast(room, envelope("game_state", game.state_payload()))
        return
    await ws.send_text(envelope("error", {"message": error}))


# ---- Ranked queue ----
ranked_queue: List[tuple[WebSocket, str]] = []


@app.websocket("/ws/game/ranked")
async def ws_ranked(websocket: WebSocket, token: str | None = None) -> None:
    email = user_for_token(token)
    if email is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()

    entry = (websocket, email)
    ranked_queue.append(entry)
    await websocket.send_text(
        envelope("queue_status", {"status": "joined_queue", "message": "Waiting for opponent..."})
    )

    if len(ranked_queue) >= 2:
        (ws_a, email_a), (ws_b, email_b) = ranked_queue.pop(0), ranked_queue.pop(0)
        room_id = secrets.token_hex(4)
        room = rooms[room_id] = new_room(game_type="ranked")
        white, black = random.sample([(ws_a, email_a), (ws_b, email_b)], 2)
        room["reserved"] = {white[1]: "white", black[1]: "black"}
        await white[0].send_text(envelope("match_found", {"roomID": room_id, "color": "white"}))
        await black[0].send_text(envelope("match_found", {"roomID": room_id, "color": "black"}))

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        if entry in ranked_queue:
            ranked_queue.remove(entry)


# ---- Room endpoint ----
@app.websocket("/ws/game/{room_id}")
async def ws_game(websocket: WebSocket, room_id: str, token: str | None = None) -> None:
    email = user_for_token(token)
    if email is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()

    room = get_room(room_id)
    if room["host"] is None and not room["reserved"]:
        room["host"] = websocket
    if len(room["players"]) < 2 and room["state"] == "waiting":
        room["players"].append(websocket)
        room["ready"][websocket] = False
    else:
        room["spectators"].add(websocket)
        await websocket.send_text(envelope("player_assigned", {"color": "spectator"}))
    if email in room["reserved"]:
        room["colors"][websocket] = room["reserved"][email]

    await broadcast_lobby(room)
    if room["state"] == "in_progress":
        await websocket.send_text(envelope("game_state", room["game"].state_payload()))
    elif room["reserved"] and len(room["colors"]) == 2:
        await start(room)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
                action = msg.get("action")
                payload = msg.get("payload") or {}
            except (ValueError, AttributeError):
                await websocket.send_text(envelope("error", {"message": "Malformed message."}))
                continue

            if room["state"] == "waiting" and action in ("assign_color", "player_ready", "start_game"):
                await handle_lobby_action(room, websocket, action, payload)
            elif room["state"] == "in_progress" and action == "move":
                await handle_move(room, websocket, payload)
            else:
                await websocket.send_text(
                    envelope("error", {"message": f"Action '{action}' not allowed now."})
                )

    except WebSocketDisconnect:
        room["spectators"].discard(websocket)
        if websocket in room["players"]:
            room["players"].remove(websocket)
        room["colors"].pop(websocket, None)
        room["ready"].pop(websocket, None)
        if not room_clients(room):
            rooms.pop(room_id, None)
        else:
            await broadcast_lobby(room)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
