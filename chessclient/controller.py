"""
Session controller: owns the session mode, the single open channel, and the
move reconciler, and moves between Idle, bot play, room lobby/game and the
ranked queue in response to user actions and inbound messages.

All state lives on one `SessionController`. Inbound frames arrive on the
transport's queue and are handled one at a time by `run()`; user operations
take the same lock, so handlers never interleave with each other.
"""

import asyncio
import functools
import logging
from typing import Protocol

import chess

from chessclient import protocol
from chessclient.config import ClientConfig
from chessclient.credentials import CredentialStore
from chessclient.errors import (
    AuthenticationRequired,
    ConnectionFailedError,
    ProtocolError,
    RejectedMoveError,
    UserCancelled,
)
from chessclient.game_state import (
    START_FEN,
    Color,
    GameDescriptor,
    Move,
    RoomDescriptor,
    SessionMode,
)
from chessclient.promotion import PromotionRequirement, piece_letter, promotion_requirement
from chessclient.reconciler import MoveReconciler
from chessclient.transport import Channel, ChannelClosed, ChannelKind, InboundEvent, TransportSession

_log = logging.getLogger(__name__)

ASSIGNABLE_COLORS = ("white", "black", "random")
_STOP = object()


class SessionView(Protocol):
    """Everything the controller needs from whatever draws the board."""

    def render(self, fen: str, last_move: dict | None) -> None:
        ...

    def notify(self, message: str, level: str = "info") -> None:
        ...

    def game_over(self, game_status: str) -> None:
        ...

    def lobby(self, room: RoomDescriptor) -> None:
        ...

    def mode_changed(self, mode: SessionMode) -> None:
        ...

    def prompt_promotion(self) -> str | None:
        """Ask which piece to promote to. None means the user dismissed the prompt."""
        ...

    def redirect_to_login(self) -> None:
        ...


def serialized(method):
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        async with self._lock:
            return await method(self, *args, **kwargs)

    return wrapper


class SessionController:
    def __init__(
        self,
        view: SessionView,
        transport: TransportSession,
        credentials: CredentialStore,
        config: ClientConfig | None = None,
    ) -> None:
        self.view = view
        self.transport = transport
        self.credentials = credentials
        self.config = config or transport.config

        self.mode = SessionMode.IDLE
        self.channel: Channel | None = None
        self.connected = False
        self.color: Color | None = None
        self.room: RoomDescriptor | None = None
        self.game = GameDescriptor()
        self.reconciler = MoveReconciler(view.render)

        # bumped whenever the session is torn down, so late replies can be recognised
        self._epoch = 0
        self._lock = asyncio.Lock()
        self._handlers = {
            protocol.PlayerAssigned: self._on_player_assigned,
            protocol.LobbyState: self._on_lobby_state,
            protocol.GameState: self._on_game_state,
            protocol.ServerError: self._on_server_error,
            protocol.MatchFound: self._on_match_found,
            protocol.QueueStatus: self._on_queue_status,
            protocol.UnknownMessage: self._on_unknown,
        }

    # ---- Event loop ----
    async def run(self) -> None:
        """Handle inbound events in arrival order until `stop()` is called."""
        queue = self.transport.inbound
        while True:
            event = await queue.get()
            if event is _STOP:
                return
            await self.dispatch(event)

    def stop(self) -> None:
        self.transport.inbound.put_nowait(_STOP)

    async def shutdown(self) -> None:
        await self.leave()
        await self.transport.aclose()

    @serialized
    async def dispatch(self, event: InboundEvent | ChannelClosed) -> None:
        channel = event.channel
        if channel is not self.channel:
            _log.debug("ignoring event from replaced %r", channel)
            return

        if isinstance(event, ChannelClosed):
            await self._on_channel_closed(channel)
            return

        try:
            message = protocol.decode(event.raw, channel.vocabulary)
        except ProtocolError as exc:
            _log.warning("protocol error on %r: %s", channel, exc)
            self.reconciler.hold()
            self.view.notify(f"Unreadable message from server: {exc}", "warning")
            return

        await self._handlers[type(message)](message)

    # ---- Session lifecycle ----
    @serialized
    async def start_bot(self) -> None:
        await self._to_idle()
        self.color = Color.WHITE
        self.game = GameDescriptor()
        self.reconciler.reset(START_FEN)
        self._set_mode(SessionMode.BOT_PLAY)

    @serialized
    async def host_room(self) -> str | None:
        """Create a room on the server and enter its lobby as host. Returns the room id."""
        credential = self._credential_or_redirect()
        if credential is None:
            return None
        await self._to_idle()

        try:
            room_id = await self.transport.api.create_room(credential)
        except AuthenticationRequired as exc:
            self._redirect(exc)
            return None
        except ConnectionFailedError as exc:
            self.view.notify(str(exc), "error")
            return None

        if await self._enter_room(room_id, credential, SessionMode.ROOM_LOBBY):
            self.view.notify(f"Room {room_id} created, share the code to invite a friend")
            return room_id
        return None

    @serialized
    async def join_room(self, room_id: str) -> bool:
        room_id = room_id.strip()
        if not room_id:
            return False
        credential = self._credential_or_redirect()
        if credential is None:
            return False
        await self._to_idle()
        return await self._enter_room(room_id, credential, SessionMode.ROOM_LOBBY)

    @serialized
    async def find_ranked(self) -> bool:
        credential = self.credentials.get()
        try:
            elo = await self.transport.api.validate(credential)
        except ConnectionFailedError as exc:
            self.view.notify(str(exc), "error")
            return False
        if elo is None:
            self._redirect(AuthenticationRequired("log in to play ranked games"))
            return False
        await self._to_idle()

        try:
            self.channel = await self.transport.open_ranked_queue(credential)
        except ConnectionFailedError as exc:
            await self._to_idle(str(exc), "error")
            return False

        self.connected = True
        self._set_mode(SessionMode.RANKED_QUEUE)
        self.view.notify(f"Searching for an opponent (rating {elo})...")
        return True

    @serialized
    async def cancel_ranked(self) -> None:
        if self.mode is SessionMode.RANKED_QUEUE:
            await self._to_idle("You left the queue.")

    @serialized
    async def leave(self) -> None:
        await self._to_idle()

    @serialized
    async def reconnect(self) -> bool:
        """Reopen the room channel after the server dropped it."""
        if self.mode not in (SessionMode.ROOM_LOBBY, SessionMode.ROOM_GAME):
            return False
        if self.connected or self.room is None:
            return False
        credential = self._credential_or_redirect()
        if credential is None:
            return False

        await self._close_channel()
        try:
            self.channel = await self.transport.open_room(self.room.room_id, credential)
        except ConnectionFailedError as exc:
            await self._to_idle(str(exc), "error")
            return False
        self.connected = True
        if self.reconciler.pending is not None:
            self.reconciler.reject()
        self.view.notify(f"Reconnected to room {self.room.room_id}")
        return True

    # ---- Account ----
    @serialized
    async def login(self, email: str, password: str) -> bool:
        try:
            token = await self.transport.api.login(email, password)
        except (AuthenticationRequired, ConnectionFailedError) as exc:
            self.view.notify(str(exc), "error")
            return False
        self.credentials.set(token)
        self.view.notify("Logged in.")
        return True

    @serialized
    async def register(self, username: str, email: str, password: str) -> bool:
        try:
            await self.transport.api.register(username, email, password)
        except (AuthenticationRequired, ConnectionFailedError) as exc:
            self.view.notify(str(exc), "error")
            return False
        self.view.notify("Account created, you can log in now.")
        return True

    @serialized
    async def logout(self) -> None:
        await self._to_idle()
        self.credentials.clear()
        self.view.redirect_to_login()

    # ---- Lobby actions ----
    @serialized
    async def assign_color(self, color: str) -> bool:
        if color not in ASSIGNABLE_COLORS:
            self.view.notify(f"Pick one of {', '.join(ASSIGNABLE_COLORS)}.", "warning")
            return False
        return await self._send_lobby(protocol.assign_color(color))

    @serialized
    async def toggle_ready(self) -> bool:
        return await self._send_lobby(protocol.player_ready())

    @serialized
    async def start_game(self) -> bool:
        return await self._send_lobby(protocol.start_game())

    async def _send_lobby(self, envelope: str) -> bool:
        if self.mode is not SessionMode.ROOM_LOBBY or self.channel is None:
            _log.debug("lobby action outside the lobby ignored")
            return False
        await self.channel.send(envelope)
        return True

    # ---- Moves ----
    async def propose_move(self, from_square: str, to_square: str, promotion: str | None = None) -> bool:
        """
        Play a move from the local board. Returns False when the move was refused
        locally (not our turn, game over, promotion cancelled, move pending, ...).
        `promotion` pre-answers the promotion prompt.
        """
        async with self._lock:
            if self.reconciler.pending is not None:
                _log.debug("move refused, %s still pending", self.reconciler.pending.uci)
                return False
            if self.mode is not SessionMode.BOT_PLAY and self.channel is None:
                _log.debug("move refused, no open channel")
                return False
            move = self._prepare_move(from_square, to_square, promotion)
            if move is None or self.reconciler.propose(move) is None:
                return False
            if self.mode is not SessionMode.BOT_PLAY:
                await self.channel.send(protocol.move(move))
                return True
            epoch, fen = self._epoch, self.reconciler.confirmed

        # The bot request runs unlocked so leave/logout can still go through.
        # A second move stays blocked by the pending slot.
        try:
            reply = await self.transport.api.post_move(fen, move, self.credentials.get())
        except RejectedMoveError as exc:
            async with self._lock:
                if epoch == self._epoch:
                    self.reconciler.reject()
                    self.view.notify(str(exc), "warning")
            return True

        async with self._lock:
            if epoch != self._epoch:
                _log.debug("discarding bot reply for a finished session")
                return True
            try:
                self._apply_game_state(reply.new_fen, reply.game_status)
            except ProtocolError as exc:
                self.reconciler.reject()
                self.view.notify(str(exc), "warning")
        return True

    def _prepare_move(self, from_square: str, to_square: str, promotion: str | None) -> Move | None:
        try:
            source = chess.parse_square(from_square)
            target = chess.parse_square(to_square)
        except ValueError:
            _log.debug("not a square: %r -> %r", from_square, to_square)
            return None
        if not self._may_move(from_square):
            return None

        piece = self.reconciler.board.piece_at(from_square)
        requirement = promotion_requirement(
            piece.piece_type if piece else None,
            chess.square_rank(source) + 1,
            chess.square_rank(target) + 1,
            self.color,
        )
        letter = None
        if requirement is PromotionRequirement.REQUIRED:
            try:
                letter = piece_letter(promotion if promotion else self.view.prompt_promotion())
            except UserCancelled as exc:
                _log.debug("%s", exc)
                return None
        return Move(from_square, to_square, letter)

    def _may_move(self, from_square: str) -> bool:
        if self.mode not in (SessionMode.ROOM_GAME, SessionMode.BOT_PLAY):
            reason = f"no game in progress ({self.mode})"
        elif self.color in (None, Color.SPECTATOR):
            reason = "spectators cannot move"
        elif self.game.is_over:
            reason = f"game is over ({self.game.game_status})"
        elif self.reconciler.board.turn is not self.color:
            reason = "not our turn"
        elif not self.reconciler.board.belongs_to(from_square, self.color):
            reason = f"no {self.color} piece on {from_square}"
        else:
            return True
        _log.debug("move refused: %s", reason)
        return False

    def _apply_game_state(self, fen: str, game_status: str) -> None:
        was_over = self.game.is_over
        self.reconciler.confirm(fen)
        self.game = GameDescriptor(fen, game_status)
        if self.game.is_over and not was_over:
            self.view.game_over(game_status)

    # ---- Inbound handlers ----
    async def _on_player_assigned(self, message: protocol.PlayerAssigned) -> None:
        try:
            color = Color(message.color)
        except ValueError:
            self.view.notify(f"Server assigned an unknown color {message.color!r}", "warning")
            return
        if color is Color.SPECTATOR and not self.config.allow_spectators:
            await self._to_idle("The room is full.", "warning")
            return
        self.color = color
        self.view.notify(f"You are {color}.")

    async def _on_lobby_state(self, message: protocol.LobbyState) -> None:
        if self.room is None:
            return
        self.room.player_count = message.player_count
        self.room.is_host = message.is_host
        self.room.guest_ready = message.guest_ready
        self.room.host_ready = message.host_ready
        self.room.host_color = message.host_color
        self.room.game_type = message.game_type
        self.room.game_state = message.game_state

        if self.mode is not SessionMode.ROOM_LOBBY:
            return
        if self.room.is_ranked and self.config.ranked_bypasses_lobby:
            self._set_mode(SessionMode.ROOM_GAME)
            return
        self.view.lobby(self.room)

    async def _on_game_state(self, message: protocol.GameState) -> None:
        try:
            self._apply_game_state(message.fen, message.game_status)
        except ProtocolError as exc:
            _log.warning("%s", exc)
            self.reconciler.hold()
            self.view.notify(str(exc), "warning")
            return
        if self.mode is SessionMode.ROOM_LOBBY:
            self._set_mode(SessionMode.ROOM_GAME)

    async def _on_server_error(self, message: protocol.ServerError) -> None:
        text = message.message or "server error"
        if self.mode is SessionMode.RANKED_QUEUE:
            await self._to_idle(text, "error")
            return
        if self.reconciler.pending is not None:
            dropped = self.reconciler.reject()
            _log.info("move %s rejected: %s", dropped.uci, text)
        self.view.notify(text, "warning")

    async def _on_match_found(self, message: protocol.MatchFound) -> None:
        if self.mode is not SessionMode.RANKED_QUEUE:
            return
        credential = self.credentials.get()
        # the queue channel must be gone before the room channel exists
        await self._close_channel()
        if credential is None:
            await self._to_idle()
            self._redirect(AuthenticationRequired("log in to play ranked games"))
            return
        if await self._enter_room(message.room_id, credential, SessionMode.ROOM_GAME, game_type="ranked"):
            if message.color in (Color.WHITE, Color.BLACK):
                self.color = Color(message.color)
            self.view.notify(f"Match found! Joining room {message.room_id}.")

    async def _on_queue_status(self, message: protocol.QueueStatus) -> None:
        self.view.notify(message.message or message.status or "in queue")

    async def _on_unknown(self, message: protocol.UnknownMessage) -> None:
        _log.info("ignoring unknown action %r", message.action)

    async def _on_channel_closed(self, channel: Channel) -> None:
        if channel.kind is ChannelKind.RANKED:
            await self._to_idle("Lost connection to the ranked queue.", "error")
            return
        self.connected = False
        self.view.notify("Disconnected from the room. Reconnect to keep playing.", "warning")

    # ---- Internal helpers ----
    async def _enter_room(self, room_id: str, credential: str, mode: SessionMode, game_type: str = "casual") -> bool:
        await self._close_channel()
        try:
            channel = await self.transport.open_room(room_id, credential)
        except ConnectionFailedError as exc:
            await self._to_idle(str(exc), "error")
            return False

        self.channel = channel
        self.connected = True
        self.color = None
        self.room = RoomDescriptor(room_id, game_type=game_type)
        self.game = GameDescriptor()
        self.reconciler.reset(START_FEN)
        self._set_mode(mode)
        return True

    async def _close_channel(self) -> None:
        channel, self.channel = self.channel, None
        if channel is not None:
            await channel.close()

    async def _to_idle(self, notice: str | None = None, level: str = "info") -> None:
        await self._close_channel()
        if self.mode is not SessionMode.IDLE:
            self._epoch += 1
            self.connected = False
            self.color = None
            self.room = None
            self.game = GameDescriptor()
            self.reconciler.reset(START_FEN)
            self._set_mode(SessionMode.IDLE)
        if notice:
            self.view.notify(notice, level)

    def _set_mode(self, mode: SessionMode) -> None:
        if mode is self.mode:
            return
        _log.info("session %s -> %s", self.mode, mode)
        self.mode = mode
        self.view.mode_changed(mode)

    def _credential_or_redirect(self) -> str | None:
        credential = self.credentials.get()
        if credential is None:
            self._redirect(AuthenticationRequired("log in first"))
        return credential

    def _redirect(self, exc: AuthenticationRequired) -> None:
        _log.info("authentication required: %s", exc)
        self.view.notify(str(exc), "warning")
        self.view.redirect_to_login()
