from dataclasses import dataclass
from enum import StrEnum

import chess

START_FEN = chess.STARTING_FEN
IN_PROGRESS = "in_progress"


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"
    SPECTATOR = "spectator"


class SessionMode(StrEnum):
    IDLE = "idle"
    BOT_PLAY = "bot_play"
    ROOM_LOBBY = "room_lobby"
    ROOM_GAME = "room_game"
    RANKED_QUEUE = "ranked_queue"


def is_terminal(game_status: str) -> bool:
    """Every status other than in-progress ends the game."""
    return game_status != IN_PROGRESS


@dataclass(frozen=True)
class Move:
    """A move as the authority sees it: two squares and an optional promotion letter."""

    from_square: str
    to_square: str
    promotion: str | None = None

    def __post_init__(self) -> None:
        # chess.parse_square raises ValueError on anything but a1..h8
        chess.parse_square(self.from_square)
        chess.parse_square(self.to_square)

    @classmethod
    def from_uci(cls, uci: str) -> "Move":
        uci = uci.strip().lower()
        if len(uci) not in (4, 5):
            raise ValueError(f"not a move: {uci!r}")
        return cls(uci[0:2], uci[2:4], uci[4:5] or None)

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    def to_payload(self) -> dict:
        return {"from": self.from_square, "to": self.to_square, "promotion": self.promotion or ""}


@dataclass
class RoomDescriptor:
    room_id: str
    player_count: int = 0
    is_host: bool = False
    guest_ready: bool = False
    host_ready: bool = False
    host_color: str | None = None
    game_type: str = "casual"
    game_state: str = "waiting"

    @property
    def is_ranked(self) -> bool:
        return self.game_type == "ranked"


@dataclass
class GameDescriptor:
    fen: str = START_FEN
    game_status: str = IN_PROGRESS

    @property
    def is_over(self) -> bool:
        return is_terminal(self.game_status)


# Local mirror of a position; the server is authoritative
class LocalBoard:
    def __init__(self, fen: str = START_FEN) -> None:
        self.board = chess.Board(fen)
        self.last_move: dict | None = None

    @property
    def fen(self) -> str:
        return self.board.fen()

    @property
    def turn(self) -> Color:
        return Color.WHITE if self.board.turn == chess.WHITE else Color.BLACK

    def load(self, fen: str) -> None:
        """Replace the mirrored position. Raises ValueError for an unparsable FEN."""
        self.board = chess.Board(fen)

    def piece_at(self, square: str) -> chess.Piece | None:
        return self.board.piece_at(chess.parse_square(square))

    def belongs_to(self, square: str, color: Color) -> bool:
        piece = self.piece_at(square)
        if piece is None or color is Color.SPECTATOR:
            return False
        return piece.color == (color is Color.WHITE)

    def apply(self, move: Move) -> str:
        """
        Draw a move on top of the mirrored position and return the new FEN.
        No legality check: this only shows what the player asked for.
        """
        self.board.push(chess.Move.from_uci(move.uci))
        self.last_move = {"from": move.from_square, "to": move.to_square}
        return self.board.fen()
