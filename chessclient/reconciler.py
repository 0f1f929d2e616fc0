"""Optimistic moves against the last position the authority confirmed."""

import logging
from typing import Callable

from chessclient.errors import ProtocolError
from chessclient.game_state import START_FEN, LocalBoard, Move

_log = logging.getLogger(__name__)

RenderFn = Callable[[str, dict | None], None]


class MoveReconciler:
    """
    Keeps the rendered position equal to `confirmed`, or to `confirmed` plus the
    single pending move. The authority's position always wins.
    """

    def __init__(self, render: RenderFn, fen: str = START_FEN) -> None:
        self._render = render
        self.confirmed = fen
        self.pending: Move | None = None
        self.board = LocalBoard(fen)

    def reset(self, fen: str = START_FEN) -> None:
        self.board = LocalBoard(fen)
        self.confirmed = fen
        self.pending = None
        self._render(self.confirmed, None)

    def propose(self, move: Move) -> str | None:
        """Render `move` on top of the confirmed position. Returns None if a move is already pending."""
        if self.pending is not None:
            _log.debug("move %s refused, %s still pending", move.uci, self.pending.uci)
            return None

        optimistic = LocalBoard(self.confirmed)
        fen = optimistic.apply(move)
        self.pending = move
        self._render(fen, optimistic.last_move)
        return fen

    def confirm(self, fen: str) -> None:
        try:
            self.board.load(fen)
        except ValueError as exc:
            raise ProtocolError(f"unreadable position from server: {fen!r}") from exc

        if self.pending is not None:
            last_move = {"from": self.pending.from_square, "to": self.pending.to_square}
        else:
            last_move = None
        self.confirmed = fen
        self.pending = None
        self._render(self.confirmed, last_move)

    def reject(self) -> Move | None:
        """Drop the pending move and roll the render back. Returns the dropped move."""
        dropped, self.pending = self.pending, None
        self._render(self.confirmed, None)
        return dropped

    def hold(self) -> None:
        self._render(self.confirmed, None)
