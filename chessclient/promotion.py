from enum import Enum

import chess

from chessclient.errors import UserCancelled
from chessclient.game_state import Color

PROMOTION_PIECES = {
    "queen": "q",
    "rook": "r",
    "bishop": "b",
    "knight": "n",
}


class PromotionRequirement(Enum):
    NONE = "none"
    REQUIRED = "required"


def promotion_requirement(
    piece_kind: int | None, source_rank: int, target_rank: int, color: Color
) -> PromotionRequirement:
    """Ranks are 1..8 as written on the board; piece_kind is a python-chess piece type."""
    if piece_kind != chess.PAWN:
        return PromotionRequirement.NONE
    if color is Color.WHITE and source_rank == 7 and target_rank == 8:
        return PromotionRequirement.REQUIRED
    if color is Color.BLACK and source_rank == 2 and target_rank == 1:
        return PromotionRequirement.REQUIRED
    return PromotionRequirement.NONE


def piece_letter(choice: str | None) -> str:
    """
    Normalise the prompt's answer to the letter sent on the wire.
    A dismissed prompt or an answer that is not a promotion piece cancels the move.
    """
    if choice is None:
        raise UserCancelled("promotion cancelled")
    choice = choice.strip().lower()
    if choice in PROMOTION_PIECES:
        return PROMOTION_PIECES[choice]
    if choice in PROMOTION_PIECES.values():
        return choice
    raise UserCancelled(f"not a promotion piece: {choice!r}")
