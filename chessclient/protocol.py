"""
Wire codec for the `{action, payload}` envelope.

Room and ranked-queue channels each have a closed inbound vocabulary. Decoding
maps a frame onto one payload model per action; an action outside the
vocabulary comes back as `UnknownMessage` so callers can ignore it, while a
frame that does not fit its action's shape raises `ProtocolError`.
"""

import json
import logging
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chessclient.errors import ProtocolError
from chessclient.game_state import IN_PROGRESS, Move

_log = logging.getLogger(__name__)


class Action(StrEnum):
    # room inbound
    PLAYER_ASSIGNED = "player_assigned"
    LOBBY_STATE = "lobby_state"
    GAME_STATE = "game_state"
    ERROR = "error"
    # room outbound
    ASSIGN_COLOR = "assign_color"
    PLAYER_READY = "player_ready"
    START_GAME = "start_game"
    MOVE = "move"
    # ranked inbound
    MATCH_FOUND = "match_found"
    QUEUE_STATUS = "queue_status"


class Inbound(BaseModel):
    """Base for decoded inbound payloads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    action: ClassVar[Action]


class PlayerAssigned(Inbound):
    action = Action.PLAYER_ASSIGNED

    color: str


class LobbyState(Inbound):
    action = Action.LOBBY_STATE

    player_count: int = 0
    is_host: bool = False
    guest_ready: bool = False
    host_ready: bool = False
    host_color: str | None = None
    game_type: str = "casual"
    game_state: str = "waiting"


class GameState(Inbound):
    action = Action.GAME_STATE

    fen: str = Field(min_length=1)
    game_status: str = IN_PROGRESS


class ServerError(Inbound):
    action = Action.ERROR

    message: str = ""


class MatchFound(Inbound):
    action = Action.MATCH_FOUND

    room_id: str = Field(alias="roomID", min_length=1)
    color: str | None = None


class QueueStatus(Inbound):
    action = Action.QUEUE_STATUS

    message: str = ""
    status: str | None = None


class UnknownMessage(BaseModel):
    """Any action outside the channel's vocabulary."""

    action: str
    payload: Any = None


ROOM_VOCABULARY: dict[str, type[Inbound]] = {
    model.action: model for model in (PlayerAssigned, LobbyState, GameState, ServerError)
}
RANKED_VOCABULARY: dict[str, type[Inbound]] = {
    model.action: model for model in (MatchFound, QueueStatus, ServerError)
}


def decode(raw: str | bytes, vocabulary: dict[str, type[Inbound]]) -> Inbound | UnknownMessage:
    """Parse one frame against a channel vocabulary. Raises ProtocolError on a malformed frame."""
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"frame is not JSON: {exc}") from exc

    if not isinstance(envelope, dict) or not isinstance(envelope.get("action"), str):
        raise ProtocolError("frame is not an {action, payload} envelope")

    action = envelope["action"]
    payload = envelope.get("payload")
    model = vocabulary.get(action)
    if model is None:
        _log.debug("unknown action %r", action)
        return UnknownMessage(action=action, payload=payload)

    try:
        return model.model_validate(payload if payload is not None else {})
    except ValidationError as exc:
        raise ProtocolError(f"bad {action} payload: {exc.error_count()} error(s)") from exc


def encode(action: Action, payload: dict | None = None) -> str:
    return json.dumps({"action": str(action), "payload": payload or {}})


# ---- Outbound room messages ----
def assign_color(color: str) -> str:
    return encode(Action.ASSIGN_COLOR, {"color": color})


def player_ready() -> str:
    return encode(Action.PLAYER_READY)


def start_game() -> str:
    return encode(Action.START_GAME)


def move(mv: Move) -> str:
    return encode(Action.MOVE, mv.to_payload())
