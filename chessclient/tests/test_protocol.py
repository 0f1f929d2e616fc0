import json

import pytest

from chessclient import protocol
from chessclient.errors import ProtocolError
from chessclient.game_state import Move
from chessclient.tests.conftest import START


def frame(action, payload=None) -> str:
    return json.dumps({"action": action, "payload": payload})


def test_decode_room_messages():
    msg = protocol.decode(frame("player_assigned", {"color": "black"}), protocol.ROOM_VOCABULARY)
    assert isinstance(msg, protocol.PlayerAssigned)
    assert msg.color == "black"

    msg = protocol.decode(frame("game_state", {"fen": START, "game_status": "checkmate"}), protocol.ROOM_VOCABULARY)
    assert isinstance(msg, protocol.GameState)
    assert (msg.fen, msg.game_status) == (START, "checkmate")

    msg = protocol.decode(frame("error", {"message": "not your turn"}), protocol.ROOM_VOCABULARY)
    assert isinstance(msg, protocol.ServerError)
    assert msg.message == "not your turn"


def test_decode_lobby_state_ignores_extra_fields():
    raw = frame(
        "lobby_state",
        {"game_type": "ranked", "is_host": True, "player_count": 2, "guest_ready": True, "colour_scheme": "x"},
    )
    msg = protocol.decode(raw, protocol.ROOM_VOCABULARY)
    assert isinstance(msg, protocol.LobbyState)
    assert msg.game_type == "ranked"
    assert msg.is_host and msg.guest_ready
    assert msg.player_count == 2
    assert msg.host_ready is False


def test_decode_ranked_messages():
    msg = protocol.decode(frame("match_found", {"roomID": "R1", "color": "white"}), protocol.RANKED_VOCABULARY)
    assert isinstance(msg, protocol.MatchFound)
    assert msg.room_id == "R1"
    assert msg.color == "white"

    msg = protocol.decode(frame("queue_status", {"message": "Waiting for opponent..."}), protocol.RANKED_VOCABULARY)
    assert isinstance(msg, protocol.QueueStatus)


def test_unknown_action_is_a_variant_not_an_error():
    msg = protocol.decode(frame("chat", {"text": "hi"}), protocol.ROOM_VOCABULARY)
    assert isinstance(msg, protocol.UnknownMessage)
    assert msg.action == "chat"

    # game_state is not part of the ranked channel's vocabulary
    msg = protocol.decode(frame("game_state", {"fen": START}), protocol.RANKED_VOCABULARY)
    assert isinstance(msg, protocol.UnknownMessage)


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps(["action", "payload"]),
        json.dumps({"payload": {}}),
        frame("game_state", {"game_status": "in_progress"}),
        frame("game_state", {"fen": ""}),
        frame("player_assigned", {}),
        frame("match_found", {"color": "white"}),
        frame("lobby_state", ["not", "an", "object"]),
    ],
)
def test_malformed_frames_raise_protocol_error(raw):
    vocabulary = protocol.RANKED_VOCABULARY if "match_found" in raw else protocol.ROOM_VOCABULARY
    with pytest.raises(ProtocolError):
        protocol.decode(raw, vocabulary)


def test_missing_payload_uses_defaults():
    msg = protocol.decode(json.dumps({"action": "error"}), protocol.ROOM_VOCABULARY)
    assert isinstance(msg, protocol.ServerError)
    assert msg.message == ""


def test_outbound_envelopes():
    assert json.loads(protocol.assign_color("random")) == {"action": "assign_color", "payload": {"color": "random"}}
    assert json.loads(protocol.player_ready()) == {"action": "player_ready", "payload": {}}
    assert json.loads(protocol.start_game()) == {"action": "start_game", "payload": {}}
    assert json.loads(protocol.move(Move("e7", "e8", "q"))) == {
        "action": "move",
        "payload": {"from": "e7", "to": "e8", "promotion": "q"},
    }
