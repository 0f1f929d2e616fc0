import asyncio
import io

import pytest
from rich.console import Console

from chessclient import cli
from chessclient.controller import SessionController
from chessclient.game_state import Color, RoomDescriptor, SessionMode
from chessclient.tests.conftest import AFTER_E4, START


@pytest.fixture
def console_view():
    return cli.ConsoleView(Console(file=io.StringIO(), width=120))


@pytest.fixture
def wired(console_view, transport, credentials, config):
    controller = SessionController(console_view, transport, credentials, config)
    console_view.controller = controller
    return controller, console_view


def output(view: cli.ConsoleView) -> list[str]:
    return view.console.file.getvalue().splitlines()


def test_render_from_white_side(console_view):
    console_view.render(START, None)
    lines = output(console_view)

    assert lines[0].startswith("8")
    assert "♜" in lines[0] and "♖" in lines[7]
    assert lines[7].startswith("1")
    assert " a  b  c  d  e  f  g  h " in lines[8]
    assert lines[9] == f"white to move · {START}"


def test_render_follows_assigned_colour_and_flip(wired):
    controller, view = wired
    controller.color = Color.BLACK
    assert view.orientation == "black"

    view.render(START, None)
    assert output(view)[0].startswith("1")
    assert " h  g  f  e  d  c  b  a " in output(view)[8]

    view.flipped = True
    assert view.orientation == "white"


def test_redraw_repeats_last_position(console_view):
    console_view.redraw()
    assert output(console_view) == []

    console_view.render(AFTER_E4, {"from": "e2", "to": "e4"})
    console_view.redraw()
    assert output(console_view).count(f"black to move · {AFTER_E4}") == 2


def test_lobby_and_notices(console_view):
    console_view.lobby(RoomDescriptor("R1", player_count=2, is_host=True, host_color="white", guest_ready=True))
    console_view.notify("Invalid move.", "warning")
    console_view.game_over("checkmate")
    console_view.mode_changed(SessionMode.ROOM_LOBBY)

    text = "\n".join(output(console_view))
    assert "Room R1" in text and "you are the host" in text and "guest ready" in text
    assert "Invalid move." in text
    assert "Game over: checkmate" in text
    assert "mode: room_lobby" in text


def test_promotion_prompt_treats_eof_as_cancel(console_view, monkeypatch):
    def eof(prompt=""):
        raise EOFError

    monkeypatch.setattr(console_view.console, "input", eof)
    assert console_view.prompt_promotion() is None

    monkeypatch.setattr(console_view.console, "input", lambda prompt="": "n")
    assert console_view.prompt_promotion() == "n"


def test_quit_and_help(wired):
    controller, view = wired

    async def scenario():
        assert await cli.handle_command(controller, view, "help")
        assert await cli.handle_command(controller, view, "   ")
        assert not await cli.handle_command(controller, view, "quit")

    asyncio.run(scenario())
    assert "register <username> <email> <password>" in "\n".join(output(view))


def test_unknown_command_is_reported(wired):
    controller, view = wired
    asyncio.run(cli.handle_command(controller, view, "dance now"))
    assert "Unknown command 'dance'" in output(view)[-1]


def test_bare_move_plays_against_the_bot(wired, authority):
    controller, view = wired

    async def scenario():
        await cli.handle_command(controller, view, "bot")
        await cli.handle_command(controller, view, "e2e4")

    asyncio.run(scenario())

    assert authority.bodies("/api/bot/move") == [
        {"currentFen": START, "playerMove": "e2e4", "promotionPiece": ""}
    ]
    assert controller.reconciler.confirmed == AFTER_E4
    assert output(view)[-1] == f"black to move · {AFTER_E4}"


def test_move_rejected_when_idle(wired, authority):
    controller, view = wired

    async def scenario():
        await cli.handle_command(controller, view, "move e2e4")
        await cli.handle_command(controller, view, "move zz")

    asyncio.run(scenario())

    lines = output(view)
    assert lines[-2] == "Move not allowed right now."
    assert lines[-1] == "not a move: 'zz'"
    assert authority.bodies("/api/bot/move") == []


def test_command_usage_messages(wired):
    controller, view = wired

    async def scenario():
        await cli.handle_command(controller, view, "join")
        await cli.handle_command(controller, view, "login someone")

    asyncio.run(scenario())
    assert output(view)[-2:] == ["usage: join <code>", "usage: login <email> <password>"]


def test_flags_override_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("CHESS_SERVER_URL", "http://from-env:9000")
    monkeypatch.delenv("CHESS_ALLOW_SPECTATORS", raising=False)
    monkeypatch.delenv("CHESS_RANKED_BYPASSES_LOBBY", raising=False)

    config = cli.build_config(cli.parse_args([]))
    assert config.base_url == "http://from-env:9000"
    assert config.allow_spectators and config.ranked_bypasses_lobby

    args = cli.parse_args(
        ["--server", "https://chess.example/", "--credentials", str(tmp_path / "tok"), "--no-spectators", "--lobby-for-ranked"]
    )
    config = cli.build_config(args)
    assert config.base_url == "https://chess.example"
    assert config.ws_base == "wss://chess.example"
    assert config.credential_path == tmp_path / "tok"
    assert not config.allow_spectators
    assert not config.ranked_bypasses_lobby
