"""Terminal front end: draws the board, reads commands, and drives a SessionController."""

import argparse
import asyncio
import logging
import os
from pathlib import Path

import chess
from rich.console import Console

from chessclient.config import ClientConfig
from chessclient.controller import SessionController
from chessclient.credentials import CredentialStore
from chessclient.game_state import Color, Move, RoomDescriptor, SessionMode
from chessclient.transport import TransportSession

_log = logging.getLogger(__name__)

GLYPHS = {
    chess.PAWN: {True: "♙", False: "♟"},
    chess.ROOK: {True: "♖", False: "♜"},
    chess.KNIGHT: {True: "♘", False: "♞"},
    chess.BISHOP: {True: "♗", False: "♝"},
    chess.QUEEN: {True: "♕", False: "♛"},
    chess.KING: {True: "♔", False: "♚"},
}
LEVEL_STYLES = {"info": "cyan", "warning": "yellow", "error": "red"}
FILES = "abcdefgh"

HELP = """\
login <email> <password>      register <username> <email> <password>
logout                        bot | host | join <code> | ranked | cancel
color <white|black|random>    ready | start
move <e2e4> (or just e2e4)    flip | reconnect | leave | quit"""


class ConsoleView:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.flipped = False
        self.controller: SessionController | None = None
        self._last: tuple[str, dict | None] | None = None

    @property
    def orientation(self) -> str:
        black = self.controller is not None and self.controller.color is Color.BLACK
        return "black" if black != self.flipped else "white"

    def render(self, fen: str, last_move: dict | None) -> None:
        self._last = (fen, last_move)
        board = chess.Board(fen)
        marked = set(last_move.values()) if last_move else set()
        files = FILES if self.orientation == "white" else FILES[::-1]
        ranks = range(8, 0, -1) if self.orientation == "white" else range(1, 9)

        for rank in ranks:
            row = [f"[dim]{rank}[/dim] "]
            for f_idx, file in enumerate(files):
                sq = f"{file}{rank}"
                piece = board.piece_at(chess.parse_square(sq))
                glyph = GLYPHS[piece.piece_type][piece.color] if piece else " "
                shade = "grey50" if (FILES.index(file) + rank) % 2 else "grey23"
                if sq in marked:
                    shade = "dark_goldenrod"
                row.append(f"[on {shade}] {glyph} [/on {shade}]")
            self.console.print("".join(row))
        self.console.print("   " + "".join(f" {f} " for f in files), style="dim")
        side = "white" if board.turn else "black"
        self.console.print(f"[dim]{side} to move · {fen}[/dim]")

    def redraw(self) -> None:
        if self._last is not None:
            self.render(*self._last)

    def notify(self, message: str, level: str = "info") -> None:
        style = LEVEL_STYLES.get(level, "cyan")
        self.console.print(f"[{style}]{message}[/{style}]")

    def game_over(self, game_status: str) -> None:
        self.console.print(f"[bold red]Game over: {game_status.replace('_', ' ')}[/bold red]")

    def lobby(self, room: RoomDescriptor) -> None:
        role = "host" if room.is_host else "guest"
        self.console.print(
            f"[cyan]Room {room.room_id}[/cyan] · you are the {role} · "
            f"players {room.player_count}/2 · host colour {room.host_color or 'unset'} · "
            f"guest {'ready' if room.guest_ready else 'not ready'}"
        )

    def mode_changed(self, mode: SessionMode) -> None:
        self.console.print(f"[dim]mode: {mode}[/dim]")

    def prompt_promotion(self) -> str | None:
        try:
            choice = self.console.input("Promote pawn to (Q, R, B, N)? ")
        except EOFError:
            return None
        return choice or None

    def redirect_to_login(self) -> None:
        self.console.print("[yellow]Log in with: login <email> <password>[/yellow]")


# ---- Commands ----
async def cmd_move(controller: SessionController, view: ConsoleView, args: list[str]) -> None:
    if len(args) != 1:
        view.notify("usage: move e2e4", "warning")
        return
    try:
        mv = Move.from_uci(args[0])
    except ValueError as exc:
        view.notify(str(exc), "warning")
        return
    if not await controller.propose_move(mv.from_square, mv.to_square, mv.promotion):
        view.notify("Move not allowed right now.", "warning")


async def cmd_flip(controller: SessionController, view: ConsoleView, args: list[str]) -> None:
    view.flipped = not view.flipped
    view.redraw()


async def cmd_join(controller: SessionController, view: ConsoleView, args: list[str]) -> None:
    if not args:
        view.notify("usage: join <code>", "warning")
        return
    await controller.join_room(args[0])


async def cmd_color(controller: SessionController, view: ConsoleView, args: list[str]) -> None:
    await controller.assign_color(args[0] if args else "")


async def cmd_login(controller: SessionController, view: ConsoleView, args: list[str]) -> None:
    if len(args) != 2:
        view.notify("usage: login <email> <password>", "warning")
        return
    await controller.login(*args)


async def cmd_register(controller: SessionController, view: ConsoleView, args: list[str]) -> None:
    if len(args) != 3:
        view.notify("usage: register <username> <email> <password>", "warning")
        return
    await controller.register(*args)


COMMANDS = {
    "move": cmd_move,
    "flip": cmd_flip,
    "join": cmd_join,
    "color": cmd_color,
    "login": cmd_login,
    "register": cmd_register,
    "bot": lambda c, v, a: c.start_bot(),
    "host": lambda c, v, a: c.host_room(),
    "ranked": lambda c, v, a: c.find_ranked(),
    "cancel": lambda c, v, a: c.cancel_ranked(),
    "ready": lambda c, v, a: c.toggle_ready(),
    "start": lambda c, v, a: c.start_game(),
    "reconnect": lambda c, v, a: c.reconnect(),
    "leave": lambda c, v, a: c.leave(),
    "logout": lambda c, v, a: c.logout(),
}


async def handle_command(controller: SessionController, view: ConsoleView, line: str) -> bool:
    """Run one command line. Returns False when the user asked to quit."""
    words = line.split()
    if not words:
        return True
    name, args = words[0].lower(), words[1:]
    if name in ("quit", "exit"):
        return False
    if name == "help":
        view.console.print(HELP)
        return True
    if name not in COMMANDS and len(name) in (4, 5):
        # bare move, e.g. "e2e4"
        name, args = "move", [name]

    command = COMMANDS.get(name)
    if command is None:
        view.notify(f"Unknown command {name!r}, try 'help'.", "warning")
        return True
    await command(controller, view, args)
    return True


async def repl(controller: SessionController, view: ConsoleView) -> None:
    runner = asyncio.create_task(controller.run())
    view.console.print(HELP)
    try:
        while True:
            try:
                line = await asyncio.to_thread(view.console.input, "[bold]> [/bold]")
            except EOFError:
                break
            if not await handle_command(controller, view, line):
                break
    finally:
        controller.stop()
        await runner
        await controller.shutdown()


def build_config(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig.from_env()
    if args.server:
        config.base_url = args.server.rstrip("/")
    if args.credentials:
        config.credential_path = Path(args.credentials)
    if args.no_spectators:
        config.allow_spectators = False
    if args.lobby_for_ranked:
        config.ranked_bypasses_lobby = False
    return config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chessclient", description="Play chess against a bot, a friend, or a ranked opponent.")
    parser.add_argument("--server", help="authority base URL (default: $CHESS_SERVER_URL or http://127.0.0.1:8000)")
    parser.add_argument("--credentials", help="file holding the session token")
    parser.add_argument("--log-level", default=os.environ.get("CHESS_LOG_LEVEL", "WARNING"))
    parser.add_argument("--no-spectators", action="store_true", help="leave rooms that seat you as a spectator")
    parser.add_argument("--lobby-for-ranked", action="store_true", help="show the lobby for ranked rooms too")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")
    config = build_config(args)

    async def _run() -> None:
        view = ConsoleView()
        controller = SessionController(view, TransportSession(config), CredentialStore(config.credential_path), config)
        view.controller = controller
        await repl(controller, view)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
