import argparse
import getpass
import threading
from typing import Any, Dict, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

import planetradio
from planetradio.api.client import ListenApiClient
from planetradio.auth.account import PlanetRadioAccountAuth
from planetradio.config import Settings, load_settings, save_settings
from planetradio.errors import PlanetRadioError
from planetradio.logging_setup import setup_logging
from planetradio.player import PlayerCommandSink
from planetradio.session import AuthSession
from planetradio.signing import AuthenticatedUrlBuilder
from planetradio.stations import StationResolver
from planetradio.usecases.live import PlaybackController


console = Console()


class ConsoleStateSink:
    def __init__(self) -> None:
        self._last: Optional[tuple] = None

    def push_state(self, state: Dict[str, Any]) -> None:
        key = (state.get("status"), state.get("title"), state.get("artist"))
        if key == self._last:
            return
        self._last = key
        if state.get("status") == "play":
            console.print(f"[bold]{state.get('title') or '-'}[/bold] - {state.get('artist') or '-'}")


def build_controller(settings: Settings, *, player_sink=None, state_sink=None) -> PlaybackController:
    client = ListenApiClient(region=settings.region, timeout=settings.request_timeout)
    controller = PlaybackController(
        client=client,
        auth=AuthSession(PlanetRadioAccountAuth(timeout=settings.request_timeout)),
        resolver=StationResolver(client, root_code=settings.default_station),
        url_builder=AuthenticatedUrlBuilder(region=settings.region),
        commands=player_sink or PlayerCommandSink(preference=settings.player_preference),
        states=state_sink or ConsoleStateSink(),
        metadata_delay_seconds=settings.metadata_delay_seconds,
    )
    controller.set_credentials(*settings.credentials())
    return controller


def cmd_stations(settings: Settings, args: argparse.Namespace) -> int:
    client = ListenApiClient(region=settings.region, timeout=settings.request_timeout)
    stations = StationResolver(client, root_code=settings.default_station).list_stations()
    table = Table(title="Planet Radio stations")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Tagline")
    for st in stations:
        table.add_row(st.code, st.display_name, st.tagline or "")
    console.print(table)
    return 0


def cmd_login(settings: Settings, args: argparse.Namespace) -> int:
    username = args.username or input("Email: ").strip()
    password = getpass.getpass("Password: ")
    user_id = AuthSession(PlanetRadioAccountAuth(timeout=settings.request_timeout)).authenticate(username, password)
    settings.username = username
    settings.password = password
    path = save_settings(settings)
    console.print(f"Logged in as listener {user_id}; credentials saved to {path}")
    return 0


def cmd_play(settings: Settings, args: argparse.Namespace) -> int:
    controller = build_controller(settings)
    code = args.station or settings.default_station
    handle = controller.play(code, progress=lambda msg: console.print(f"[dim]{msg}[/dim]"))
    console.print(f"Relay: {handle.local_url} (Ctrl-C to stop)")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        controller.stop()
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(prog="planetradio")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--version", action="store_true")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("stations", help="list the stations of the brand")

    p_login = sub.add_parser("login", help="check and store account credentials")
    p_login.add_argument("--username")

    p_play = sub.add_parser("play", help="relay a station to a local player")
    p_play.add_argument("station", nargs="?")

    args = parser.parse_args(argv)

    if args.version:
        print(f"planetradio {planetradio.__version__} ({planetradio.__file__})")
        return 0

    setup_logging("DEBUG" if args.debug else "WARNING")
    settings = load_settings()

    handlers = {"stations": cmd_stations, "login": cmd_login, "play": cmd_play}
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return handler(settings, args)
    except PlanetRadioError as exc:
        logger.debug(f"{args.command} failed: {exc!r}")
        console.print(f"[red]error:[/red] {exc}")
        return 1
