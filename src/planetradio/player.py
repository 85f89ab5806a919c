from __future__ import annotations

import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from planetradio.errors import PlanetRadioError


@dataclass
class PlayerCommand:
    argv: List[str]


def build_player_command(url: str, *, preference: str = "auto") -> Optional[PlayerCommand]:
    """Return a command that plays the given URL.

    Keep this simple: play the local relay stream.
    """
    pref = (preference or "auto").strip().lower()
    candidates = ["mpv", "ffplay"]
    if pref in candidates:
        candidates.remove(pref)
        candidates.insert(0, pref)

    for name in candidates:
        if not shutil.which(name):
            continue
        if name == "mpv":
            return PlayerCommand(argv=["mpv", "--no-terminal", "--msg-level=all=fatal", "--no-video", url])
        return PlayerCommand(argv=["ffplay", "-nodisp", "-loglevel", "error", url])
    return None


def run_player(cmd: PlayerCommand) -> subprocess.Popen:
    proc = subprocess.Popen(
        cmd.argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )

    # If the player dies immediately, surface the reason.
    time.sleep(0.6)
    rc = proc.poll()
    if rc is not None and rc != 0:
        _, err = proc.communicate(timeout=2)
        msg = (err or "").strip()
        msg = msg[-1200:] if len(msg) > 1200 else msg
        raise PlanetRadioError(f"Player exited immediately (code {rc}). {msg}")
    return proc


class PlayerCommandSink:
    """Command sink that plays the queued URL with a local mpv/ffplay.

    Understands the same commands the plugin sends to MPD:
    ``stop``, ``clear``, ``add "<url>"``, ``consume 1`` and ``play``.
    """

    def __init__(self, *, preference: str = "auto") -> None:
        self.preference = preference
        self.queue: List[str] = []
        self.process: Optional[subprocess.Popen] = None

    def send(self, command: str) -> None:
        parts = shlex.split(command)
        if not parts:
            return
        verb, args = parts[0], parts[1:]
        logger.debug(f"player command: {command}")
        if verb == "stop":
            self._terminate()
        elif verb == "clear":
            self.queue.clear()
        elif verb == "add" and args:
            self.queue.append(args[0])
        elif verb == "play":
            self._play()
        elif verb == "consume":
            pass
        else:
            logger.warning(f"Ignoring unsupported player command: {command}")

    def _play(self) -> None:
        if not self.queue:
            raise PlanetRadioError("Nothing queued to play")
        self._terminate()
        cmd = build_player_command(self.queue[0], preference=self.preference)
        if cmd is None:
            raise PlanetRadioError("No supported player found (install mpv or ffplay)")
        logger.info(f"player: {' '.join(cmd.argv)}")
        self.process = run_player(cmd)

    def _terminate(self) -> None:
        proc, self.process = self.process, None
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=3)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait(timeout=3)
