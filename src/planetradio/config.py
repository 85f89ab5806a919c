import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from loguru import logger
from platformdirs import user_config_dir


@dataclass
class Settings:
    default_station: str = "pln"
    region: str = "GB"

    # Seconds to hold back now-playing updates after the first one, so the
    # display roughly follows the player's buffer.
    metadata_delay_seconds: float = 10.0

    player_preference: str = "auto"
    request_timeout: float = 20.0

    # Optional credentials for non-interactive login.
    # NOTE: Stored in plaintext in config.json.
    username: str = ""
    password: str = ""

    def credentials(self) -> tuple[str, str]:
        username = os.environ.get("PLANETRADIO_USERNAME") or self.username
        password = os.environ.get("PLANETRADIO_PASSWORD") or self.password
        return username, password


def config_path(config_dir: Optional[Path] = None) -> Path:
    cfg_dir = Path(config_dir) if config_dir else Path(user_config_dir("planetradio"))
    cfg_dir.mkdir(parents=True, exist_ok=True)
    return cfg_dir / "config.json"


def load_settings(config_dir: Optional[Path] = None) -> Settings:
    path = config_path(config_dir)
    if not path.exists():
        return Settings()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return Settings(**{k: v for k, v in raw.items() if k in Settings.__annotations__})
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning(f"Ignoring unreadable settings file {path}: {exc}")
        return Settings()


def save_settings(settings: Settings, config_dir: Optional[Path] = None) -> Path:
    path = config_path(config_dir)
    path.write_text(json.dumps(asdict(settings), indent=2) + "\n", encoding="utf-8")
    return path
