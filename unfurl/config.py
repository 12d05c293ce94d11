import os
import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "unfurl-bot"


@dataclass(frozen=True)
class BotConfig:
    homeserver: str
    username: str
    password: str
    display_name: str = DEFAULT_DISPLAY_NAME
    room_ids: List[str] = field(default_factory=list)

    def allows_room(self, room_id: str) -> bool:
        return room_id in self.room_ids


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        logger.error("%s environment variable is not set", name)
        raise SystemExit(f"Missing {name}. Set the environment variable and restart the application.")
    return value


def _split_room_ids(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def load_config() -> BotConfig:
    """Build the bot configuration from the environment."""
    return BotConfig(
        homeserver=_require("MATRIX_HOMESERVER"),
        username=_require("MATRIX_USERNAME"),
        password=_require("MATRIX_PASSWORD"),
        display_name=os.getenv("MATRIX_DISPLAY_NAME") or DEFAULT_DISPLAY_NAME,
        room_ids=_split_room_ids(os.getenv("MATRIX_ROOM_IDS", "")),
    )
