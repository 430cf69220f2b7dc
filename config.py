# config.py
import os
from pathlib import Path
from typing import Set

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path, override=True)


def _parse_id_list(raw: str) -> Set[int]:
    return {int(part) for part in raw.replace(" ", "").split(",") if part}


DISCORD_TOKEN = os.getenv("DISCORD_TOKEN", "")
GUILD_ID = int(os.getenv("GUILD_ID", "0"))
DATA_FILE = os.getenv("DATA_FILE", "data.db")
ADMIN_USER_IDS = _parse_id_list(os.getenv("ADMIN_USER_IDS", ""))
SUMMARY_LIMIT = int(os.getenv("SUMMARY_LIMIT", "10"))
MAX_SESSION_SECONDS = int(os.getenv("MAX_SESSION_SECONDS", "0"))  # 0 = no cap
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

if not DISCORD_TOKEN:
    raise SystemExit("Set the DISCORD_TOKEN environment variable (.env is supported).")
