from dataclasses import dataclass
import os

from dotenv import load_dotenv


DEFAULT_FACEIT_API_BASE = "https://open.faceit.com/data/v4"


@dataclass(frozen=True, slots=True)
class Settings:
    discord_token: str
    faceit_api_key: str
    database_path: str
    command_guild_id: int | None
    faceit_api_base: str
    faceit_timeout_seconds: float
    rank_sync_interval_hours: float


def load_settings() -> Settings:
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN in environment.")

    faceit_api_key = os.getenv("FACEIT_API_KEY", "").strip()
    if not faceit_api_key:
        raise RuntimeError("Missing FACEIT_API_KEY in environment.")

    database_path = os.getenv("SQLITE_PATH", "bot.db").strip() or "bot.db"

    guild_raw = os.getenv("COMMAND_GUILD_ID", "").strip()
    command_guild_id = int(guild_raw) if guild_raw else None

    faceit_api_base = os.getenv("FACEIT_API_BASE", "").strip().rstrip("/") or DEFAULT_FACEIT_API_BASE

    faceit_timeout_seconds = float(os.getenv("FACEIT_TIMEOUT_SECONDS", "10"))
    if faceit_timeout_seconds <= 0:
        raise RuntimeError("FACEIT_TIMEOUT_SECONDS must be positive.")

    rank_sync_interval_hours = float(os.getenv("RANK_SYNC_INTERVAL_HOURS", "24"))
    if rank_sync_interval_hours <= 0:
        raise RuntimeError("RANK_SYNC_INTERVAL_HOURS must be positive.")

    return Settings(
        discord_token=token,
        faceit_api_key=faceit_api_key,
        database_path=database_path,
        command_guild_id=command_guild_id,
        faceit_api_base=faceit_api_base,
        faceit_timeout_seconds=faceit_timeout_seconds,
        rank_sync_interval_hours=rank_sync_interval_hours,
    )
