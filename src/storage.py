from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
import sqlite3
from typing import Iterator

from .errors import PersistenceError
from .models import GuildConfig, RoleEmoji, TrackedUser

MIN_FACEIT_LEVEL = 1
MAX_FACEIT_LEVEL = 10


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _decode_json(payload: str | None, default: object) -> object:
    if not payload:
        return default
    try:
        return json.loads(payload)
    except (TypeError, json.JSONDecodeError):
        return default


def _decode_role_ids(payload: str | None) -> list[int]:
    raw = _decode_json(payload, [])
    if not isinstance(raw, list):
        return []
    role_ids: list[int] = []
    for value in raw:
        try:
            role_id = int(value)
        except (TypeError, ValueError):
            continue
        if role_id not in role_ids:
            role_ids.append(role_id)
    return role_ids


def _decode_emoji_mappings(payload: str | None) -> dict[int, RoleEmoji]:
    raw = _decode_json(payload, {})
    if not isinstance(raw, dict):
        return {}
    mappings: dict[int, RoleEmoji] = {}
    for key, value in raw.items():
        if not isinstance(value, dict) or not value.get("name"):
            continue
        try:
            role_id = int(key)
            emoji_id = int(value["id"]) if value.get("id") else None
        except (TypeError, ValueError):
            continue
        mappings[role_id] = RoleEmoji(id=emoji_id, name=str(value["name"]), animated=bool(value.get("animated")))
    return mappings


def _decode_level_roles(payload: str | None) -> dict[str, int]:
    raw = _decode_json(payload, {})
    if not isinstance(raw, dict):
        return {}
    level_roles: dict[str, int] = {}
    for key, value in raw.items():
        try:
            level_roles[str(int(key))] = int(value)
        except (TypeError, ValueError):
            continue
    return level_roles


def _encode_emoji_mappings(mappings: dict[int, RoleEmoji]) -> str:
    return json.dumps(
        {
            str(role_id): {"id": emoji.id, "name": emoji.name, "animated": emoji.animated}
            for role_id, emoji in mappings.items()
        }
    )


class Database:
    def __init__(self, path: str) -> None:
        self.conn = sqlite3.connect(path)
        self.conn.row_factory = sqlite3.Row
        self._create_schema()

    def _create_schema(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS guild_configs (
                    guild_id INTEGER PRIMARY KEY,
                    configurable_role_ids TEXT NOT NULL DEFAULT '[]',
                    role_emoji_mappings TEXT NOT NULL DEFAULT '{}',
                    faceit_level_roles TEXT NOT NULL DEFAULT '{}',
                    role_panel_channel_id INTEGER,
                    role_panel_message_id INTEGER,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS faceit_users (
                    discord_id INTEGER NOT NULL,
                    guild_id INTEGER NOT NULL,
                    faceit_nickname TEXT NOT NULL,
                    faceit_level INTEGER,
                    assigned_role_id INTEGER,
                    last_updated TEXT NOT NULL,
                    PRIMARY KEY (discord_id, guild_id)
                )
                """
            )
            self.conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_faceit_users_guild
                ON faceit_users(guild_id)
                """
            )

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise PersistenceError(f"{action}: {exc}") from exc

    def close(self) -> None:
        self.conn.close()

    # guild_configs

    def _row_to_guild_config(self, row: sqlite3.Row) -> GuildConfig:
        return GuildConfig(
            guild_id=row["guild_id"],
            configurable_role_ids=_decode_role_ids(row["configurable_role_ids"]),
            role_emoji_mappings=_decode_emoji_mappings(row["role_emoji_mappings"]),
            faceit_level_roles=_decode_level_roles(row["faceit_level_roles"]),
            role_panel_channel_id=row["role_panel_channel_id"] or None,
            role_panel_message_id=row["role_panel_message_id"] or None,
        )

    def get_guild_config(self, guild_id: int) -> GuildConfig:
        """Return the stored config, or an empty unsaved one for unknown guilds."""
        with self._guard(f"read guild config {guild_id}"):
            row = self.conn.execute(
                """
                SELECT guild_id, configurable_role_ids, role_emoji_mappings, faceit_level_roles,
                       role_panel_channel_id, role_panel_message_id
                FROM guild_configs
                WHERE guild_id = ?
                """,
                (guild_id,),
            ).fetchone()
        if row is None:
            return GuildConfig(guild_id=guild_id)
        return self._row_to_guild_config(row)

    def update_guild_config(
        self,
        guild_id: int,
        *,
        configurable_role_ids: list[int] | None = None,
        role_emoji_mappings: dict[int, RoleEmoji] | None = None,
        faceit_level_roles: dict[str, int] | None = None,
    ) -> GuildConfig:
        current = self.get_guild_config(guild_id)
        merged_role_ids = current.configurable_role_ids
        if configurable_role_ids is not None:
            merged_role_ids = list(dict.fromkeys(int(role_id) for role_id in configurable_role_ids))
        merged_emojis = role_emoji_mappings if role_emoji_mappings is not None else current.role_emoji_mappings
        merged_levels = faceit_level_roles if faceit_level_roles is not None else current.faceit_level_roles

        with self._guard(f"write guild config {guild_id}"), self.conn:
            self.conn.execute(
                """
                INSERT INTO guild_configs (
                    guild_id, configurable_role_ids, role_emoji_mappings, faceit_level_roles, updated_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    configurable_role_ids = excluded.configurable_role_ids,
                    role_emoji_mappings = excluded.role_emoji_mappings,
                    faceit_level_roles = excluded.faceit_level_roles,
                    updated_at = excluded.updated_at
                """,
                (
                    guild_id,
                    json.dumps(merged_role_ids),
                    _encode_emoji_mappings(merged_emojis),
                    json.dumps({str(level): int(role_id) for level, role_id in merged_levels.items()}),
                    utc_now_iso(),
                ),
            )
        return self.get_guild_config(guild_id)

    def set_configurable_roles(self, guild_id: int, role_ids: list[int]) -> GuildConfig:
        return self.update_guild_config(guild_id, configurable_role_ids=role_ids)

    def set_level_role(self, guild_id: int, level: int, role_id: int) -> GuildConfig:
        if level < MIN_FACEIT_LEVEL or level > MAX_FACEIT_LEVEL:
            raise ValueError(f"Faceit level must be between {MIN_FACEIT_LEVEL} and {MAX_FACEIT_LEVEL}.")
        level_roles = dict(self.get_guild_config(guild_id).faceit_level_roles)
        level_roles[str(level)] = role_id
        return self.update_guild_config(guild_id, faceit_level_roles=level_roles)

    def clear_level_role(self, guild_id: int, level: int) -> tuple[bool, GuildConfig]:
        level_roles = dict(self.get_guild_config(guild_id).faceit_level_roles)
        removed = level_roles.pop(str(level), None) is not None
        return removed, self.update_guild_config(guild_id, faceit_level_roles=level_roles)

    def set_role_emoji(self, guild_id: int, role_id: int, emoji: RoleEmoji) -> GuildConfig:
        mappings = dict(self.get_guild_config(guild_id).role_emoji_mappings)
        mappings[role_id] = emoji
        return self.update_guild_config(guild_id, role_emoji_mappings=mappings)

    def clear_role_emoji(self, guild_id: int, role_id: int) -> tuple[bool, GuildConfig]:
        mappings = dict(self.get_guild_config(guild_id).role_emoji_mappings)
        removed = mappings.pop(role_id, None) is not None
        return removed, self.update_guild_config(guild_id, role_emoji_mappings=mappings)

    def set_role_panel_message(self, guild_id: int, channel_id: int, message_id: int) -> GuildConfig:
        with self._guard(f"write role panel for guild {guild_id}"), self.conn:
            self.conn.execute(
                """
                INSERT INTO guild_configs (guild_id, role_panel_channel_id, role_panel_message_id, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    role_panel_channel_id = excluded.role_panel_channel_id,
                    role_panel_message_id = excluded.role_panel_message_id,
                    updated_at = excluded.updated_at
                """,
                (guild_id, channel_id, message_id, utc_now_iso()),
            )
        return self.get_guild_config(guild_id)

    # faceit_users

    def _row_to_tracked_user(self, row: sqlite3.Row) -> TrackedUser:
        return TrackedUser(
            discord_id=row["discord_id"],
            guild_id=row["guild_id"],
            faceit_nickname=row["faceit_nickname"],
            faceit_level=row["faceit_level"],
            assigned_role_id=row["assigned_role_id"],
            last_updated=row["last_updated"],
        )

    def get_tracked_user(self, guild_id: int, discord_id: int) -> TrackedUser | None:
        with self._guard(f"read tracked user {discord_id}@{guild_id}"):
            row = self.conn.execute(
                """
                SELECT discord_id, guild_id, faceit_nickname, faceit_level, assigned_role_id, last_updated
                FROM faceit_users
                WHERE guild_id = ? AND discord_id = ?
                """,
                (guild_id, discord_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_tracked_user(row)

    def list_tracked_users(self) -> list[TrackedUser]:
        with self._guard("list tracked users"):
            rows = self.conn.execute(
                """
                SELECT discord_id, guild_id, faceit_nickname, faceit_level, assigned_role_id, last_updated
                FROM faceit_users
                ORDER BY guild_id ASC, discord_id ASC
                """
            ).fetchall()
        return [self._row_to_tracked_user(row) for row in rows]

    def upsert_tracked_user(
        self,
        *,
        discord_id: int,
        guild_id: int,
        faceit_nickname: str,
        faceit_level: int | None,
        assigned_role_id: int | None,
    ) -> TrackedUser:
        now = utc_now_iso()
        with self._guard(f"write tracked user {discord_id}@{guild_id}"), self.conn:
            self.conn.execute(
                """
                INSERT INTO faceit_users (
                    discord_id, guild_id, faceit_nickname, faceit_level, assigned_role_id, last_updated
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(discord_id, guild_id) DO UPDATE SET
                    faceit_nickname = excluded.faceit_nickname,
                    faceit_level = excluded.faceit_level,
                    assigned_role_id = excluded.assigned_role_id,
                    last_updated = excluded.last_updated
                """,
                (discord_id, guild_id, faceit_nickname, faceit_level, assigned_role_id, now),
            )
        return TrackedUser(
            discord_id=discord_id,
            guild_id=guild_id,
            faceit_nickname=faceit_nickname,
            faceit_level=faceit_level,
            assigned_role_id=assigned_role_id,
            last_updated=now,
        )
