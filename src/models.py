from dataclasses import dataclass, field
from enum import Enum


MAX_SELECT_OPTIONS = 25


class LookupErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    NO_GAME_DATA = "no_game_data"
    PROVIDER_ERROR = "provider_error"


@dataclass(slots=True)
class RoleEmoji:
    id: int | None
    name: str
    animated: bool = False


@dataclass(slots=True)
class GuildConfig:
    guild_id: int
    configurable_role_ids: list[int] = field(default_factory=list)
    role_emoji_mappings: dict[int, RoleEmoji] = field(default_factory=dict)
    faceit_level_roles: dict[str, int] = field(default_factory=dict)
    role_panel_channel_id: int | None = None
    role_panel_message_id: int | None = None

    @property
    def has_panel(self) -> bool:
        return bool(self.role_panel_channel_id and self.role_panel_message_id)

    def role_for_level(self, level: int | None) -> int | None:
        if level is None:
            return None
        return self.faceit_level_roles.get(str(level))


@dataclass(slots=True)
class TrackedUser:
    discord_id: int
    guild_id: int
    faceit_nickname: str
    faceit_level: int | None
    assigned_role_id: int | None
    last_updated: str | None = None


@dataclass(slots=True)
class RoleInfo:
    id: int
    name: str
    icon: str | None = None


@dataclass(slots=True)
class RankLookup:
    level: int | None
    error: LookupErrorKind | None = None
    game: str | None = None
    nickname: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.level is not None


@dataclass(slots=True)
class PanelOption:
    label: str
    value: str
    default: bool = False
    emoji: RoleEmoji | None = None
    description: str | None = None


@dataclass(slots=True)
class PanelPayload:
    content: str
    options: list[PanelOption]
    min_values: int
    max_values: int


@dataclass(slots=True)
class PanelSyncResult:
    action: str  # "created" | "edited" | "recreated" | "failed" | "skipped"
    channel_id: int | None = None
    message_id: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.action in {"created", "edited", "recreated"}


@dataclass(slots=True)
class SelectionSummary:
    granted: list[int] = field(default_factory=list)
    revoked: list[int] = field(default_factory=list)
    unchanged: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def message(self) -> str:
        if not self.granted and not self.revoked and not self.failed:
            return "Your roles are already up to date."
        parts: list[str] = []
        if self.granted:
            parts.append("Added: " + ", ".join(f"<@&{role_id}>" for role_id in self.granted))
        if self.revoked:
            parts.append("Removed: " + ", ".join(f"<@&{role_id}>" for role_id in self.revoked))
        if self.failed:
            parts.append("Could not update: " + ", ".join(f"<@&{role_id}>" for role_id in self.failed))
        return "\n".join(parts)


@dataclass(slots=True)
class RankSyncReport:
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed_role_ops: int = 0
    persist_failures: int = 0

    def summary(self) -> str:
        return (
            f"checked `{self.total}`, updated `{self.updated}`, unchanged `{self.unchanged}`, "
            f"skipped `{self.skipped}`, role errors `{self.failed_role_ops}`, "
            f"save errors `{self.persist_failures}`"
        )
