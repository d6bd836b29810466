from __future__ import annotations

import logging
from typing import Any, Callable, Iterable
import unicodedata

import discord

from .discord_api import DiscordGateway
from .errors import PersistenceError, PlatformApiError, UnknownMessageError
from .models import (
    MAX_SELECT_OPTIONS,
    GuildConfig,
    PanelOption,
    PanelPayload,
    PanelSyncResult,
    RoleEmoji,
    RoleInfo,
    SelectionSummary,
)
from .storage import Database

logger = logging.getLogger("faceit-bot.role-panel")

PANEL_CONTENT = "Pick the roles you want:"
PLACEHOLDER_VALUE = "no_roles"
PLACEHOLDER_LABEL = "No roles configured"
PLACEHOLDER_DESCRIPTION = "Ask a server admin to configure the self-assignable roles."
SELECTION_REASON = "Role panel selection"

ZERO_WIDTH_JOINER = "\u200d"
KEYCAP_EMOJIS = frozenset(f"{base}{selector}\u20e3" for base in "0123456789#*" for selector in ("", "\ufe0f"))
REGIONAL_INDICATORS = range(0x1F1E6, 0x1F200)


def _is_single_unicode_emoji(text: str) -> bool:
    # Joined sequences count as one emoji; each joined part needs one pictograph or one flag pair.
    if text in KEYCAP_EMOJIS:
        return True
    for segment in text.split(ZERO_WIDTH_JOINER):
        pictographs = flags = 0
        for char in segment:
            if char.isascii():
                return False
            if ord(char) in REGIONAL_INDICATORS:
                flags += 1
            elif unicodedata.category(char) == "So":
                pictographs += 1
            elif unicodedata.category(char) not in {"Sk", "Mn", "Me", "Cf"}:
                return False
        if (pictographs, flags) not in {(1, 0), (0, 2)}:
            return False
    return True


def parse_role_emoji(text: str) -> RoleEmoji | None:
    """Parse a custom emoji mention or a single unicode emoji.

    Anything else returns None, since select options only accept real emoji.
    """
    text = text.strip()
    if not text:
        return None
    parsed = discord.PartialEmoji.from_str(text)
    if parsed.id is not None:
        return RoleEmoji(id=parsed.id, name=parsed.name, animated=parsed.animated)
    if _is_single_unicode_emoji(text):
        return RoleEmoji(id=None, name=text)
    return None


def build_panel_options(
    roles: list[RoleInfo],
    config: GuildConfig,
    member_role_ids: Iterable[int] = (),
) -> list[PanelOption]:
    held = set(member_role_ids)
    options = [
        PanelOption(
            label=role.name,
            value=str(role.id),
            default=role.id in held,
            emoji=config.role_emoji_mappings.get(role.id),
        )
        for role in roles
    ]
    if len(options) > MAX_SELECT_OPTIONS:
        logger.warning(
            "Guild %s has %s configurable roles, only the first %s fit in the panel",
            config.guild_id,
            len(options),
            MAX_SELECT_OPTIONS,
        )
        options = options[:MAX_SELECT_OPTIONS]
    if not options:
        options = [
            PanelOption(
                label=PLACEHOLDER_LABEL,
                value=PLACEHOLDER_VALUE,
                default=True,
                description=PLACEHOLDER_DESCRIPTION,
            )
        ]
    return options


def build_panel_payload(
    roles: list[RoleInfo],
    config: GuildConfig,
    member_role_ids: Iterable[int] = (),
) -> PanelPayload:
    options = build_panel_options(roles, config, member_role_ids)
    return PanelPayload(
        content=PANEL_CONTENT,
        options=options,
        min_values=0,
        max_values=max(1, len(options)),
    )


def parse_selection(values: Iterable[str]) -> set[int]:
    selected: set[int] = set()
    for value in values:
        if value == PLACEHOLDER_VALUE:
            continue
        try:
            selected.add(int(value))
        except (TypeError, ValueError):
            logger.debug("Ignoring non-role selection value %r", value)
    return selected


class RolePanelService:
    def __init__(
        self,
        db: Database,
        gateway: DiscordGateway,
        view_factory: Callable[[PanelPayload], Any],
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.view_factory = view_factory

    async def fetch_roles_info(self, guild_id: int, config: GuildConfig | None = None) -> list[RoleInfo]:
        """Resolve the configured role ids to live roles, in configured order."""
        if config is None:
            config = self.db.get_guild_config(guild_id)
        if not config.configurable_role_ids:
            return []
        live_roles = {role.id: role for role in await self.gateway.fetch_guild_roles(guild_id)}
        missing = [role_id for role_id in config.configurable_role_ids if role_id not in live_roles]
        if missing:
            logger.warning("Guild %s has configured roles that no longer exist: %s", guild_id, missing)
        return [live_roles[role_id] for role_id in config.configurable_role_ids if role_id in live_roles]

    async def render(self, guild_id: int, member_role_ids: Iterable[int] = ()) -> PanelPayload:
        config = self.db.get_guild_config(guild_id)
        roles = await self.fetch_roles_info(guild_id, config)
        return build_panel_payload(roles, config, member_role_ids)

    async def sync_panel(self, guild_id: int, channel_id: int | None = None, *, force: bool = False) -> PanelSyncResult:
        try:
            config = self.db.get_guild_config(guild_id)
        except PersistenceError as exc:
            logger.error("Unable to load config for guild %s: %s", guild_id, exc)
            return PanelSyncResult(action="failed", error=str(exc))

        target_channel_id = channel_id or config.role_panel_channel_id
        if not target_channel_id:
            logger.warning("Guild %s has no role panel channel configured", guild_id)
            return PanelSyncResult(action="skipped", error="no role panel channel configured")

        try:
            roles = await self.fetch_roles_info(guild_id, config)
        except PlatformApiError as exc:
            logger.warning("Unable to fetch roles for guild %s: %s", guild_id, exc)
            return PanelSyncResult(action="failed", channel_id=target_channel_id, error=str(exc))

        payload = build_panel_payload(roles, config)
        view = self.view_factory(payload)
        stored_message_id = config.role_panel_message_id
        same_channel = config.role_panel_channel_id == target_channel_id

        action = "created"
        if stored_message_id and same_channel and not force:
            try:
                await self.gateway.edit_message(target_channel_id, stored_message_id, payload.content, view)
                logger.info("Updated role panel %s in guild %s", stored_message_id, guild_id)
                return PanelSyncResult(action="edited", channel_id=target_channel_id, message_id=stored_message_id)
            except UnknownMessageError:
                logger.info("Role panel %s in guild %s is gone, sending a new one", stored_message_id, guild_id)
                action = "recreated"
                stored_message_id = None
            except PlatformApiError as exc:
                logger.warning("Unable to update role panel in guild %s: %s", guild_id, exc)
                return PanelSyncResult(
                    action="failed",
                    channel_id=target_channel_id,
                    message_id=stored_message_id,
                    error=str(exc),
                )

        try:
            message_id = await self.gateway.send_message(target_channel_id, payload.content, view)
        except PlatformApiError as exc:
            logger.warning("Unable to send role panel in guild %s: %s", guild_id, exc)
            return PanelSyncResult(action="failed", channel_id=target_channel_id, error=str(exc))
        logger.info("Sent role panel %s to channel %s in guild %s", message_id, target_channel_id, guild_id)

        result = PanelSyncResult(action=action, channel_id=target_channel_id, message_id=message_id)
        try:
            self.db.set_role_panel_message(guild_id, target_channel_id, message_id)
        except PersistenceError as exc:
            logger.error("Unable to store role panel %s for guild %s: %s", message_id, guild_id, exc)
            result.error = str(exc)

        if stored_message_id and config.role_panel_channel_id:
            try:
                await self.gateway.delete_message(config.role_panel_channel_id, stored_message_id)
            except PlatformApiError as exc:
                logger.info("Old role panel %s in guild %s was not deleted: %s", stored_message_id, guild_id, exc)
        return result

    async def handle_role_interaction(
        self,
        selection: Iterable[str],
        guild_id: int,
        member_id: int,
        member_role_ids: Iterable[int] | None = None,
    ) -> SelectionSummary:
        """Grant selected configurable roles and revoke the unselected ones.

        Roles outside the guild's configurable set are never touched. When the
        member's current roles are unknown every configurable role gets an
        explicit grant or revoke, both of which are idempotent on the platform.
        """
        summary = SelectionSummary()
        wanted = parse_selection(selection)
        try:
            configurable = self.db.get_guild_config(guild_id).configurable_role_ids
        except PersistenceError as exc:
            logger.error("Unable to load config for guild %s: %s", guild_id, exc)
            summary.failed.extend(sorted(wanted))
            return summary

        held: set[int] | None
        if member_role_ids is not None:
            held = set(member_role_ids)
        else:
            try:
                held = await self.gateway.fetch_member_role_ids(guild_id, member_id)
            except PlatformApiError as exc:
                logger.warning("Unable to read roles of member %s in guild %s: %s", member_id, guild_id, exc)
                held = None

        for role_id in configurable:
            if role_id in wanted:
                if held is not None and role_id in held:
                    summary.unchanged.append(role_id)
                    continue
                try:
                    await self.gateway.grant_role(guild_id, member_id, role_id, reason=SELECTION_REASON)
                    summary.granted.append(role_id)
                except PlatformApiError as exc:
                    logger.warning("Role grant failed in guild %s: %s", guild_id, exc)
                    summary.failed.append(role_id)
            else:
                if held is not None and role_id not in held:
                    summary.unchanged.append(role_id)
                    continue
                try:
                    await self.gateway.revoke_role(guild_id, member_id, role_id, reason=SELECTION_REASON)
                    summary.revoked.append(role_id)
                except PlatformApiError as exc:
                    logger.warning("Role revoke failed in guild %s: %s", guild_id, exc)
                    summary.failed.append(role_id)

        logger.info(
            "Applied role selection for %s in guild %s: +%s -%s failed=%s",
            member_id,
            guild_id,
            summary.granted,
            summary.revoked,
            summary.failed,
        )
        return summary
