from __future__ import annotations

import logging

import discord

from .errors import UNKNOWN_MESSAGE_CODE, PlatformApiError, UnknownMessageError
from .models import RoleInfo

logger = logging.getLogger("faceit-bot.discord")

ROLE_ICON_URL = "https://cdn.discordapp.com/role-icons/{role_id}/{icon}.png"


def _api_error(operation: str, exc: discord.HTTPException) -> PlatformApiError:
    return PlatformApiError(operation, f"HTTP {exc.status} ({exc.code}): {exc.text}", code=exc.code)


class DiscordGateway:
    """Thin wrapper over the member-role, message and role-metadata endpoints.

    Every failure leaves as a PlatformApiError so callers never need to know
    about discord.py exception types.
    """

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def grant_role(self, guild_id: int, member_id: int, role_id: int, *, reason: str | None = None) -> None:
        try:
            await self.client.http.add_role(guild_id, member_id, role_id, reason=reason)
        except discord.HTTPException as exc:
            raise _api_error(f"grant role {role_id} to {member_id}", exc) from exc

    async def revoke_role(self, guild_id: int, member_id: int, role_id: int, *, reason: str | None = None) -> None:
        try:
            await self.client.http.remove_role(guild_id, member_id, role_id, reason=reason)
        except discord.HTTPException as exc:
            raise _api_error(f"revoke role {role_id} from {member_id}", exc) from exc

    async def fetch_member_role_ids(self, guild_id: int, member_id: int) -> set[int]:
        guild = self.client.get_guild(guild_id)
        member = guild.get_member(member_id) if guild else None
        if member is not None:
            return {role.id for role in member.roles}
        try:
            data = await self.client.http.get_member(guild_id, member_id)
        except discord.HTTPException as exc:
            raise _api_error(f"fetch member {member_id}", exc) from exc
        return {int(role_id) for role_id in data.get("roles", [])}

    async def fetch_guild_roles(self, guild_id: int) -> list[RoleInfo]:
        guild = self.client.get_guild(guild_id)
        if guild is not None and guild.roles:
            return [
                RoleInfo(id=role.id, name=role.name, icon=role.icon.url if role.icon else None)
                for role in guild.roles
            ]
        try:
            payload = await self.client.http.get_roles(guild_id)
        except discord.HTTPException as exc:
            raise _api_error(f"fetch roles of guild {guild_id}", exc) from exc
        roles: list[RoleInfo] = []
        for data in payload:
            role_id = int(data["id"])
            icon = data.get("icon")
            roles.append(
                RoleInfo(
                    id=role_id,
                    name=str(data.get("name", role_id)),
                    icon=ROLE_ICON_URL.format(role_id=role_id, icon=icon) if icon else None,
                )
            )
        return roles

    async def _resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except discord.HTTPException as exc:
                raise _api_error(f"fetch channel {channel_id}", exc) from exc
        if not isinstance(channel, (discord.TextChannel, discord.Thread)):
            raise PlatformApiError(f"resolve channel {channel_id}", "not a text channel")
        return channel

    async def send_message(self, channel_id: int, content: str, view: discord.ui.View) -> int:
        channel = await self._resolve_channel(channel_id)
        try:
            message = await channel.send(content=content, view=view)
        except discord.HTTPException as exc:
            raise _api_error(f"send message to {channel_id}", exc) from exc
        return message.id

    async def edit_message(self, channel_id: int, message_id: int, content: str, view: discord.ui.View) -> None:
        channel = await self._resolve_channel(channel_id)
        try:
            await channel.get_partial_message(message_id).edit(content=content, view=view)
        except discord.NotFound as exc:
            if exc.code == UNKNOWN_MESSAGE_CODE:
                raise UnknownMessageError(f"edit message {message_id}", "unknown message", code=exc.code) from exc
            raise _api_error(f"edit message {message_id}", exc) from exc
        except discord.HTTPException as exc:
            raise _api_error(f"edit message {message_id}", exc) from exc

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        channel = await self._resolve_channel(channel_id)
        try:
            await channel.get_partial_message(message_id).delete()
        except discord.HTTPException as exc:
            raise _api_error(f"delete message {message_id}", exc) from exc
