from __future__ import annotations

import logging
import re

import aiohttp
import discord
from discord import app_commands
from discord.ext import commands, tasks

from .config import Settings, load_settings
from .discord_api import DiscordGateway
from .errors import PersistenceError, PlatformApiError
from .faceit import FaceitClient
from .models import GuildConfig, PanelOption, PanelPayload
from .rank_sync import RankSyncService
from .role_panel import RolePanelService, build_panel_payload, parse_role_emoji
from .storage import MAX_FACEIT_LEVEL, MIN_FACEIT_LEVEL, Database


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("faceit-bot")

ROLE_SELECT_ID = "multi_role_select"
PERSONAL_ROLE_SELECT_ID = "multi_role_select_personal"
SHOW_MY_ROLES_ID = "select_roles_button"
FACEIT_REQUEST_ID = "faceit_role_request_button"
ROLE_ID_PATTERN = re.compile(r"\d{15,20}")


def _is_admin(interaction: discord.Interaction) -> bool:
    member = interaction.user if isinstance(interaction.user, discord.Member) else None
    return bool(member and member.guild_permissions.manage_guild)


def _member_role_ids(interaction: discord.Interaction) -> list[int] | None:
    if isinstance(interaction.user, discord.Member):
        return [role.id for role in interaction.user.roles]
    return None


def _to_select_option(option: PanelOption) -> discord.SelectOption:
    emoji = None
    if option.emoji is not None:
        emoji = discord.PartialEmoji(name=option.emoji.name, id=option.emoji.id, animated=option.emoji.animated)
    return discord.SelectOption(
        label=option.label[:100],
        value=option.value,
        default=option.default,
        emoji=emoji,
        description=option.description,
    )


def _format_config(config: GuildConfig) -> str:
    roles = " ".join(f"<@&{role_id}>" for role_id in config.configurable_role_ids) or "None"
    level_lines = [
        f"Level `{level}` → <@&{config.faceit_level_roles[str(level)]}>"
        for level in range(MIN_FACEIT_LEVEL, MAX_FACEIT_LEVEL + 1)
        if str(level) in config.faceit_level_roles
    ]
    panel = (
        f"https://discord.com/channels/{config.guild_id}/{config.role_panel_channel_id}/{config.role_panel_message_id}"
        if config.has_panel
        else "Not sent"
    )
    return (
        f"**Self-assignable roles:** {roles}\n"
        f"**Faceit level roles:**\n{chr(10).join(level_lines) or 'None'}\n"
        f"**Role panel:** {panel}"
    )


class RoleSelect(discord.ui.Select):
    def __init__(self, bot: FaceitRoleBot, payload: PanelPayload, *, custom_id: str) -> None:
        super().__init__(
            custom_id=custom_id,
            placeholder="Select roles",
            min_values=payload.min_values,
            max_values=payload.max_values,
            options=[_to_select_option(option) for option in payload.options],
            row=0,
        )
        self.bot = bot

    async def callback(self, interaction: discord.Interaction) -> None:
        await self.bot.handle_role_select(interaction, list(self.values))


class RolePanelView(discord.ui.View):
    def __init__(self, bot: FaceitRoleBot, payload: PanelPayload) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        self.add_item(RoleSelect(bot, payload, custom_id=ROLE_SELECT_ID))

    @discord.ui.button(label="Show my roles", style=discord.ButtonStyle.secondary, custom_id=SHOW_MY_ROLES_ID, row=1)
    async def show_my_roles(self, interaction: discord.Interaction, _: discord.ui.Button[RolePanelView]) -> None:
        await self.bot.handle_show_my_roles(interaction)


class PersonalRoleView(discord.ui.View):
    def __init__(self, bot: FaceitRoleBot, payload: PanelPayload) -> None:
        super().__init__(timeout=180)
        self.add_item(RoleSelect(bot, payload, custom_id=PERSONAL_ROLE_SELECT_ID))


class FaceitNicknameModal(discord.ui.Modal, title="Faceit nickname"):
    nickname = discord.ui.TextInput(
        label="Your Faceit nickname",
        placeholder="shroud",
        min_length=3,
        max_length=30,
        required=True,
    )

    def __init__(self, bot: FaceitRoleBot) -> None:
        super().__init__()
        self.bot = bot

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            message = await self.bot.rank_sync.handle_faceit_interaction(
                str(self.nickname.value),
                interaction.guild_id,
                interaction.user.id,
            )
        except Exception as exc:  # pragma: no cover - runtime guard
            logger.exception("Faceit role request failed: %s", exc)
            message = "Something went wrong while checking your Faceit level. Please try again."
        await interaction.followup.send(message, ephemeral=True)


class FaceitRequestView(discord.ui.View):
    def __init__(self, bot: FaceitRoleBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot

    @discord.ui.button(label="Request Faceit role", style=discord.ButtonStyle.primary, custom_id=FACEIT_REQUEST_ID)
    async def request_role(self, interaction: discord.Interaction, _: discord.ui.Button[FaceitRequestView]) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message("This only works inside a server.", ephemeral=True)
            return
        await interaction.response.send_modal(FaceitNicknameModal(self.bot))


class ConfigureRolesView(discord.ui.View):
    def __init__(self, bot: FaceitRoleBot, guild_id: int, channel_id: int) -> None:
        super().__init__(timeout=300)
        self.bot = bot
        self.guild_id = guild_id
        self.channel_id = channel_id

    @discord.ui.select(cls=discord.ui.RoleSelect, placeholder="Roles to offer in the panel", min_values=0, max_values=25)
    async def pick_roles(self, interaction: discord.Interaction, select: discord.ui.RoleSelect) -> None:
        await interaction.response.defer(ephemeral=True, thinking=False)
        role_ids = [role.id for role in select.values if not role.managed and not role.is_default()]
        self.stop()
        try:
            self.bot.db.set_configurable_roles(self.guild_id, role_ids)
        except PersistenceError as exc:
            logger.error("Saving configurable roles for guild %s failed: %s", self.guild_id, exc)
            await interaction.edit_original_response(
                content="The roles could not be saved. Please try again later.",
                view=None,
            )
            return
        result = await self.bot.role_panel.sync_panel(self.guild_id, self.channel_id, force=True)
        if result.ok:
            text = f"Role panel sent to <#{result.channel_id}> with `{len(role_ids)}` roles."
        else:
            text = f"Roles saved, but the panel could not be sent: {result.error}"
        await interaction.edit_original_response(content=text, view=None)


class FaceitRoleBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        super().__init__(command_prefix="!", intents=intents)

        self.settings = settings
        self.db = Database(path=settings.database_path)
        self.gateway = DiscordGateway(self)
        self.role_panel = RolePanelService(self.db, self.gateway, lambda payload: RolePanelView(self, payload))
        self.http_session: aiohttp.ClientSession | None = None
        self.rank_sync: RankSyncService | None = None
        self.rank_sync_loop = tasks.loop(hours=settings.rank_sync_interval_hours)(self._scheduled_rank_sync)
        self.rank_sync_loop.before_loop(self._wait_for_ready)

    async def setup_hook(self) -> None:
        self.http_session = aiohttp.ClientSession()
        faceit = FaceitClient(
            self.http_session,
            self.settings.faceit_api_key,
            base_url=self.settings.faceit_api_base,
            timeout_seconds=self.settings.faceit_timeout_seconds,
        )
        self.rank_sync = RankSyncService(self.db, faceit, self.gateway)

        self.add_view(RolePanelView(self, build_panel_payload([], GuildConfig(guild_id=0))))
        self.add_view(FaceitRequestView(self))

        register_commands(self)
        if self.settings.command_guild_id:
            guild = discord.Object(id=self.settings.command_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("Synced commands to guild %s", self.settings.command_guild_id)
        else:
            await self.tree.sync()
            logger.info("Synced global commands")

        self.rank_sync_loop.start()

    async def _wait_for_ready(self) -> None:
        await self.wait_until_ready()

    async def _scheduled_rank_sync(self) -> None:
        if self.rank_sync is None:
            return
        await self.rank_sync.run_pass()

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s)", self.user.name, self.user.id)

    async def handle_role_select(self, interaction: discord.Interaction, values: list[str]) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message("This only works inside a server.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=False)
        summary = await self.role_panel.handle_role_interaction(
            values,
            interaction.guild_id,
            interaction.user.id,
            _member_role_ids(interaction),
        )
        await interaction.followup.send(summary.message(), ephemeral=True)

    async def handle_show_my_roles(self, interaction: discord.Interaction) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message("This only works inside a server.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=False)
        try:
            payload = await self.role_panel.render(interaction.guild_id, _member_role_ids(interaction) or [])
        except (PersistenceError, PlatformApiError) as exc:
            logger.warning("Unable to render personal role picker in guild %s: %s", interaction.guild_id, exc)
            await interaction.followup.send("The role list is unavailable right now. Please try again.", ephemeral=True)
            return
        await interaction.followup.send(payload.content, view=PersonalRoleView(self, payload), ephemeral=True)

    async def close(self) -> None:
        self.rank_sync_loop.cancel()
        if self.http_session is not None and not self.http_session.closed:
            await self.http_session.close()
        self.db.close()
        await super().close()


def register_commands(bot: FaceitRoleBot) -> None:
    @bot.tree.error
    async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, PersistenceError):
            logger.error("Command %s could not reach the database: %s", interaction.command, original)
            text = "The bot's database is unavailable right now. Please try again later."
        else:
            logger.exception("Command %s failed", interaction.command, exc_info=original)
            text = "Something went wrong while running this command."
        if interaction.response.is_done():
            await interaction.followup.send(text, ephemeral=True)
        else:
            await interaction.response.send_message(text, ephemeral=True)

    @bot.tree.command(name="send-role-panel", description="Choose the self-assignable roles and send the role panel.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(
        channel="Channel for the role panel (defaults to this channel)",
        roles="Role mentions or ids to offer; leave empty to pick them from a list",
    )
    async def send_role_panel(
        interaction: discord.Interaction,
        channel: discord.TextChannel | None = None,
        roles: str | None = None,
    ) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        target_channel_id = channel.id if channel else interaction.channel_id
        if roles is None:
            await interaction.response.send_message(
                "Pick the roles to offer in the panel:",
                view=ConfigureRolesView(bot, interaction.guild_id, target_channel_id),
                ephemeral=True,
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=False)
        guild = interaction.guild
        role_ids = [int(raw) for raw in ROLE_ID_PATTERN.findall(roles)]
        if guild is not None:
            role_ids = [role_id for role_id in role_ids if guild.get_role(role_id) is not None]
        bot.db.set_configurable_roles(interaction.guild_id, role_ids)
        result = await bot.role_panel.sync_panel(interaction.guild_id, target_channel_id, force=True)
        if result.ok:
            await interaction.followup.send(
                f"Role panel sent to <#{result.channel_id}> with `{len(role_ids)}` roles.",
                ephemeral=True,
            )
        else:
            await interaction.followup.send(f"Roles saved, but the panel could not be sent: {result.error}", ephemeral=True)

    @bot.tree.command(name="refresh-role-panel", description="Update the existing role panel message.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def refresh_role_panel(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=False)
        result = await bot.role_panel.sync_panel(interaction.guild_id)
        if result.ok:
            await interaction.followup.send(f"Role panel {result.action} in <#{result.channel_id}>.", ephemeral=True)
        else:
            await interaction.followup.send(f"Role panel was not updated: {result.error}", ephemeral=True)

    @bot.tree.command(name="faceit-role-button", description="Post the button members use to request their Faceit role.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(channel="Channel for the button (defaults to this channel)")
    async def faceit_role_button(interaction: discord.Interaction, channel: discord.TextChannel | None = None) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=False)
        target = channel or interaction.channel
        try:
            await target.send("Click the button below to get a role for your Faceit level:", view=FaceitRequestView(bot))
        except discord.HTTPException as exc:
            logger.warning("Unable to post Faceit button in %s: %s", target, exc)
            await interaction.followup.send("I could not post in that channel.", ephemeral=True)
            return
        await interaction.followup.send(f"Faceit role button posted in {target.mention}.", ephemeral=True)

    @bot.tree.command(name="faceit-level-role", description="Map a Faceit level to a role.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(level="Faceit skill level", role="Role granted at this level")
    async def faceit_level_role(
        interaction: discord.Interaction,
        level: app_commands.Range[int, MIN_FACEIT_LEVEL, MAX_FACEIT_LEVEL],
        role: discord.Role,
    ) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        bot.db.set_level_role(interaction.guild_id, level, role.id)
        await interaction.response.send_message(f"Faceit level `{level}` now grants {role.mention}.", ephemeral=True)

    @bot.tree.command(name="faceit-level-role-clear", description="Remove the role mapped to a Faceit level.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(level="Faceit skill level")
    async def faceit_level_role_clear(
        interaction: discord.Interaction,
        level: app_commands.Range[int, MIN_FACEIT_LEVEL, MAX_FACEIT_LEVEL],
    ) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        removed, _ = bot.db.clear_level_role(interaction.guild_id, level)
        if removed:
            await interaction.response.send_message(f"Faceit level `{level}` no longer grants a role.", ephemeral=True)
        else:
            await interaction.response.send_message(f"Faceit level `{level}` had no role.", ephemeral=True)

    @bot.tree.command(name="role-emoji", description="Set the emoji shown next to a role in the role panel.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(role="Role in the panel", emoji="Unicode emoji or custom emoji")
    async def role_emoji(interaction: discord.Interaction, role: discord.Role, emoji: str) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        parsed = parse_role_emoji(emoji)
        if parsed is None:
            await interaction.response.send_message(
                "That is not a valid emoji. Use a single emoji or a custom emoji from this server.",
                ephemeral=True,
            )
            return
        await interaction.response.defer(ephemeral=True, thinking=False)
        config = bot.db.set_role_emoji(interaction.guild_id, role.id, parsed)
        shown = discord.PartialEmoji(name=parsed.name, id=parsed.id, animated=parsed.animated)
        text = f"{role.mention} now shows {shown} in the role panel."
        if config.has_panel:
            result = await bot.role_panel.sync_panel(interaction.guild_id)
            if not result.ok:
                text += f" The role panel was not updated: {result.error}"
        await interaction.followup.send(text, ephemeral=True)

    @bot.tree.command(name="role-emoji-clear", description="Remove the emoji shown next to a role.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(role="Role in the panel")
    async def role_emoji_clear(interaction: discord.Interaction, role: discord.Role) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=False)
        removed, config = bot.db.clear_role_emoji(interaction.guild_id, role.id)
        text = f"Emoji removed from {role.mention}." if removed else f"{role.mention} had no emoji."
        if removed and config.has_panel:
            result = await bot.role_panel.sync_panel(interaction.guild_id)
            if not result.ok:
                text += f" The role panel was not updated: {result.error}"
        await interaction.followup.send(text, ephemeral=True)

    @bot.tree.command(name="faceit-config", description="Show this server's role and Faceit configuration.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def faceit_config(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        config = bot.db.get_guild_config(interaction.guild_id)
        await interaction.response.send_message(
            _format_config(config),
            ephemeral=True,
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @bot.tree.command(name="faceit-status", description="Show the stored Faceit data of a member.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(member="Member to inspect (defaults to you)")
    async def faceit_status(interaction: discord.Interaction, member: discord.Member | None = None) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        target_id = member.id if member else interaction.user.id
        tracked = bot.db.get_tracked_user(interaction.guild_id, target_id)
        if tracked is None:
            await interaction.response.send_message(f"<@{target_id}> has never requested a Faceit role.", ephemeral=True)
            return
        level = f"`{tracked.faceit_level}`" if tracked.faceit_level is not None else "unresolved"
        role = f"<@&{tracked.assigned_role_id}>" if tracked.assigned_role_id else "None"
        await interaction.response.send_message(
            (
                f"<@{target_id}> | Faceit `{tracked.faceit_nickname}` | Level {level} | Role {role}\n"
                f"Last updated: `{tracked.last_updated}`"
            ),
            ephemeral=True,
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @bot.tree.command(name="faceit-sync", description="Re-check every tracked member's Faceit level now.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def faceit_sync(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await interaction.response.send_message("You do not have permission to run this command.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        report = await bot.rank_sync.run_pass()
        if report is None:
            await interaction.followup.send("A rank sync is already running.", ephemeral=True)
            return
        await interaction.followup.send(f"Faceit rank sync finished: {report.summary()}", ephemeral=True)


def main() -> None:
    settings = load_settings()
    bot = FaceitRoleBot(settings)
    bot.run(settings.discord_token)


if __name__ == "__main__":
    main()
