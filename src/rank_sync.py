from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from .discord_api import DiscordGateway
from .errors import PersistenceError, PlatformApiError
from .faceit import FaceitClient
from .models import LookupErrorKind, RankLookup, RankSyncReport, TrackedUser
from .storage import Database

logger = logging.getLogger("faceit-bot.rank-sync")

GAME_LABELS = {"cs2": "CS2", "csgo": "CS:GO"}
RANK_REASON = "Faceit level role"


@dataclass(slots=True)
class RoleChange:
    new_role_id: int | None
    revoked_role_id: int | None = None
    granted: bool = False
    grant_failed: bool = False
    revoke_failed: bool = False

    @property
    def failures(self) -> int:
        return int(self.grant_failed) + int(self.revoke_failed)


def describe_lookup_error(nickname: str, lookup: RankLookup) -> str:
    if lookup.error is LookupErrorKind.NOT_FOUND:
        return f'Faceit nickname "{nickname}" was not found. Make sure you entered your exact Faceit username.'
    if lookup.error is LookupErrorKind.NO_GAME_DATA:
        if lookup.game:
            return f"Your Faceit {GAME_LABELS.get(lookup.game, lookup.game)} level could not be determined."
        return "No CS2 or CS:GO data was found on your Faceit account."
    return f"Faceit API error: {lookup.error_message or 'unknown error'}. Please try again."


class RankSyncService:
    def __init__(self, db: Database, faceit: FaceitClient, gateway: DiscordGateway) -> None:
        self.db = db
        self.faceit = faceit
        self.gateway = gateway
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def _apply_level(
        self,
        guild_id: int,
        member_id: int,
        previous_role_id: int | None,
        level: int,
    ) -> RoleChange:
        config = self.db.get_guild_config(guild_id)
        change = RoleChange(new_role_id=config.role_for_level(level))

        if previous_role_id and previous_role_id != change.new_role_id:
            try:
                await self.gateway.revoke_role(guild_id, member_id, previous_role_id, reason=RANK_REASON)
                change.revoked_role_id = previous_role_id
            except PlatformApiError as exc:
                logger.error("Removing old rank role from %s in guild %s failed: %s", member_id, guild_id, exc)
                change.revoke_failed = True

        if change.new_role_id:
            try:
                await self.gateway.grant_role(guild_id, member_id, change.new_role_id, reason=RANK_REASON)
                change.granted = True
            except PlatformApiError as exc:
                logger.error("Granting rank role to %s in guild %s failed: %s", member_id, guild_id, exc)
                change.grant_failed = True
        else:
            logger.info("No role mapped for Faceit level %s in guild %s", level, guild_id)
        return change

    async def sync_user(self, user: TrackedUser, report: RankSyncReport) -> None:
        lookup = await self.faceit.lookup(user.faceit_nickname)
        if not lookup.ok:
            logger.warning(
                "Skipping %s in guild %s (%s): %s",
                user.discord_id,
                user.guild_id,
                user.faceit_nickname,
                lookup.error_message or (lookup.error.value if lookup.error else "no level"),
            )
            report.skipped += 1
            return

        if lookup.level == user.faceit_level:
            report.unchanged += 1
            return

        logger.info(
            "Faceit level of %s (%s) in guild %s changed: %s -> %s",
            user.discord_id,
            user.faceit_nickname,
            user.guild_id,
            user.faceit_level,
            lookup.level,
        )
        change = await self._apply_level(user.guild_id, user.discord_id, user.assigned_role_id, lookup.level)
        report.failed_role_ops += change.failures

        try:
            self.db.upsert_tracked_user(
                discord_id=user.discord_id,
                guild_id=user.guild_id,
                faceit_nickname=user.faceit_nickname,
                faceit_level=lookup.level,
                assigned_role_id=change.new_role_id,
            )
        except PersistenceError as exc:
            logger.error("Saving %s in guild %s failed: %s", user.discord_id, user.guild_id, exc)
            report.persist_failures += 1
        report.updated += 1

    async def run_pass(self) -> RankSyncReport | None:
        """Reconcile every tracked user once. Returns None if a pass is already running."""
        if self._lock.locked():
            logger.info("Rank sync pass already in progress, not starting another")
            return None

        async with self._lock:
            report = RankSyncReport()
            logger.info("Starting Faceit rank sync pass")
            try:
                users = self.db.list_tracked_users()
            except PersistenceError as exc:
                logger.error("Unable to load tracked users: %s", exc)
                return report

            report.total = len(users)
            for user in users:
                try:
                    await self.sync_user(user, report)
                except Exception:
                    logger.exception("Rank sync failed for %s in guild %s", user.discord_id, user.guild_id)
                    report.skipped += 1
            logger.info("Faceit rank sync pass finished: %s", report.summary())
            return report

    async def handle_faceit_interaction(self, nickname: str, guild_id: int, member_id: int) -> str:
        nickname = nickname.strip()
        if not nickname:
            return "Please enter your Faceit nickname."

        try:
            previous = self.db.get_tracked_user(guild_id, member_id)
        except PersistenceError as exc:
            logger.error("Unable to load tracked user %s in guild %s: %s", member_id, guild_id, exc)
            previous = None
        previous_role_id = previous.assigned_role_id if previous else None

        lookup = await self.faceit.lookup(nickname)
        level: int | None = None
        # A failed lookup keeps the last reconciled role so a later pass can still revoke it.
        assigned_role_id = previous_role_id

        if lookup.ok:
            level = lookup.level
            game = GAME_LABELS.get(lookup.game or "", "Faceit")
            try:
                change = await self._apply_level(guild_id, member_id, previous_role_id, lookup.level)
            except PersistenceError as exc:
                logger.error("Unable to load config for guild %s: %s", guild_id, exc)
                # The stored level must stay the one the stored role was reconciled for.
                level = previous.faceit_level if previous else None
                response = f"Your Faceit {game} level is {lookup.level}, but the server configuration could not be read."
            else:
                assigned_role_id = change.new_role_id
                if change.new_role_id is None:
                    response = f"Your Faceit {game} level is {level}, but no role is set up for this level."
                elif change.grant_failed:
                    response = f"Your Faceit {game} level is {level}, but assigning the role failed."
                else:
                    response = f"Your Faceit {game} level is {level} and the role <@&{change.new_role_id}> was assigned."
        else:
            response = describe_lookup_error(nickname, lookup)

        try:
            self.db.upsert_tracked_user(
                discord_id=member_id,
                guild_id=guild_id,
                faceit_nickname=nickname,
                faceit_level=level,
                assigned_role_id=assigned_role_id,
            )
        except PersistenceError as exc:
            logger.error("Saving Faceit request of %s in guild %s failed: %s", member_id, guild_id, exc)
            response += " However, your data could not be saved."
        return response
