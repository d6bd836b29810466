from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .config import DEFAULT_FACEIT_API_BASE
from .models import LookupErrorKind, RankLookup

logger = logging.getLogger("faceit-bot.faceit")

PRIMARY_GAME = "cs2"
LEGACY_GAME = "csgo"
SUPPORTED_GAMES = (PRIMARY_GAME, LEGACY_GAME)


def _provider_error(message: str) -> RankLookup:
    return RankLookup(level=None, error=LookupErrorKind.PROVIDER_ERROR, error_message=message)


def parse_player(payload: Any) -> RankLookup:
    """Extract the skill level from a Faceit player record.

    CS2 wins when present; CS:GO is only used when the profile has no CS2
    entry at all. Levels are passed through as-is.
    """
    if not isinstance(payload, dict):
        return _provider_error("player payload is not an object")

    nickname = payload.get("nickname") if isinstance(payload.get("nickname"), str) else None
    games = payload.get("games")
    if games is None:
        return RankLookup(level=None, error=LookupErrorKind.NO_GAME_DATA, nickname=nickname)
    if not isinstance(games, dict):
        return _provider_error("player games field is not an object")

    for game in SUPPORTED_GAMES:
        game_data = games.get(game)
        if game_data is None:
            continue
        if not isinstance(game_data, dict):
            return _provider_error(f"{game} entry is not an object")
        level = game_data.get("skill_level")
        if level is None:
            return RankLookup(level=None, error=LookupErrorKind.NO_GAME_DATA, game=game, nickname=nickname)
        if isinstance(level, bool) or not isinstance(level, int):
            return _provider_error(f"{game} skill_level is not an integer")
        return RankLookup(level=level, game=game, nickname=nickname)

    return RankLookup(level=None, error=LookupErrorKind.NO_GAME_DATA, nickname=nickname)


class FaceitClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        *,
        base_url: str = DEFAULT_FACEIT_API_BASE,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.session = session
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _get_player(self, nickname: str) -> tuple[int, Any]:
        async with self.session.get(
            f"{self.base_url}/players",
            params={"nickname": nickname},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        ) as response:
            try:
                payload = await response.json(content_type=None)
            except ValueError:
                payload = None
            return response.status, payload

    async def lookup(self, nickname: str) -> RankLookup:
        nickname = nickname.strip()
        try:
            status, payload = await self._get_player(nickname)
            if status == 404 and nickname.lower() != nickname:
                logger.info("Faceit nickname %r not found, retrying lower-case", nickname)
                status, payload = await self._get_player(nickname.lower())
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Faceit request for %r failed: %s", nickname, exc)
            return _provider_error(str(exc) or exc.__class__.__name__)

        if status == 404:
            return RankLookup(level=None, error=LookupErrorKind.NOT_FOUND)
        if status < 200 or status >= 300:
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.warning("Faceit API returned HTTP %s for %r: %s", status, nickname, message)
            return _provider_error(str(message) if message else f"HTTP {status}")
        return parse_player(payload)
