from __future__ import annotations

import unittest
from unittest import mock

import discord

from src.discord_api import DiscordGateway
from src.errors import PlatformApiError, UnknownMessageError

CHANNEL_ID = 700
MESSAGE_ID = 900


def _http_error(cls: type[discord.HTTPException], status: int, code: int, text: str) -> discord.HTTPException:
    response = mock.Mock(status=status, reason=text)
    return cls(response, {"code": code, "message": text})


class StubClient:
    def __init__(self, channel) -> None:
        self.channel = channel
        self.http = mock.Mock()

    def get_channel(self, channel_id: int):
        return self.channel if channel_id == CHANNEL_ID else None

    async def fetch_channel(self, channel_id: int):
        raise _http_error(discord.NotFound, 404, 10003, "Unknown Channel")


class DiscordGatewayTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.channel = mock.MagicMock(spec=discord.TextChannel)
        self.edit = mock.AsyncMock()
        self.channel.get_partial_message.return_value.edit = self.edit
        self.gateway = DiscordGateway(StubClient(self.channel))

    async def test_edit_passes_content_and_view(self) -> None:
        view = object()
        await self.gateway.edit_message(CHANNEL_ID, MESSAGE_ID, "panel", view)
        self.channel.get_partial_message.assert_called_once_with(MESSAGE_ID)
        self.edit.assert_awaited_once_with(content="panel", view=view)

    async def test_deleted_message_raises_unknown_message(self) -> None:
        self.edit.side_effect = _http_error(discord.NotFound, 404, 10008, "Unknown Message")

        with self.assertRaises(UnknownMessageError) as caught:
            await self.gateway.edit_message(CHANNEL_ID, MESSAGE_ID, "panel", None)

        self.assertEqual(caught.exception.code, 10008)

    async def test_other_not_found_codes_stay_generic(self) -> None:
        self.edit.side_effect = _http_error(discord.NotFound, 404, 10003, "Unknown Channel")

        with self.assertRaises(PlatformApiError) as caught:
            await self.gateway.edit_message(CHANNEL_ID, MESSAGE_ID, "panel", None)

        self.assertNotIsInstance(caught.exception, UnknownMessageError)
        self.assertEqual(caught.exception.code, 10003)

    async def test_forbidden_edit_is_platform_error(self) -> None:
        self.edit.side_effect = _http_error(discord.Forbidden, 403, 50001, "Missing Access")

        with self.assertRaises(PlatformApiError) as caught:
            await self.gateway.edit_message(CHANNEL_ID, MESSAGE_ID, "panel", None)

        self.assertNotIsInstance(caught.exception, UnknownMessageError)
        self.assertIn("Missing Access", str(caught.exception))

    async def test_unreachable_channel_is_platform_error(self) -> None:
        with self.assertRaises(PlatformApiError) as caught:
            await self.gateway.edit_message(CHANNEL_ID + 1, MESSAGE_ID, "panel", None)

        self.assertNotIsInstance(caught.exception, UnknownMessageError)
        self.edit.assert_not_awaited()

    async def test_role_grant_failure_is_platform_error(self) -> None:
        self.gateway.client.http.add_role = mock.AsyncMock(
            side_effect=_http_error(discord.Forbidden, 403, 50013, "Missing Permissions")
        )

        with self.assertRaises(PlatformApiError) as caught:
            await self.gateway.grant_role(42, 5, 101, reason="test")

        self.assertEqual(caught.exception.code, 50013)


if __name__ == "__main__":
    unittest.main()
