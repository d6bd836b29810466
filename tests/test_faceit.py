from __future__ import annotations

import asyncio
import unittest

from fakes import FakeSession
from src.config import DEFAULT_FACEIT_API_BASE
from src.faceit import FaceitClient, parse_player
from src.models import LookupErrorKind


def _player(nickname: str, games: dict) -> dict:
    return {"player_id": "abc", "nickname": nickname, "games": games}


class ParsePlayerTests(unittest.TestCase):
    def test_prefers_cs2_level(self) -> None:
        result = parse_player(_player("s1mple", {"cs2": {"skill_level": 10}, "csgo": {"skill_level": 7}}))
        self.assertTrue(result.ok)
        self.assertEqual((result.level, result.game, result.nickname), (10, "cs2", "s1mple"))

    def test_falls_back_to_csgo_when_cs2_missing(self) -> None:
        result = parse_player(_player("olduser", {"csgo": {"skill_level": 4}}))
        self.assertEqual((result.level, result.game), (4, "csgo"))

    def test_cs2_without_level_is_no_game_data(self) -> None:
        result = parse_player(_player("newuser", {"cs2": {"region": "EU"}, "csgo": {"skill_level": 4}}))
        self.assertEqual(result.error, LookupErrorKind.NO_GAME_DATA)
        self.assertEqual(result.game, "cs2")
        self.assertIsNone(result.level)

    def test_no_supported_game_is_no_game_data(self) -> None:
        self.assertEqual(parse_player(_player("x", {"dota2": {"skill_level": 3}})).error, LookupErrorKind.NO_GAME_DATA)
        self.assertEqual(parse_player({"nickname": "x"}).error, LookupErrorKind.NO_GAME_DATA)

    def test_level_outside_usual_range_passes_through(self) -> None:
        self.assertEqual(parse_player(_player("x", {"cs2": {"skill_level": 0}})).level, 0)
        self.assertEqual(parse_player(_player("x", {"cs2": {"skill_level": 12}})).level, 12)

    def test_malformed_payloads_are_provider_errors(self) -> None:
        for payload in (None, [], {"games": []}, _player("x", {"cs2": "ten"}), _player("x", {"cs2": {"skill_level": "10"}})):
            with self.subTest(payload=payload):
                self.assertEqual(parse_player(payload).error, LookupErrorKind.PROVIDER_ERROR)


class FaceitClientTests(unittest.IsolatedAsyncioTestCase):
    def _client(self, responses: dict) -> tuple[FaceitClient, FakeSession]:
        session = FakeSession(responses)
        return FaceitClient(session, "key-123", base_url="https://faceit.test/v4/"), session

    async def test_exact_nickname_found(self) -> None:
        client, session = self._client({"Shroud": (200, _player("Shroud", {"cs2": {"skill_level": 8}}))})
        result = await client.lookup("  Shroud ")
        self.assertEqual(result.level, 8)
        self.assertEqual([request["params"]["nickname"] for request in session.requests], ["Shroud"])
        self.assertEqual(session.requests[0]["url"], "https://faceit.test/v4/players")
        self.assertEqual(session.requests[0]["headers"]["Authorization"], "Bearer key-123")

    async def test_lower_case_retry_after_not_found(self) -> None:
        client, session = self._client({"shroud": (200, _player("shroud", {"cs2": {"skill_level": 6}}))})
        result = await client.lookup("Shroud")
        self.assertTrue(result.ok)
        self.assertEqual(result.level, 6)
        self.assertEqual([request["params"]["nickname"] for request in session.requests], ["Shroud", "shroud"])

    async def test_not_found_after_retry(self) -> None:
        client, session = self._client({})
        result = await client.lookup("Nobody")
        self.assertEqual(result.error, LookupErrorKind.NOT_FOUND)
        self.assertIsNone(result.level)
        self.assertEqual(len(session.requests), 2)

    async def test_lower_case_nickname_is_not_retried(self) -> None:
        client, session = self._client({})
        result = await client.lookup("nobody")
        self.assertEqual(result.error, LookupErrorKind.NOT_FOUND)
        self.assertEqual(len(session.requests), 1)

    async def test_non_404_error_is_provider_error_with_message(self) -> None:
        client, _ = self._client({"Shroud": (503, {"message": "Service unavailable"})})
        result = await client.lookup("Shroud")
        self.assertEqual(result.error, LookupErrorKind.PROVIDER_ERROR)
        self.assertEqual(result.error_message, "Service unavailable")

    async def test_error_without_json_body(self) -> None:
        client, _ = self._client({"Shroud": (500, ValueError("not json"))})
        result = await client.lookup("Shroud")
        self.assertEqual(result.error, LookupErrorKind.PROVIDER_ERROR)
        self.assertEqual(result.error_message, "HTTP 500")

    async def test_timeout_is_provider_error(self) -> None:
        client, _ = self._client({"Shroud": asyncio.TimeoutError()})
        result = await client.lookup("Shroud")
        self.assertEqual(result.error, LookupErrorKind.PROVIDER_ERROR)
        self.assertIsNone(result.level)

    async def test_default_base_url_matches_settings_default(self) -> None:
        session = FakeSession({"Shroud": (200, _player("Shroud", {"cs2": {"skill_level": 8}}))})
        client = FaceitClient(session, "key-123")
        await client.lookup("Shroud")
        self.assertEqual(session.requests[0]["url"], f"{DEFAULT_FACEIT_API_BASE}/players")


if __name__ == "__main__":
    unittest.main()
