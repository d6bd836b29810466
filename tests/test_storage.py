from __future__ import annotations

import os
import tempfile
import unittest

from src.errors import PersistenceError
from src.models import RoleEmoji
from src.storage import Database


class StorageTests(unittest.TestCase):
    def setUp(self) -> None:
        fd, path = tempfile.mkstemp(prefix="faceit-bot-test-", suffix=".db")
        os.close(fd)
        self.db_path = path
        self.db = Database(path=path)

    def tearDown(self) -> None:
        self.db.close()
        try:
            os.remove(self.db_path)
        except FileNotFoundError:
            pass

    def test_unknown_guild_returns_empty_config(self) -> None:
        config = self.db.get_guild_config(42)
        self.assertEqual(config.guild_id, 42)
        self.assertEqual(config.configurable_role_ids, [])
        self.assertEqual(config.faceit_level_roles, {})
        self.assertFalse(config.has_panel)

    def test_update_guild_config_upserts_and_keeps_other_fields(self) -> None:
        self.db.set_configurable_roles(42, [3, 1, 3, 2])
        self.db.set_level_role(42, 5, 500)
        config = self.db.set_role_emoji(42, 1, RoleEmoji(id=99, name="fire", animated=True))

        self.assertEqual(config.configurable_role_ids, [3, 1, 2])
        self.assertEqual(config.faceit_level_roles, {"5": 500})
        self.assertEqual(config.role_emoji_mappings[1], RoleEmoji(id=99, name="fire", animated=True))
        self.assertEqual(config.role_for_level(5), 500)
        self.assertIsNone(config.role_for_level(6))

    def test_set_level_role_rejects_out_of_range_level(self) -> None:
        with self.assertRaises(ValueError):
            self.db.set_level_role(42, 11, 500)

    def test_clear_level_role_and_emoji(self) -> None:
        self.db.set_level_role(42, 5, 500)
        self.db.set_role_emoji(42, 1, RoleEmoji(id=None, name="🔥"))

        removed, config = self.db.clear_level_role(42, 5)
        self.assertTrue(removed)
        self.assertEqual(config.faceit_level_roles, {})
        removed_again, _ = self.db.clear_level_role(42, 5)
        self.assertFalse(removed_again)

        removed, config = self.db.clear_role_emoji(42, 1)
        self.assertTrue(removed)
        self.assertEqual(config.role_emoji_mappings, {})

    def test_role_panel_message_is_stored_with_channel(self) -> None:
        self.db.set_configurable_roles(42, [1])
        config = self.db.set_role_panel_message(42, channel_id=700, message_id=800)
        self.assertTrue(config.has_panel)
        self.assertEqual((config.role_panel_channel_id, config.role_panel_message_id), (700, 800))
        self.assertEqual(config.configurable_role_ids, [1])

        config = self.db.set_configurable_roles(42, [2])
        self.assertEqual(config.role_panel_message_id, 800)

    def test_role_panel_message_upserts_missing_guild(self) -> None:
        config = self.db.set_role_panel_message(43, channel_id=700, message_id=801)
        self.assertEqual(config.role_panel_message_id, 801)
        self.assertEqual(config.configurable_role_ids, [])

    def test_tracked_user_upsert_is_keyed_by_member_and_guild(self) -> None:
        self.db.upsert_tracked_user(discord_id=1, guild_id=42, faceit_nickname="s1mple", faceit_level=10, assigned_role_id=900)
        self.db.upsert_tracked_user(discord_id=1, guild_id=43, faceit_nickname="s1mple", faceit_level=None, assigned_role_id=None)
        updated = self.db.upsert_tracked_user(
            discord_id=1,
            guild_id=42,
            faceit_nickname="s1mple",
            faceit_level=9,
            assigned_role_id=901,
        )

        stored = self.db.get_tracked_user(42, 1)
        self.assertEqual(stored, updated)
        self.assertEqual(stored.faceit_level, 9)
        self.assertEqual(stored.assigned_role_id, 901)
        self.assertIsNone(self.db.get_tracked_user(43, 1).faceit_level)
        self.assertIsNone(self.db.get_tracked_user(44, 1))

    def test_list_tracked_users_has_stable_order(self) -> None:
        for guild_id, discord_id in [(43, 2), (42, 3), (42, 1)]:
            self.db.upsert_tracked_user(
                discord_id=discord_id,
                guild_id=guild_id,
                faceit_nickname=f"player{discord_id}",
                faceit_level=1,
                assigned_role_id=None,
            )
        users = self.db.list_tracked_users()
        self.assertEqual([(user.guild_id, user.discord_id) for user in users], [(42, 1), (42, 3), (43, 2)])

    def test_corrupt_json_columns_fall_back_to_empty(self) -> None:
        self.db.set_configurable_roles(42, [1])
        with self.db.conn:
            self.db.conn.execute(
                "UPDATE guild_configs SET configurable_role_ids = ?, faceit_level_roles = ? WHERE guild_id = ?",
                ("not json", '{"x": 1, "4": "400"}', 42),
            )
        config = self.db.get_guild_config(42)
        self.assertEqual(config.configurable_role_ids, [])
        self.assertEqual(config.faceit_level_roles, {"4": 400})

    def test_sqlite_errors_surface_as_persistence_errors(self) -> None:
        self.db.close()
        with self.assertRaises(PersistenceError):
            self.db.upsert_tracked_user(discord_id=1, guild_id=42, faceit_nickname="x", faceit_level=1, assigned_role_id=None)
        with self.assertRaises(PersistenceError):
            self.db.list_tracked_users()
        self.db = Database(path=self.db_path)


if __name__ == "__main__":
    unittest.main()
