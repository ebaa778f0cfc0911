import os
import stat
import tempfile
import unittest
from pathlib import Path


class TestConfig(unittest.TestCase):
    def _with_home(self, fn) -> None:
        old_home = os.environ.get("LYMEBRIDGE_HOME")
        try:
            with tempfile.TemporaryDirectory() as td:
                os.environ["LYMEBRIDGE_HOME"] = td
                fn(Path(td))
        finally:
            if old_home is None:
                os.environ.pop("LYMEBRIDGE_HOME", None)
            else:
                os.environ["LYMEBRIDGE_HOME"] = old_home

    def test_paths_follow_home_env(self) -> None:
        from lymebridge.paths import config_path, pid_path

        def check(home: Path) -> None:
            self.assertEqual(config_path(), home.resolve() / "config.yaml")
            self.assertEqual(pid_path(), home.resolve() / "daemon.pid")

        self._with_home(check)

    def test_save_and_load_roundtrip(self) -> None:
        from lymebridge.config import create_default, load_config, save_config

        def check(home: Path) -> None:
            cfg = create_default("+15551234567")
            path = save_config(cfg)
            self.assertTrue(path.exists())
            self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o600)

            loaded = load_config()
            self.assertEqual(loaded.socket_path, "/tmp/lymebridge.sock")
            self.assertEqual(loaded.enabled_channel_ids(), ["imessage"])
            self.assertEqual(loaded.imessage.apple_id, "+15551234567")
            self.assertIsNone(loaded.telegram)

        self._with_home(check)

    def test_missing_or_invalid_file(self) -> None:
        from lymebridge.config import ConfigError, load_config

        def check(home: Path) -> None:
            with self.assertRaises(ConfigError):
                load_config()
            (home / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config()
            (home / "config.yaml").write_text("channels: [oops\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config()

        self._with_home(check)

    def test_from_dict_defaults_and_flags(self) -> None:
        from lymebridge.config import Config

        cfg = Config.from_dict(
            {
                "log_level": "debug",
                "channels": {
                    "imessage": {"enabled": "no", "apple_id": "me@example.com"},
                    "telegram": {"enabled": "yes", "bot_token": "1:abc", "chat_id": 42},
                },
            }
        )
        self.assertEqual(cfg.socket_path, "/tmp/lymebridge.sock")
        self.assertEqual(cfg.log_level, "debug")
        self.assertFalse(cfg.is_imessage_enabled)
        self.assertTrue(cfg.is_telegram_enabled)
        self.assertEqual(cfg.telegram.chat_id, "42")
        self.assertEqual(cfg.enabled_channel_ids(), ["telegram"])

        self.assertEqual(Config.from_dict({}).enabled_channel_ids(), [])

    def test_telegram_token_resolution(self) -> None:
        from lymebridge.config import TelegramConfig

        old = os.environ.get("LB_TEST_TOKEN")
        try:
            os.environ["LB_TEST_TOKEN"] = "9:from-env"
            self.assertEqual(TelegramConfig(bot_token="1:lit", bot_token_env="LB_TEST_TOKEN").resolve_token(), "9:from-env")
            os.environ.pop("LB_TEST_TOKEN")
            self.assertEqual(TelegramConfig(bot_token="1:lit", bot_token_env="LB_TEST_TOKEN").resolve_token(), "1:lit")
            # Raw token pasted into the env-name field.
            self.assertEqual(TelegramConfig(bot_token_env="123:raw-token").resolve_token(), "123:raw-token")
        finally:
            if old is None:
                os.environ.pop("LB_TEST_TOKEN", None)
            else:
                os.environ["LB_TEST_TOKEN"] = old

    def test_create_with_telegram(self) -> None:
        from lymebridge.config import create_with_telegram

        cfg = create_with_telegram("1:abc", "42")
        self.assertEqual(cfg.enabled_channel_ids(), ["telegram"])
        self.assertEqual(cfg.to_dict()["channels"]["telegram"]["chat_id"], "42")


if __name__ == "__main__":
    unittest.main()
