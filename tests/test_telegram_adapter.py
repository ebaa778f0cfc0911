import unittest
from unittest import mock


def _update(update_id: int, chat_id, text):
    return {"update_id": update_id, "message": {"chat": {"id": chat_id}, "text": text}}


class TestTelegramAdapter(unittest.TestCase):
    def _adapter(self):
        from lymebridge.channels.telegram import TelegramAdapter

        a = TelegramAdapter(bot_token="123:abc", chat_id="42")
        got = []
        a.on_message = got.append
        return a, got

    def test_start_rejects_bad_token_and_missing_chat(self) -> None:
        from lymebridge.channels.base import ChannelStartError
        from lymebridge.channels.telegram import TelegramAdapter

        with self.assertRaises(ChannelStartError):
            TelegramAdapter(bot_token="nocolon", chat_id="42").start()
        with self.assertRaises(ChannelStartError):
            TelegramAdapter(bot_token="1:abc", chat_id="").start()

    def test_start_fails_when_get_me_fails(self) -> None:
        from lymebridge.channels.base import ChannelStartError

        a, _ = self._adapter()
        with mock.patch.object(a, "_api", return_value={"ok": False, "error": "Unauthorized"}):
            with self.assertRaises(ChannelStartError):
                a.start()
        self.assertFalse(a.is_running)

    def test_start_and_stop_poll_thread(self) -> None:
        a, _ = self._adapter()
        a.poll_interval = 0.01

        def fake_api(method, params=None, timeout=10.0):
            if method == "getMe":
                return {"ok": True, "result": {"username": "bridge_bot"}}
            return {"ok": True, "result": []}

        with mock.patch.object(a, "_api", side_effect=fake_api):
            a.start()
            self.assertTrue(a.is_running)
            a.stop()
        self.assertFalse(a.is_running)

    def test_poll_filters_chat_and_echoes(self) -> None:
        a, got = self._adapter()
        result = {
            "ok": True,
            "result": [
                _update(10, 42, "hello"),
                _update(11, 99, "other chat"),
                _update(12, 42, "[work1] echoed reply"),
                {"update_id": 13, "message": {"chat": {"id": 42}, "photo": []}},
                _update(14, "42", "@work1 do it"),
            ],
        }
        with mock.patch.object(a, "_api", return_value=result) as api:
            delivered = a.poll_once()
        self.assertEqual(delivered, ["hello", "@work1 do it"])
        self.assertEqual([(m.channel_id, m.text, m.sender) for m in got], [("telegram", "hello", "42"), ("telegram", "@work1 do it", "42")])
        self.assertEqual(api.call_args[0][0], "getUpdates")
        self.assertEqual(api.call_args[0][1]["offset"], 0)

        with mock.patch.object(a, "_api", return_value={"ok": True, "result": []}) as api:
            a.poll_once()
        self.assertEqual(api.call_args[0][1]["offset"], 15)

    def test_poll_api_failure_delivers_nothing(self) -> None:
        a, got = self._adapter()
        with mock.patch.object(a, "_api", return_value={"ok": False, "error": "timeout"}):
            self.assertEqual(a.poll_once(), [])
        self.assertEqual(got, [])

    def test_send_truncates_and_defaults_recipient(self) -> None:
        from lymebridge.channels.telegram import TELEGRAM_MAX_MESSAGE_LENGTH

        a, _ = self._adapter()
        with mock.patch.object(a, "_api", return_value={"ok": True}) as api:
            self.assertTrue(a.send("x" * 5000, ""))
        method, params = api.call_args[0][0], api.call_args[0][1]
        self.assertEqual(method, "sendMessage")
        self.assertEqual(params["chat_id"], "42")
        self.assertEqual(len(params["text"]), TELEGRAM_MAX_MESSAGE_LENGTH)

    def test_send_retries_once(self) -> None:
        a, _ = self._adapter()
        with mock.patch("lymebridge.channels.telegram.time.sleep"):
            with mock.patch.object(a, "_api", side_effect=[{"ok": False}, {"ok": True}]) as api:
                self.assertTrue(a.send("hi", "42"))
            self.assertEqual(api.call_count, 2)

            a._rate_limiter.last_send.clear()
            with mock.patch.object(a, "_api", return_value={"ok": False}) as api:
                self.assertFalse(a.send("hi", "42"))
            self.assertEqual(api.call_count, 2)

    def test_api_never_raises(self) -> None:
        a, _ = self._adapter()
        with mock.patch("urllib.request.urlopen", side_effect=OSError("network down")):
            resp = a._api("getMe")
        self.assertFalse(resp["ok"])
        self.assertIn("network down", resp["error"])


class TestRateLimiter(unittest.TestCase):
    def test_acquire_spacing(self) -> None:
        from lymebridge.channels.telegram import RateLimiter

        rl = RateLimiter(max_per_second=1.0)
        self.assertEqual(rl.acquire("42"), 0.0)
        self.assertGreater(rl.acquire("42"), 0.0)
        self.assertEqual(rl.acquire("other"), 0.0)


if __name__ == "__main__":
    unittest.main()
