import sqlite3
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

APPLE_ID = "+15551234567"


def _make_store(path: Path) -> sqlite3.Connection:
    db = sqlite3.connect(str(path))
    db.executescript(
        """
        CREATE TABLE message (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, text TEXT, is_from_me INTEGER);
        CREATE TABLE chat (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, chat_identifier TEXT);
        CREATE TABLE chat_message_join (chat_id INTEGER, message_id INTEGER);
        """
    )
    db.execute("INSERT INTO chat (chat_identifier) VALUES (?)", (APPLE_ID,))
    db.execute("INSERT INTO chat (chat_identifier) VALUES (?)", ("someone@else.com",))
    db.commit()
    return db


def _add(db: sqlite3.Connection, text, *, from_me: int = 1, chat: int = 1) -> int:
    cur = db.execute("INSERT INTO message (text, is_from_me) VALUES (?, ?)", (text, from_me))
    rowid = int(cur.lastrowid)
    db.execute("INSERT INTO chat_message_join (chat_id, message_id) VALUES (?, ?)", (chat, rowid))
    db.commit()
    return rowid


class TestIMessageAdapter(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.db_path = Path(self._td.name) / "chat.db"
        self.writer = _make_store(self.db_path)

    def tearDown(self) -> None:
        self.writer.close()
        self._td.cleanup()

    def _adapter(self):
        from lymebridge.channels.imessage import IMessageAdapter

        # Long debounce: the test drives checks itself.
        a = IMessageAdapter(apple_id=APPLE_ID, db_path=self.db_path, debounce=60.0)
        got = []
        a.on_message = got.append
        return a, got

    def test_start_skips_history(self) -> None:
        old = _add(self.writer, "old message")
        a, got = self._adapter()
        a.start()
        try:
            self.assertTrue(a.is_running)
            self.assertEqual(a.last_rowid, old)
            self.assertEqual(a.check_for_new_messages(), [])
        finally:
            a.stop()
        self.assertEqual(got, [])

    def test_new_rows_filtered_and_emitted(self) -> None:
        a, got = self._adapter()
        a.start()
        try:
            _add(self.writer, "@work1 build it")
            _add(self.writer, "incoming from contact", from_me=0)
            _add(self.writer, "to someone else", chat=2)
            _add(self.writer, "[work1] done")
            _add(self.writer, "")
            last = _add(self.writer, "second")

            self.assertEqual(a.check_for_new_messages(), ["@work1 build it", "second"])
            self.assertEqual(a.last_rowid, last)
            self.assertEqual(a.check_for_new_messages(), [])
        finally:
            a.stop()
        self.assertEqual([(m.channel_id, m.text, m.sender) for m in got], [("imessage", "@work1 build it", APPLE_ID), ("imessage", "second", APPLE_ID)])

    def test_start_requires_contact_and_database(self) -> None:
        from lymebridge.channels.base import ChannelStartError
        from lymebridge.channels.imessage import IMessageAdapter

        with self.assertRaises(ChannelStartError):
            IMessageAdapter(apple_id="", db_path=self.db_path).start()
        with self.assertRaises(ChannelStartError):
            IMessageAdapter(apple_id=APPLE_ID, db_path=Path(self._td.name) / "missing.db").start()

    def test_send_runs_osascript(self) -> None:
        a, _ = self._adapter()
        ok = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        with mock.patch("lymebridge.channels.imessage.subprocess.run", return_value=ok) as run:
            self.assertTrue(a.send('[work1] said "hi"', ""))
        argv = run.call_args[0][0]
        self.assertEqual(argv[:2], ["osascript", "-e"])
        self.assertIn(f'participant "{APPLE_ID}"', argv[2])
        self.assertIn('send "[work1] said \\"hi\\""', argv[2])
        self.assertEqual(run.call_args[1]["timeout"], 10.0)

    def test_send_failures_return_false(self) -> None:
        a, _ = self._adapter()
        bad = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="execution error")
        with mock.patch("lymebridge.channels.imessage.subprocess.run", return_value=bad):
            self.assertFalse(a.send("hi", APPLE_ID))
        with mock.patch(
            "lymebridge.channels.imessage.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="osascript", timeout=10),
        ):
            self.assertFalse(a.send("hi", APPLE_ID))
        with mock.patch("lymebridge.channels.imessage.subprocess.run", side_effect=FileNotFoundError("osascript")):
            self.assertFalse(a.send("hi", APPLE_ID))

    def test_debounce_collapses_bursts(self) -> None:
        from lymebridge.channels.imessage import IMessageAdapter

        a = IMessageAdapter(apple_id=APPLE_ID, db_path=self.db_path, debounce=0.05)
        with mock.patch.object(a, "check_for_new_messages", return_value=[]) as check:
            for _ in range(5):
                a.schedule_check()
            timer = a._timer
            self.assertIsNotNone(timer)
            timer.join(timeout=2.0)
        self.assertEqual(check.call_count, 1)


class TestAppleScript(unittest.TestCase):
    def test_escape(self) -> None:
        from lymebridge.channels.imessage import escape_applescript

        self.assertEqual(escape_applescript('a\\b"c\nd'), 'a\\\\b\\"c\\nd')


if __name__ == "__main__":
    unittest.main()
