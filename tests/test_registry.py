import socket
import unittest


class TestSessionRegistry(unittest.TestCase):
    def setUp(self) -> None:
        self._socks = []

    def tearDown(self) -> None:
        for s in self._socks:
            s.close()

    def _session(self):
        from lymebridge.daemon.session import Session

        a, b = socket.socketpair()
        self._socks.extend([a, b])
        return Session(a)

    def test_register_promotes_and_sets_most_recent(self) -> None:
        from lymebridge.daemon.registry import SessionRegistry

        reg = SessionRegistry()
        s = self._session()
        reg.add_pending(s)
        self.assertIsNone(reg.most_recent)
        self.assertEqual(reg.names(), frozenset())

        reg.register(s, "work1", "imessage")
        self.assertTrue(s.is_named)
        self.assertIs(reg.get("work1"), s)
        self.assertIs(reg.get_by_fd(s.fd), s)
        self.assertEqual(reg.most_recent, "work1")

    def test_duplicate_name_conflicts_and_stays_pending(self) -> None:
        from lymebridge.daemon.registry import RegistrationConflict, SessionRegistry

        reg = SessionRegistry()
        s1, s2 = self._session(), self._session()
        reg.add_pending(s1)
        reg.add_pending(s2)
        reg.register(s1, "work1", "imessage")

        with self.assertRaises(RegistrationConflict):
            reg.register(s2, "work1", "telegram")
        self.assertFalse(s2.is_named)
        self.assertIs(reg.get("work1"), s1)

        # Retry with another name works.
        reg.register(s2, "work2", "telegram")
        self.assertEqual(reg.names(), frozenset({"work1", "work2"}))

    def test_invalid_names_and_double_register_rejected(self) -> None:
        from lymebridge.daemon.registry import RegistrationConflict, SessionRegistry

        reg = SessionRegistry()
        s = self._session()
        reg.add_pending(s)
        for bad in ("", "two words", " "):
            with self.subTest(name=bad):
                with self.assertRaises(RegistrationConflict):
                    reg.register(s, bad, "imessage")
        reg.register(s, "ok", "imessage")
        with self.assertRaises(RegistrationConflict):
            reg.register(s, "other", "imessage")
        self.assertEqual(reg.names(), frozenset({"ok"}))

    def test_remove_repoints_most_recent(self) -> None:
        from lymebridge.daemon.registry import SessionRegistry

        reg = SessionRegistry()
        a, b = self._session(), self._session()
        for s in (a, b):
            reg.add_pending(s)
        reg.register(a, "a", "imessage")
        reg.register(b, "b", "imessage")
        b.last_active = a.last_active + 1.0
        self.assertEqual(reg.most_recent, "b")

        reg.remove(b)
        self.assertEqual(reg.most_recent, "a")
        self.assertIsNone(reg.get("b"))
        self.assertIsNone(reg.get_by_fd(b.fd))

        reg.remove(a)
        self.assertIsNone(reg.most_recent)
        self.assertEqual(len(reg), 0)

    def test_remove_pending_leaves_names_alone(self) -> None:
        from lymebridge.daemon.registry import SessionRegistry

        reg = SessionRegistry()
        named, pending = self._session(), self._session()
        reg.add_pending(named)
        reg.add_pending(pending)
        reg.register(named, "work1", "telegram")

        reg.remove(pending)
        self.assertEqual(reg.most_recent, "work1")
        self.assertEqual(len(reg), 1)

    def test_mark_most_recent_ignores_unknown(self) -> None:
        from lymebridge.daemon.registry import SessionRegistry

        reg = SessionRegistry()
        a, b = self._session(), self._session()
        for s in (a, b):
            reg.add_pending(s)
        reg.register(a, "a", "imessage")
        reg.register(b, "b", "imessage")

        reg.mark_most_recent("a")
        self.assertEqual(reg.most_recent, "a")
        reg.mark_most_recent("ghost")
        self.assertEqual(reg.most_recent, "a")


if __name__ == "__main__":
    unittest.main()
