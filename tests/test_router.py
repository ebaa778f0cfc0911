import unittest


class TestRouter(unittest.TestCase):
    def test_explicit_name_and_text(self) -> None:
        from lymebridge.daemon.router import parse

        r = parse("@alice hello")
        self.assertEqual(r.session_name, "alice")
        self.assertEqual(r.text, "hello")

    def test_name_only(self) -> None:
        from lymebridge.daemon.router import parse

        r = parse("@bob")
        self.assertEqual(r.session_name, "bob")
        self.assertEqual(r.text, "")

    def test_plain_text_is_trimmed(self) -> None:
        from lymebridge.daemon.router import parse

        r = parse("  hi there  ")
        self.assertIsNone(r.session_name)
        self.assertEqual(r.text, "hi there")

    def test_text_after_name_is_trimmed(self) -> None:
        from lymebridge.daemon.router import parse

        r = parse("  @work1    build it  ")
        self.assertEqual(r.session_name, "work1")
        self.assertEqual(r.text, "build it")

    def test_at_sign_not_at_start_is_plain_text(self) -> None:
        from lymebridge.daemon.router import parse

        for text in ("email me@example.com", "x @y z", ""):
            with self.subTest(text=text):
                r = parse(text)
                self.assertIsNone(r.session_name)
                self.assertEqual(r.text, text.strip())


if __name__ == "__main__":
    unittest.main()
