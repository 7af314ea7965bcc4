import unittest

from postboard.formatters import format_posts, format_users


class FormatterTests(unittest.TestCase):
    def test_format_posts_keys_by_id_in_order(self):
        posts = [
            {"id": "p2", "title": "Second"},
            {"id": "p1", "title": "First"},
        ]
        formatted = format_posts(posts)
        self.assertEqual(list(formatted), ["p2", "p1"])
        self.assertEqual(formatted["p1"]["title"], "First")

    def test_format_posts_copies_records(self):
        post = {"id": "p1", "title": "First"}
        formatted = format_posts([post])
        formatted["p1"]["title"] = "changed"
        self.assertEqual(post["title"], "First")

    def test_format_users_keys_by_user_name(self):
        formatted = format_users([{"userName": "alice", "bio": "hi"}])
        self.assertEqual(formatted, {"alice": {"userName": "alice", "bio": "hi"}})

    def test_empty_input(self):
        self.assertEqual(format_posts([]), {})
        self.assertEqual(format_users([]), {})


if __name__ == "__main__":
    unittest.main()
