import unittest
from types import SimpleNamespace
from unittest.mock import patch

from fastapi.testclient import TestClient

from postboard.app import create_app
from postboard.db import InMemoryDbClient
from postboard.dependencies import (
    get_db_client,
    get_queue_client,
    get_search_index,
    get_storage_client,
)
from postboard.worker import drain


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        if not isinstance(self.db, InMemoryDbClient):
            self.skipTest("API tests need the in-memory store")
        self.db.reset()
        self.queue = get_queue_client()
        self.queue.reset()
        self.search = get_search_index()
        self.search.reset()
        get_storage_client().reset()

    def signup(self, user_name: str, email: str | None = None) -> dict:
        response = self.client.post(
            "/api/signup",
            json={
                "email": email or f"{user_name}@example.com",
                "password": "secret123",
                "confirmPassword": "secret123",
                "userName": user_name,
            },
        )
        self.assertEqual(response.status_code, 201, response.text)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def create_post(self, headers: dict, title: str = "Hello", body: str = "World") -> str:
        response = self.client.post(
            "/api/post",
            json={"title": title, "body": body, "category": "general"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def drain(self) -> int:
        return drain(db=self.db, queue=self.queue, search=self.search)


class AuthApiTests(ApiTestCase):
    def test_signup_and_login(self):
        self.signup("alice")
        user = self.db.get_user("alice")
        self.assertEqual(user.bio, "Hey there!")
        self.assertIn("blankAvatar.png", user.image_url)

        response = self.client.post(
            "/api/login", json={"email": "alice@example.com", "password": "secret123"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn("token", response.json())

    def test_signup_validation(self):
        response = self.client.post(
            "/api/signup",
            json={
                "email": "not-an-email",
                "password": "a",
                "confirmPassword": "b",
                "userName": " ",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                "email": "Must be a valid email address",
                "confirmPassword": "Passwords must match",
                "userName": "Must not be empty",
            },
        )

    def test_signup_with_taken_username_creates_no_account(self):
        self.signup("alice")
        self.assertEqual(len(self.db.accounts), 1)

        response = self.client.post(
            "/api/signup",
            json={
                "email": "other@example.com",
                "password": "secret123",
                "confirmPassword": "secret123",
                "userName": "alice",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"userName": "This username is already taken"})
        self.assertEqual(len(self.db.accounts), 1)

    def test_signup_losing_username_race_removes_account(self):
        self.signup("alice")
        body = {
            "email": "other@example.com",
            "password": "secret123",
            "confirmPassword": "secret123",
            "userName": "alice",
        }
        # The username check passes, as if both signups ran at the same time.
        with patch.object(self.db, "get_user", return_value=None):
            response = self.client.post("/api/signup", json=body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"userName": "This username is already taken"})
        self.assertEqual(len(self.db.accounts), 1)
        self.assertIsNone(self.db.get_account_by_email("other@example.com"))

        self.signup("bob", email="other@example.com")

    def test_signup_with_email_in_use(self):
        self.signup("alice")
        response = self.client.post(
            "/api/signup",
            json={
                "email": "ALICE@example.com",
                "password": "secret123",
                "confirmPassword": "secret123",
                "userName": "alice2",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"email": "Email is already in use"})
        self.assertIsNone(self.db.get_user("alice2"))

    def test_login_with_wrong_credentials(self):
        self.signup("alice")
        response = self.client.post(
            "/api/login", json={"email": "alice@example.com", "password": "nope"}
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(
            response.json(), {"general": "Wrong credentials, please try again"}
        )

    def test_login_requires_fields(self):
        response = self.client.post("/api/login", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {"email": "Must not be empty", "password": "Must not be empty"},
        )

    def test_protected_routes_reject_missing_or_bad_tokens(self):
        response = self.client.post("/api/post", json={"title": "t", "body": "b"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {"error": "Unauthorized"})

        response = self.client.get(
            "/api/user", headers={"Authorization": "Bearer not-a-token"}
        )
        self.assertEqual(response.status_code, 403)


class PostApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.signup("alice")
        self.bob = self.signup("bob")

    def test_create_and_read_posts(self):
        first = self.create_post(self.alice, title="First")
        second = self.create_post(self.alice, title="Second")

        response = self.client.get("/api/posts")
        self.assertEqual(response.status_code, 200)
        posts = response.json()
        self.assertEqual(list(posts), [second, first])
        self.assertEqual(posts[first]["author"], "alice")
        self.assertEqual(posts[first]["comments"], [])
        self.assertEqual(posts[first]["voteScore"], 0)

        response = self.client.get(f"/api/post/{first}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["title"], "First")

        self.assertEqual(self.client.get("/api/post/missing").status_code, 404)

    def test_create_post_requires_title_and_body(self):
        response = self.client.post(
            "/api/post", json={"title": " ", "category": "x"}, headers=self.alice
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(), {"title": "Must not be empty", "body": "Must not be empty"}
        )
        self.assertEqual(self.db.list_posts(), [])

    def test_comment_lifecycle(self):
        post_id = self.create_post(self.alice)

        response = self.client.post(
            f"/api/post/{post_id}/comment", json={"body": "   "}, headers=self.bob
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Comment can't be empty"})
        self.assertEqual(self.db.get_post(post_id).comment_count, 0)

        first = self.client.post(
            f"/api/post/{post_id}/comment", json={"body": "one"}, headers=self.bob
        ).json()
        self.client.post(
            f"/api/post/{post_id}/comment", json={"body": "two"}, headers=self.alice
        )
        post = self.client.get(f"/api/post/{post_id}").json()
        self.assertEqual(post["commentCount"], 2)
        self.assertEqual([c["body"] for c in post["comments"]], ["one", "two"])

        response = self.client.delete(
            f"/api/post/{post_id}/comment/{first['id']}", headers=self.alice
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.delete(
            f"/api/post/{post_id}/comment/{first['id']}", headers=self.bob
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.db.get_post(post_id).comment_count, 1)

        response = self.client.delete(
            f"/api/post/{post_id}/comment/{first['id']}", headers=self.bob
        )
        self.assertEqual(response.status_code, 404)

    def test_comment_on_missing_post(self):
        response = self.client.post(
            "/api/post/missing/comment", json={"body": "hi"}, headers=self.bob
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.db.comments, {})

    def test_fav_and_unfav(self):
        post_id = self.create_post(self.alice)

        response = self.client.post(f"/api/post/{post_id}/fav", headers=self.bob)
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["id"], post_id)
        self.assertEqual(payload["favCount"], 1)
        self.assertEqual([f["userName"] for f in payload["favs"]], ["bob"])

        response = self.client.post(f"/api/post/{post_id}/fav", headers=self.bob)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Post has already been faved"})
        self.assertEqual(self.db.get_post(post_id).fav_count, 1)
        self.assertEqual(len(self.db.list_favs(post_id)), 1)

        response = self.client.post(f"/api/post/{post_id}/unfav", headers=self.bob)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["favCount"], 0)

        response = self.client.post(f"/api/post/{post_id}/unfav", headers=self.bob)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Post hasn't been faved"})
        self.assertEqual(self.db.get_post(post_id).fav_count, 0)

        response = self.client.post("/api/post/missing/fav", headers=self.bob)
        self.assertEqual(response.status_code, 404)

    def test_vote_toggle_scenarios(self):
        post_id = self.create_post(self.alice)
        up = f"/api/post/{post_id}/togglePostUpvote"
        down = f"/api/post/{post_id}/togglePostDownvote"

        payload = self.client.post(up, headers=self.bob).json()
        self.assertEqual(payload["voteScore"], 1)
        self.assertEqual([v["userName"] for v in payload["upvotes"]], ["bob"])

        payload = self.client.post(up, headers=self.bob).json()
        self.assertEqual(payload["voteScore"], 0)
        self.assertEqual(payload["upvotes"], [])

        payload = self.client.post(down, headers=self.bob).json()
        self.assertEqual(payload["voteScore"], -1)
        self.assertEqual(len(payload["downvotes"]), 1)

        payload = self.client.post(up, headers=self.bob).json()
        self.assertEqual(payload["voteScore"], 1)
        self.assertEqual(len(payload["upvotes"]), 1)
        self.assertEqual(payload["downvotes"], [])

        payload = self.client.post(up, headers=self.alice).json()
        self.assertEqual(payload["voteScore"], 2)

        response = self.client.post(
            "/api/post/missing/togglePostUpvote", headers=self.bob
        )
        self.assertEqual(response.status_code, 404)

    def test_delete_post_cascades(self):
        post_id = self.create_post(self.alice)
        other_id = self.create_post(self.alice, title="Other")
        self.client.post(f"/api/post/{post_id}/comment", json={"body": "hi"}, headers=self.bob)
        self.client.post(f"/api/post/{post_id}/fav", headers=self.bob)
        self.client.post(f"/api/post/{post_id}/togglePostUpvote", headers=self.bob)
        self.client.post(f"/api/post/{post_id}/togglePostDownvote", headers=self.alice)
        self.client.post(f"/api/post/{other_id}/fav", headers=self.bob)
        self.drain()
        self.assertEqual(len(self.db.notifications), 3)

        response = self.client.delete(f"/api/post/{post_id}", headers=self.bob)
        self.assertEqual(response.status_code, 403)
        self.assertIsNotNone(self.db.get_post(post_id))

        response = self.client.delete(f"/api/post/{post_id}", headers=self.alice)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Post deleted successfully"})
        self.assertIsNone(self.db.get_post(post_id))
        self.assertEqual(self.db.list_comments(post_id), [])
        self.assertEqual(self.db.list_favs(post_id), [])
        self.assertEqual(self.db.upvotes, {})
        self.assertEqual(self.db.downvotes, {})
        self.assertEqual(
            [n.post_id for n in self.db.notifications.values()], [other_id]
        )

        response = self.client.delete(f"/api/post/{post_id}", headers=self.alice)
        self.assertEqual(response.status_code, 404)


class NotificationApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.signup("alice")
        self.bob = self.signup("bob")
        self.post_id = self.create_post(self.alice)

    def test_fav_and_comment_notify_post_author(self):
        fav = self.client.post(f"/api/post/{self.post_id}/fav", headers=self.bob).json()
        comment = self.client.post(
            f"/api/post/{self.post_id}/comment", json={"body": "nice"}, headers=self.bob
        ).json()
        self.client.post(f"/api/post/{self.post_id}/fav", headers=self.alice)
        self.drain()

        response = self.client.get("/api/user", headers=self.alice)
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["credentials"]["userName"], "alice")
        self.assertEqual([f["userName"] for f in payload["favs"]], ["alice"])
        notifications = {n["notificationId"]: n for n in payload["notifications"]}
        self.assertEqual(set(notifications), {fav["favs"][0]["id"], comment["id"]})
        self.assertEqual(notifications[comment["id"]]["type"], "comment")
        self.assertEqual(notifications[comment["id"]]["sender"], "bob")
        self.assertFalse(notifications[comment["id"]]["read"])

    def test_unfav_and_uncomment_retract_notifications(self):
        self.client.post(f"/api/post/{self.post_id}/fav", headers=self.bob)
        comment = self.client.post(
            f"/api/post/{self.post_id}/comment", json={"body": "nice"}, headers=self.bob
        ).json()
        self.drain()
        self.assertEqual(len(self.db.notifications), 2)

        self.client.post(f"/api/post/{self.post_id}/unfav", headers=self.bob)
        self.client.delete(
            f"/api/post/{self.post_id}/comment/{comment['id']}", headers=self.bob
        )
        self.drain()
        self.assertEqual(self.db.notifications, {})

    def test_mark_notifications_read(self):
        self.client.post(f"/api/post/{self.post_id}/fav", headers=self.bob)
        self.drain()
        (notification_id,) = list(self.db.notifications)

        response = self.client.post(
            "/api/notifications", json=[notification_id], headers=self.bob
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(self.db.get_notification(notification_id).read)

        response = self.client.post(
            "/api/notifications", json=[notification_id, "unknown"], headers=self.alice
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Notifications set to read"})
        self.assertTrue(self.db.get_notification(notification_id).read)

    @patch("postboard.routes.get_settings")
    def test_inline_event_processing(self, mock_settings):
        mock_settings.return_value = SimpleNamespace(
            process_events_inline=True, default_avatar="blankAvatar.png"
        )
        self.client.post(f"/api/post/{self.post_id}/fav", headers=self.bob)
        self.assertEqual(len(self.db.notifications), 1)
        self.assertEqual(self.queue.items, [])


class UserApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.signup("alice")

    def test_list_users_and_details(self):
        self.signup("bob")
        self.create_post(self.alice, title="Mine")

        users = self.client.get("/api/users").json()
        self.assertEqual(set(users), {"alice", "bob"})
        self.assertEqual(users["alice"]["email"], "alice@example.com")
        self.assertEqual(users["alice"]["id"], self.db.get_user("alice").user_id)

        details = self.client.get("/api/user/alice").json()
        self.assertEqual(details["user"]["userName"], "alice")
        self.assertEqual([p["title"] for p in details["posts"]], ["Mine"])

        self.assertEqual(self.client.get("/api/user/nobody").status_code, 404)

    def test_add_user_details(self):
        response = self.client.post(
            "/api/user", json={"bio": "  hello  ", "location": ""}, headers=self.alice
        )
        self.assertEqual(response.status_code, 200)
        user = self.db.get_user("alice")
        self.assertEqual(user.bio, "hello")
        self.assertEqual(user.location, "")

    def test_upload_image(self):
        post_id = self.create_post(self.alice)

        response = self.client.post(
            "/api/user/image",
            files={"image": ("avatar.gif", b"GIF89a", "image/gif")},
            headers=self.alice,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Wrong file type submitted"})

        response = self.client.post(
            "/api/user/image",
            files={"image": ("avatar.png", b"\x89PNG", "image/png")},
            headers=self.alice,
        )
        self.assertEqual(response.status_code, 200)
        image_url = self.db.get_user("alice").image_url
        self.assertRegex(image_url, r"/o/\d+\.png\?alt=media&token=")

        self.drain()
        self.assertEqual(self.db.get_post(post_id).author_image, image_url)

    def test_upload_image_extension_follows_content_type(self):
        response = self.client.post(
            "/api/user/image",
            files={"image": ("x.html", b"\x89PNG", "image/png")},
            headers=self.alice,
        )
        self.assertEqual(response.status_code, 200)
        (path,) = list(get_storage_client().stored_objects)
        self.assertRegex(path, r"^\d+\.png$")
        self.assertEqual(
            get_storage_client().stored_objects[path]["content_type"], "image/png"
        )


class SearchApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.signup("alice")

    def test_posts_are_synced_to_search(self):
        post_id = self.create_post(self.alice, title="Sourdough starter", body="flour")
        self.create_post(self.alice, title="Bike repair", body="chain")
        self.drain()

        hits = self.client.get("/api/search", params={"q": "sourdough"}).json()["hits"]
        self.assertEqual([hit["objectID"] for hit in hits], [post_id])

        self.client.delete(f"/api/post/{post_id}", headers=self.alice)
        self.drain()
        hits = self.client.get("/api/search", params={"q": "sourdough"}).json()["hits"]
        self.assertEqual(hits, [])

    def test_reindex_rebuilds_from_posts(self):
        post_id = self.create_post(self.alice, title="Sourdough starter")
        self.search.save_object({"objectID": "stale", "title": "sourdough ghost"})

        response = self.client.post("/api/search/reindex", headers=self.alice)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(set(self.search.objects), {post_id})


if __name__ == "__main__":
    unittest.main()
