import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from climblog.app import create_app
from climblog.auth import hash_password
from climblog.db import InMemoryDbClient
from climblog.dependencies import get_db_client, get_queue_client
from climblog.mail import InMemoryMailer
from climblog.queue import InMemoryJobQueue
from climblog.records import Role, UserRecord, new_id
from climblog.worker import process_next

API = "/api/v1"


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.queue = InMemoryJobQueue()
        self.mailer = InMemoryMailer()
        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_queue_client] = lambda: self.queue
        self.client = TestClient(app)

    def signup(self, name):
        """Register, deliver the confirmation mail, confirm and log in."""
        response = self.client.post(
            f"{API}/auth/register",
            json={"email": f"{name}@example.com", "password": "correct-horse", "username": name},
        )
        self.assertEqual(response.status_code, 201, response.text)
        user_id = response.json()["id"]

        self.assertTrue(
            process_next(db=self.db, queue=self.queue, mailer=self.mailer, block=False)
        )
        code = self.db.get_user(user_id).verification_code
        self.assertIn(code, self.mailer.outbox[-1].plain_body)

        confirm = self.client.post(f"{API}/auth/confirm", json={"code": code})
        self.assertEqual(confirm.status_code, 200, confirm.text)

        login = self.client.post(
            f"{API}/auth/login",
            json={"email": f"{name}@example.com", "password": "correct-horse"},
        )
        self.assertEqual(login.status_code, 200, login.text)
        return user_id, {"Authorization": f"Bearer {login.json()['access_token']}"}

    def make_admin(self):
        admin = UserRecord(
            id=new_id(),
            email="admin@example.com",
            username="admin",
            password_hash=hash_password("admin-password"),
            roles=[Role.ADMIN.value],
            is_verified=True,
        )
        with self.db.transaction() as tx:
            tx.add(admin)
        login = self.client.post(
            f"{API}/auth/login",
            json={"email": "admin@example.com", "password": "admin-password"},
        )
        return admin.id, {"Authorization": f"Bearer {login.json()['access_token']}"}

    def create_climb(self, headers, title="Crimp Line"):
        response = self.client.post(
            f"{API}/climbs", json={"title": title, "grade": "6c"}, headers=headers
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    # ------------------------------------------------------------------

    def test_health(self):
        response = self.client.get(f"{API}/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "up")
        self.assertEqual(payload["database"], "up")
        self.assertEqual(payload["queue"], "up")
        self.assertEqual(payload["queue_depth"], 0)

    def test_health_reports_unreachable_queue(self):
        with patch.object(self.queue, "size", return_value=None):
            payload = self.client.get(f"{API}/health").json()
        self.assertEqual(payload["queue"], "down")
        self.assertIsNone(payload["queue_depth"])
        self.assertEqual(payload["status"], "up")

    def test_auth_flow_and_me(self):
        user_id, headers = self.signup("alice")
        me = self.client.get(f"{API}/auth/me", headers=headers)
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["id"], user_id)
        self.assertTrue(me.json()["is_verified"])
        self.assertNotIn("password_hash", me.json())

    def test_login_before_confirmation_is_rejected(self):
        self.client.post(
            f"{API}/auth/register",
            json={"email": "bob@example.com", "password": "correct-horse", "username": "bob"},
        )
        response = self.client.post(
            f"{API}/auth/login", json={"email": "bob@example.com", "password": "correct-horse"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["kind"], "UNAUTHORIZED")

    def test_missing_token_is_unauthorized(self):
        response = self.client.post(f"{API}/climbs", json={"title": "Roof", "grade": "7a"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(
            response.json(),
            {"success": False, "kind": "UNAUTHORIZED", "message": "Missing bearer token", "code": 401},
        )

    def test_unknown_climb_renders_error_envelope(self):
        missing = new_id()
        response = self.client.get(f"{API}/climbs/{missing}")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json(),
            {
                "success": False,
                "kind": "NOT_FOUND",
                "message": f"Climb with id {missing} not found",
                "code": 404,
            },
        )

    def test_like_flow(self):
        _, owner = self.signup("owner")
        alice_id, alice = self.signup("alice")
        climb_id = self.create_climb(owner)

        like = self.client.post(f"{API}/interactions/{climb_id}/like", headers=alice)
        self.assertEqual(like.status_code, 201, like.text)
        again = self.client.post(f"{API}/interactions/{climb_id}/like", headers=alice)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["message"], "User already liked this climb")

        is_liked = self.client.get(f"{API}/interactions/{climb_id}/isLiked", headers=alice)
        self.assertEqual(is_liked.json(), {"isLiked": True})

        climb = self.client.get(f"{API}/climbs/{climb_id}").json()
        self.assertEqual(climb["likes_count"], 1)
        self.assertEqual(climb["recent_likes"], [alice_id])

        unlike = self.client.delete(f"{API}/interactions/{climb_id}/like", headers=alice)
        self.assertEqual(unlike.status_code, 200)
        self.assertEqual(unlike.json()["user_id"], alice_id)
        missing = self.client.delete(f"{API}/interactions/{climb_id}/like", headers=alice)
        self.assertEqual(missing.status_code, 404)

        climb = self.client.get(f"{API}/climbs/{climb_id}").json()
        self.assertEqual(climb["likes_count"], 0)
        self.assertEqual(climb["recent_likes"], [])

    def test_comment_flow(self):
        _, owner = self.signup("owner")
        _, alice = self.signup("alice")
        climb_id = self.create_climb(owner)

        first = self.client.post(
            f"{API}/interactions/{climb_id}/comment", json={"content": "Nice"}, headers=alice
        ).json()
        second = self.client.post(
            f"{API}/interactions/{climb_id}/comment", json={"content": "Hard"}, headers=alice
        ).json()

        listing = self.client.get(
            f"{API}/interactions/{climb_id}/comments", params={"page": 1, "pageSize": 1}
        ).json()
        self.assertEqual(listing["total"], 2)
        self.assertEqual(listing["pageSize"], 1)
        self.assertEqual([c["id"] for c in listing["data"]], [second["id"]])

        forbidden = self.client.delete(
            f"{API}/interactions/comments/{first['id']}", headers=owner
        )
        self.assertEqual(forbidden.status_code, 403)

        removed = self.client.delete(
            f"{API}/interactions/{climb_id}/comment/{first['id']}", headers=alice
        )
        self.assertEqual(removed.status_code, 200)
        removed = self.client.delete(f"{API}/interactions/comments/{second['id']}", headers=alice)
        self.assertEqual(removed.status_code, 200)

        climb = self.client.get(f"{API}/climbs/{climb_id}").json()
        self.assertEqual(climb["comments_count"], 0)
        self.assertEqual(climb["recent_comments"], [])

    def test_ascend_marks_climb_for_caller(self):
        _, owner = self.signup("owner")
        _, alice = self.signup("alice")
        climb_id = self.create_climb(owner)

        ascend = self.client.post(
            f"{API}/interactions/{climb_id}/ascend",
            json={"ascension_type": "flash"},
            headers=alice,
        )
        self.assertEqual(ascend.status_code, 201, ascend.text)
        listing = self.client.get(f"{API}/climbs", headers=alice).json()
        self.assertTrue(listing["data"][0]["is_ascended"])
        listing = self.client.get(f"{API}/climbs", headers=owner).json()
        self.assertFalse(listing["data"][0]["is_ascended"])

    def test_follow_and_profile(self):
        owner_id, owner = self.signup("owner")
        alice_id, alice = self.signup("alice")
        self.create_climb(owner)

        follow = self.client.post(f"{API}/interactions/{owner_id}/follow", headers=alice)
        self.assertEqual(follow.status_code, 201, follow.text)
        self_follow = self.client.post(f"{API}/interactions/{alice_id}/follow", headers=alice)
        self.assertEqual(self_follow.status_code, 409)

        followers = self.client.get(f"{API}/interactions/{owner_id}/followers").json()
        self.assertEqual([f["follower_id"] for f in followers], [alice_id])

        profile = self.client.get(f"{API}/profile/{owner_id}", headers=alice).json()
        self.assertEqual(profile["followers_count"], 1)
        self.assertTrue(profile["is_following"])
        self.assertEqual(len(profile["climbs"]), 1)

        unfollow = self.client.delete(f"{API}/interactions/{owner_id}/unfollow", headers=alice)
        self.assertEqual(unfollow.status_code, 200)
        following = self.client.get(f"{API}/interactions/{alice_id}/following").json()
        self.assertEqual(following, [])

    def test_climb_update_rules(self):
        _, owner = self.signup("owner")
        _, alice = self.signup("alice")
        climb_id = self.create_climb(owner)

        forbidden = self.client.put(
            f"{API}/climbs/{climb_id}", json={"title": "Stolen"}, headers=alice
        )
        self.assertEqual(forbidden.status_code, 403)

        counters = self.client.put(
            f"{API}/climbs/{climb_id}", json={"likes_count": 50}, headers=owner
        )
        self.assertEqual(counters.status_code, 422)

        updated = self.client.put(
            f"{API}/climbs/{climb_id}", json={"status": "closed"}, headers=owner
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["status"], "closed")

    def test_invalid_filters(self):
        response = self.client.get(f"{API}/climbs", params={"filters": "{not json"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["kind"], "INVALID_INPUT")

    def test_admin_only_user_routes(self):
        alice_id, alice = self.signup("alice")
        _, admin = self.make_admin()

        self.assertEqual(self.client.get(f"{API}/users/{alice_id}", headers=alice).status_code, 403)
        self.assertEqual(self.client.delete(f"{API}/users/{alice_id}", headers=alice).status_code, 403)

        fetched = self.client.get(f"{API}/users/{alice_id}", headers=admin)
        self.assertEqual(fetched.status_code, 200)
        listing = self.client.get(f"{API}/users", headers=admin).json()
        self.assertEqual(listing["total"], 2)

        created = self.client.post(
            f"{API}/users",
            json={"email": "carol@example.com", "password": "correct-horse", "username": "carol"},
            headers=admin,
        )
        self.assertEqual(created.status_code, 201, created.text)
        self.assertTrue(created.json()["is_verified"])

        deleted = self.client.delete(f"{API}/users/{alice_id}", headers=admin)
        self.assertEqual(deleted.status_code, 200)
        self.assertIsNone(self.db.get_user(alice_id))

    def test_password_reset_via_api(self):
        _, _ = self.signup("alice")
        response = self.client.post(
            f"{API}/auth/forgot-password", json={"email": "alice@example.com"}
        )
        self.assertEqual(response.status_code, 200)
        process_next(db=self.db, queue=self.queue, mailer=self.mailer, block=False)
        token = self.db.find_user(email="alice@example.com").reset_token
        self.assertIn(token, self.mailer.outbox[-1].html_body)

        reset = self.client.post(
            f"{API}/auth/reset-password",
            json={"token": token, "new_password": "brand-new-pass"},
        )
        self.assertEqual(reset.status_code, 200)
        login = self.client.post(
            f"{API}/auth/login",
            json={"email": "alice@example.com", "password": "brand-new-pass"},
        )
        self.assertEqual(login.status_code, 200)


if __name__ == "__main__":
    unittest.main()
