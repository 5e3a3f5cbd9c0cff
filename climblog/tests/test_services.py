import unittest

from climblog.climbs import ClimbService, parse_filters
from climblog.db import InMemoryDbClient, PostgresDbClient
from climblog.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from climblog.interactions import InteractionService
from climblog.profile import ProfileService
from climblog.records import InteractionKind, Role
from climblog.tests.factories import make_climb, make_user
from climblog.users import UserService


class ParseFiltersTests(unittest.TestCase):
    def test_empty_filters(self):
        self.assertEqual(parse_filters(None, {"grade"}), {})
        self.assertEqual(parse_filters("", {"grade"}), {})

    def test_rejects_bad_json(self):
        with self.assertRaises(InvalidInputError) as ctx:
            parse_filters("{grade:", {"grade"})
        self.assertIn("Invalid JSON format for filters", ctx.exception.message)

    def test_rejects_unknown_fields(self):
        with self.assertRaises(InvalidInputError):
            parse_filters('{"password_hash": "x"}', {"grade"})


class ClimbServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.climbs = ClimbService(self.db)
        self.interactions = InteractionService(self.db)
        self.owner = make_user(self.db, "owner")
        self.other = make_user(self.db, "other")
        self.admin = make_user(self.db, "admin", roles=[Role.ADMIN.value])

    def test_create_and_list_with_ascension_flag(self):
        climb = self.climbs.create({"title": "Roof", "grade": "7b"}, created_by=self.owner.id)
        self.assertEqual(climb.status, "open")
        self.interactions.ascend(climb.id, self.other.id)

        page = self.climbs.list(page=1, page_size=10, current_user_id=self.other.id)
        self.assertEqual(page.total, 1)
        self.assertTrue(page.items[0]["is_ascended"])
        self.assertFalse(self.climbs.get(climb.id, current_user_id=self.owner.id)["is_ascended"])

    def test_list_filters_by_grade(self):
        self.climbs.create({"title": "Easy", "grade": "4"}, created_by=self.owner.id)
        self.climbs.create({"title": "Hard", "grade": "8a"}, created_by=self.owner.id)
        page = self.climbs.list(filters='{"grade": "8a"}')
        self.assertEqual([c["title"] for c in page.items], ["Hard"])

    def test_only_owner_or_admin_can_update(self):
        climb = make_climb(self.db, self.owner)
        with self.assertRaises(ForbiddenError):
            self.climbs.update(climb.id, {"title": "Mine now"}, actor=self.other)
        updated = self.climbs.update(climb.id, {"title": "Renamed"}, actor=self.admin)
        self.assertEqual(updated.title, "Renamed")

    def test_denormalized_fields_cannot_be_written(self):
        climb = make_climb(self.db, self.owner)
        with self.assertRaises(InvalidInputError):
            self.climbs.update(climb.id, {"likes_count": 99}, actor=self.owner)

    def test_delete_removes_climb(self):
        climb = make_climb(self.db, self.owner)
        self.interactions.like(climb.id, self.other.id)
        self.climbs.delete(climb.id, actor=self.owner)
        with self.assertRaises(NotFoundError):
            self.climbs.get(climb.id)
        self.assertEqual(self.db.count_interactions(InteractionKind.LIKE), 0)


class UserServiceContract:
    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()
        self.interactions = InteractionService(self.db)
        self.users = UserService(self.db, self.interactions)
        self.admin = make_user(self.db, "admin", roles=[Role.ADMIN.value])
        self.alice = make_user(self.db, "alice")
        self.bob = make_user(self.db, "bob")

    def test_create_user_is_verified(self):
        user = self.users.create(
            email="Carol@Example.com", password="correct-horse", username="carol"
        )
        self.assertTrue(user.is_verified)
        self.assertEqual(user.email, "carol@example.com")
        with self.assertRaises(ConflictError):
            self.users.create(email="carol@example.com", password="correct-horse", username="c2")

    def test_list_users_with_filters(self):
        page = self.users.list(filters='{"username": "alice"}')
        self.assertEqual(page.total, 1)
        self.assertEqual(page.items[0].id, self.alice.id)

    def test_roles_are_admin_only(self):
        with self.assertRaises(ForbiddenError):
            self.users.update(self.alice.id, {"roles": ["admin"]}, actor=self.alice)
        updated = self.users.update(self.alice.id, {"roles": ["admin"]}, actor=self.admin)
        self.assertTrue(updated.is_admin)

    def test_update_other_user_is_forbidden(self):
        with self.assertRaises(ForbiddenError):
            self.users.update(self.alice.id, {"given_name": "Al"}, actor=self.bob)

    def test_username_must_stay_unique(self):
        with self.assertRaises(ConflictError):
            self.users.update(self.alice.id, {"username": "bob"}, actor=self.alice)

    def test_delete_user_cascades_and_recounts(self):
        bob_climb = make_climb(self.db, self.bob, title="Bob's line")
        alice_climb = make_climb(self.db, self.alice, title="Alice's line")
        self.interactions.like(bob_climb.id, self.admin.id)
        self.interactions.like(bob_climb.id, self.alice.id)
        self.interactions.comment(bob_climb.id, self.alice.id, "nice")
        self.interactions.like(alice_climb.id, self.bob.id)
        self.interactions.follow(self.alice.id, self.bob.id)
        self.interactions.follow(self.bob.id, self.alice.id)

        self.users.delete(self.alice.id, actor=self.admin)

        self.assertIsNone(self.db.get_user(self.alice.id))
        self.assertIsNone(self.db.get_climb(alice_climb.id))
        climb = self.db.get_climb(bob_climb.id)
        self.assertEqual(climb.likes_count, 1)
        self.assertEqual(climb.recent_likes, [self.admin.id])
        self.assertEqual(climb.comments_count, 0)
        self.assertEqual(climb.recent_comments, [])
        bob = self.db.get_user(self.bob.id)
        self.assertEqual(bob.followers_count, 0)
        self.assertEqual(bob.following_count, 0)
        self.assertEqual(self.db.count_interactions(InteractionKind.LIKE, user_id=self.bob.id), 0)


class InMemoryUserServiceTests(UserServiceContract, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()


class SqlUserServiceTests(UserServiceContract, unittest.TestCase):
    def make_db(self):
        return PostgresDbClient("sqlite+pysqlite:///:memory:")


class ProfileServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.interactions = InteractionService(self.db)
        self.profiles = ProfileService(self.db, self.interactions)
        self.alice = make_user(self.db, "alice")
        self.bob = make_user(self.db, "bob")

    def test_profile_collects_follows_climbs_and_ascensions(self):
        climbs = [make_climb(self.db, self.alice, title=f"Line {i}") for i in range(12)]
        self.interactions.ascend(climbs[0].id, self.alice.id, "onsight")
        self.interactions.follow(self.bob.id, self.alice.id)

        profile = self.profiles.find_profile(self.bob.id, self.alice.id)
        self.assertEqual(profile["username"], "alice")
        self.assertEqual(profile["followers_count"], 1)
        self.assertEqual(profile["followers"], [self.bob.id])
        self.assertEqual(len(profile["climbs"]), 10)
        self.assertEqual(profile["climbs_count"], 12)
        self.assertEqual(profile["ascensions"][0]["ascension_type"], "onsight")
        self.assertTrue(profile["is_following"])

        self.assertFalse(self.profiles.find_profile(None, self.alice.id)["is_following"])

    def test_unknown_profile(self):
        with self.assertRaises(NotFoundError):
            self.profiles.find_profile(None, "0" * 32)


if __name__ == "__main__":
    unittest.main()
