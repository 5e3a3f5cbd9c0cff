import os
import threading
import unittest

from climblog.db import Base, PostgresDbClient
from climblog.interactions import InteractionService
from climblog.tests.factories import make_climb, make_user

DATABASE_URL = os.environ.get("CLIMBLOG_TEST_DATABASE_URL")


@unittest.skipUnless(DATABASE_URL, "CLIMBLOG_TEST_DATABASE_URL is not set")
class PostgresConcurrencyTests(unittest.TestCase):
    """
    Runs against a real Postgres server, where row locks and foreign-key
    key-share locks can deadlock concurrent writers. Point
    CLIMBLOG_TEST_DATABASE_URL at a scratch database; tables are dropped
    after each test.
    """

    def setUp(self):
        self.db = PostgresDbClient(DATABASE_URL)
        self.service = InteractionService(self.db)
        self.owner = make_user(self.db, "owner")
        self.climb = make_climb(self.db, self.owner)

    def tearDown(self):
        Base.metadata.drop_all(self.db.engine)
        self.db.engine.dispose()

    def run_all(self, calls):
        errors = []
        barrier = threading.Barrier(len(calls))

        def run(fn, args):
            barrier.wait()
            try:
                fn(*args)
            except Exception as exc:  # surfaced by the assertion in the test
                errors.append(exc)

        threads = [threading.Thread(target=run, args=call) for call in calls]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return errors

    def test_concurrent_likes_on_one_climb(self):
        users = [make_user(self.db, f"racer{i}") for i in range(12)]
        errors = self.run_all([(self.service.like, (self.climb.id, u.id)) for u in users])

        self.assertEqual(errors, [])
        climb = self.db.get_climb(self.climb.id)
        self.assertEqual(climb.likes_count, 12)
        self.assertEqual(len(climb.recent_likes), 5)

    def test_concurrent_likes_and_comments_on_one_climb(self):
        users = [make_user(self.db, f"mixed{i}") for i in range(6)]
        calls = []
        for user in users:
            calls.append((self.service.like, (self.climb.id, user.id)))
            calls.append((self.service.comment, (self.climb.id, user.id, "nice")))
        errors = self.run_all(calls)

        self.assertEqual(errors, [])
        climb = self.db.get_climb(self.climb.id)
        self.assertEqual(climb.likes_count, 6)
        self.assertEqual(climb.comments_count, 6)

    def test_concurrent_mutual_follows(self):
        users = [make_user(self.db, f"ring{i}") for i in range(4)]
        calls = [
            (self.service.follow, (a.id, b.id))
            for a in users
            for b in users
            if a.id != b.id
        ]
        errors = self.run_all(calls)

        self.assertEqual(errors, [])
        for user in users:
            stored = self.db.get_user(user.id)
            self.assertEqual(stored.followers_count, 3)
            self.assertEqual(stored.following_count, 3)


if __name__ == "__main__":
    unittest.main()
