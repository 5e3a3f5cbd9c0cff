import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from climblog.queue import InMemoryJobQueue, RedisJobQueue


class InMemoryJobQueueTests(unittest.TestCase):
    def test_fifo_and_size(self):
        queue = InMemoryJobQueue()
        self.assertEqual(queue.size(), 0)
        queue.enqueue("job-1")
        queue.enqueue("job-2")
        self.assertEqual(queue.size(), 2)
        self.assertEqual(queue.dequeue(block=False), "job-1")
        self.assertEqual(queue.dequeue(block=False), "job-2")
        self.assertIsNone(queue.dequeue(block=False))


@patch("climblog.queue.redis.Redis.from_url")
class RedisJobQueueTests(unittest.TestCase):
    def test_size_reads_list_length(self, from_url):
        client = from_url.return_value
        client.llen.return_value = 3
        queue = RedisJobQueue("redis://localhost:6379/0")
        self.assertEqual(queue.size(), 3)
        client.llen.assert_called_once_with("climblog:mail")

    def test_size_is_none_when_unreachable(self, from_url):
        from_url.return_value.llen.side_effect = redis_exceptions.ConnectionError("refused")
        queue = RedisJobQueue("redis://localhost:6379/0")
        self.assertIsNone(queue.size())

    def test_dequeue_decodes_bytes(self, from_url):
        client = from_url.return_value
        client.lpop.return_value = b"job-7"
        client.blpop.return_value = (b"climblog:mail", b"job-8")
        queue = RedisJobQueue("redis://localhost:6379/0")
        self.assertEqual(queue.dequeue(block=False), "job-7")
        self.assertEqual(queue.dequeue(timeout=1), "job-8")
        client.blpop.assert_called_once_with("climblog:mail", timeout=1)

    def test_dequeue_reconnects_after_connection_error(self, from_url):
        broken = MagicMock()
        broken.lpop.side_effect = redis_exceptions.ConnectionError("reset")
        healthy = MagicMock()
        healthy.lpop.return_value = None
        from_url.side_effect = [broken, healthy]

        queue = RedisJobQueue("redis://localhost:6379/0")
        self.assertIsNone(queue.dequeue(block=False))
        self.assertIs(queue.client, healthy)
        self.assertIsNone(queue.dequeue(block=False))

    def test_failed_enqueue_does_not_raise(self, from_url):
        broken = MagicMock()
        broken.rpush.side_effect = redis_exceptions.ConnectionError("reset")
        from_url.side_effect = [broken, MagicMock()]

        queue = RedisJobQueue("redis://localhost:6379/0")
        queue.enqueue("job-9")
        broken.rpush.assert_called_once_with("climblog:mail", "job-9")
        self.assertEqual(from_url.call_count, 2)


if __name__ == "__main__":
    unittest.main()
