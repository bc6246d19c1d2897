"""Tests for SqlQueue: ordering, delayed items, conditions and atomic pops."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from sentinel.core.errors import QueuePayloadError
from sentinel.queue import QueueFactory, QueueItem, SqlQueue
from sentinel.queue.sql_queue import normalise_time


class TestPushPop:
    def test_items_pop_in_time_order(self, make_queue, clock):
        """Three mail items pushed with different times pop oldest first, then None."""
        queue = make_queue("mail")
        queue.push(QueueItem("second", "mail"), clock.now - timedelta(minutes=2))
        queue.push(QueueItem("third", "mail"), clock.now - timedelta(minutes=1))
        queue.push(QueueItem("first", "mail"), clock.now - timedelta(minutes=3))

        assert [queue.pop().data for _ in range(3)] == ["first", "second", "third"]
        assert queue.pop() is None

    def test_same_time_pops_in_insertion_order(self, make_queue):
        queue = make_queue("mail")
        for n in range(3):
            queue.push(QueueItem(n, "mail"))
        assert [queue.pop().data for _ in range(3)] == [0, 1, 2]

    def test_future_items_wait(self, make_queue, clock):
        queue = make_queue("mail")
        queue.push(QueueItem("later", "mail"), clock.now + timedelta(minutes=10))

        assert queue.pop() is None
        clock.advance(minutes=10)
        assert queue.pop().data == "later"

    def test_queues_are_separate(self, make_queue):
        mail = make_queue("mail")
        push = make_queue("webpush")
        mail.push(QueueItem("m", "mail"))

        assert push.pop() is None
        assert push.count() == 0
        assert mail.count() == 1

    def test_push_to_wrong_queue_rejected(self, make_queue):
        with pytest.raises(QueuePayloadError):
            make_queue("mail").push(QueueItem(1, "plugins"))

    def test_pop_returns_equal_item(self, make_queue):
        queue = make_queue("extensions")
        item = QueueItem({"id": 12, "nested": {"a": [1, None]}}, "extensions", site_id=3)
        queue.push(item)
        assert queue.pop() == item

    def test_corrupt_row_dropped(self, make_queue, conn, clock):
        queue = make_queue("mail")
        conn.execute(
            "INSERT INTO sentinel_queue (queue, not_before, site_id, payload) VALUES (?, ?, ?, ?)",
            ("mail", "2000-01-01 00:00:00.000000", None, "{broken"),
        )
        queue.push(QueueItem("good", "mail"))

        assert queue.pop().data == "good"
        assert queue.count() == 0


class TestConditions:
    @pytest.fixture
    def queue(self, make_queue):
        queue = make_queue("extensions")
        queue.push(QueueItem({"ext": "a", "site": 1}, "extensions", site_id=1))
        queue.push(QueueItem({"ext": "b", "site": 1}, "extensions", site_id=1))
        queue.push(QueueItem({"ext": "a", "site": 2}, "extensions", site_id=2))
        queue.push(QueueItem("plain", "extensions"))
        return queue

    def test_count_by_site(self, queue):
        assert queue.count_by_condition({"siteId": 1}) == 2
        assert queue.count_by_condition({"site_id": 2}) == 1
        assert queue.count_by_condition({"siteId": None}) == 1

    def test_count_by_payload_key(self, queue):
        assert queue.count_by_condition({"ext": "a"}) == 2
        assert queue.count_by_condition({"ext": "a", "siteId": 2}) == 1

    def test_count_by_data_type(self, queue):
        assert queue.count_by_condition({"dataType": "str"}) == 1

    def test_queue_type_condition_ignored(self, queue):
        assert queue.count_by_condition({"queueType": "mail"}) == 4

    def test_clear_with_conditions(self, queue):
        assert queue.clear({"siteId": 1}) == 2
        assert queue.count() == 2

    def test_clear_all(self, queue):
        assert queue.clear() == 4
        assert queue.pop() is None


class TestNormaliseTime:
    NOW = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "not a date", True])
    def test_fallback_to_now(self, value):
        assert normalise_time(value, self.NOW) == self.NOW

    def test_epoch_seconds(self):
        assert normalise_time(0, self.NOW) == datetime(1970, 1, 1, tzinfo=UTC)

    def test_iso_string(self):
        assert normalise_time("2024-02-01T08:00:00+02:00", self.NOW) == datetime(2024, 2, 1, 6, 0, tzinfo=UTC)

    def test_naive_datetime_is_utc(self):
        assert normalise_time(datetime(2024, 3, 1, 12, 0), self.NOW) == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class TestFactory:
    def test_make_binds_connection(self, conn, dialect):
        queue = QueueFactory(conn, dialect).make("MAIL")
        assert queue.identifier == "mail"
        assert queue.conn is conn

    def test_context_make_queue(self, context):
        assert context.make_queue("webpush").identifier == "webpush"


@pytest.mark.slow
def test_concurrent_pops_deliver_each_item_once(conn, dialect, open_extra_connection, clock):
    total = 60
    workers = 4
    producer = SqlQueue("mail", conn, dialect, clock=clock)
    for n in range(total):
        producer.push(QueueItem(n, "mail"))

    popped: list[int] = []
    errors: list[BaseException] = []
    lock = threading.Lock()
    queues = [SqlQueue("mail", open_extra_connection(), dialect, clock=clock) for _ in range(workers)]
    start = threading.Barrier(workers)

    def worker(queue: SqlQueue) -> None:
        try:
            start.wait()
            while (item := queue.pop()) is not None:
                with lock:
                    popped.append(item.data)
        except BaseException as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(q,)) for q in queues]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert not errors
    assert sorted(popped) == list(range(total))
