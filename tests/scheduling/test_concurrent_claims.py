"""Concurrent claim tests: several runners racing on one database file."""

import threading

import pytest

from sentinel.scheduling import Status, TaskCreate, TaskRepository

pytestmark = pytest.mark.slow

WORKERS = 4


def test_no_task_claimed_twice(repository, clock, dialect, open_extra_connection):
    """Every due task is claimed by exactly one of the racing claimers."""
    created = {
        repository.create(TaskCreate(type=f"t{i}", cron_expression="*/5 * * * *")).id for i in range(20)
    }
    clock.advance(minutes=3)

    claimed: list[int] = []
    errors: list[BaseException] = []
    lock = threading.Lock()
    repositories = [TaskRepository(open_extra_connection(), dialect, clock=clock) for _ in range(WORKERS)]
    start = threading.Barrier(WORKERS)

    def worker(repo: TaskRepository) -> None:
        try:
            start.wait()
            while (task := repo.find_next_due_task()) is not None:
                with lock:
                    claimed.append(task.id)
                repo.complete_task(task, Status.OK, {})
        except BaseException as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(repo,)) for repo in repositories]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert not errors
    assert sorted(claimed) == sorted(created)
    assert len(claimed) == len(set(claimed))
    assert all(t.times_executed == 1 for t in repository.list_all())
