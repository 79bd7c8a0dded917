from jobs import JobQueue


def test_jobs_run_by_priority_then_fifo():
    queue = JobQueue()
    seen = []
    queue.register("note", lambda data: seen.append(data["n"]))
    queue.add_job("note", {"n": 1})
    queue.add_job("note", {"n": 2}, priority=5)
    queue.add_job("note", {"n": 3})

    assert queue.status()["total_jobs"] == 3
    assert queue.process_pending() == 3
    assert seen == [2, 1, 3]
    assert queue.status()["processed"] == 3


def test_failed_job_is_counted_not_retried():
    queue = JobQueue()

    def boom(data):
        raise ValueError("no mail server")

    queue.register("mail", boom)
    job_id = queue.add_job("mail")

    assert job_id.startswith("job_")
    assert queue.process_pending() == 1
    status = queue.status()
    assert status["failed"] == 1
    assert status["total_jobs"] == 0


def test_worker_thread_drains_queue():
    queue = JobQueue()
    done = []
    queue.register("note", lambda data: done.append(True))
    queue.start()
    try:
        queue.add_job("note")
    finally:
        queue.stop()
    assert done == [True]
