"""
In-process background jobs.

Jobs sit in a plain list and a single worker thread runs them one at a time,
highest priority first. Nothing is persisted; a failed job is logged and
dropped.
"""
import itertools
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class JobQueue:
    def __init__(self):
        self._jobs: List[Dict[str, Any]] = []
        self._handlers: Dict[str, Callable[[dict], None]] = {}
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._seq = itertools.count()
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self.processing = False
        self.processed = 0
        self.failed = 0

    def register(self, job_type: str, handler: Callable[[dict], None]):
        self._handlers[job_type] = handler

    def add_job(self, job_type: str, data: Optional[dict] = None, priority: int = 0) -> str:
        job_id = f"job_{uuid.uuid4().hex[:12]}"
        job = {
            "id": job_id,
            "type": job_type,
            "data": data or {},
            "priority": priority,
            "seq": next(self._seq),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._jobs.append(job)
        logger.info("Job added to queue: %s (%s)", job_id, job_type)
        self._wakeup.set()
        return job_id

    def _next_job(self) -> Optional[dict]:
        with self._lock:
            if not self._jobs:
                return None
            self._jobs.sort(key=lambda j: (-j["priority"], j["seq"]))
            return self._jobs.pop(0)

    def _execute(self, job: dict):
        handler = self._handlers.get(job["type"])
        if handler is None:
            logger.warning("Unknown job type: %s", job["type"])
            return
        try:
            handler(job["data"])
        except Exception:
            self.failed += 1
            logger.exception("Job failed: %s", job["id"])
        else:
            self.processed += 1
            logger.info("Job completed: %s", job["id"])

    def process_pending(self) -> int:
        """Run queued jobs until the list is empty; returns how many ran."""
        count = 0
        self.processing = True
        try:
            while True:
                job = self._next_job()
                if job is None:
                    break
                self._execute(job)
                count += 1
        finally:
            self.processing = False
        return count

    def _run(self):
        while self._running:
            self._wakeup.wait(timeout=1.0)
            self._wakeup.clear()
            self.process_pending()
        # finish whatever was queued before stop()
        self.process_pending()

    def start(self):
        if self._worker is not None and self._worker.is_alive():
            return
        self._running = True
        self._worker = threading.Thread(target=self._run, name="job-worker", daemon=True)
        self._worker.start()

    def stop(self, timeout: float = 5.0):
        self._running = False
        self._wakeup.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None

    def status(self) -> dict:
        with self._lock:
            pending = sorted(self._jobs, key=lambda j: (-j["priority"], j["seq"]))
            jobs = [{"id": j["id"], "type": j["type"], "priority": j["priority"]} for j in pending]
        return {
            "total_jobs": len(jobs),
            "processing": self.processing,
            "processed": self.processed,
            "failed": self.failed,
            "jobs": jobs,
        }


# Handlers

def send_order_confirmation(data: dict):
    logger.info("Order confirmation for order %s sent to user %s", data.get("order_id"), data.get("user_id"))


def notify_low_stock(data: dict):
    logger.warning("Low stock for product %s: %s remaining", data.get("product_id"), data.get("stock"))


def generate_report(data: dict):
    logger.info("Generating report: %s", data.get("report_type"))


queue = JobQueue()
queue.register("order-confirmation", send_order_confirmation)
queue.register("low-stock", notify_low_stock)
queue.register("generate-report", generate_report)
