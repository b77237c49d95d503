"""Unit tests for the scheduler service.

Tests the SchedulerService including:
- Job registration with correct configuration
- Immediate first run (next_run_time set to now)
- Prevents overlapping runs (max_instances=1)
- Start/shutdown lifecycle
- Driving a QueueProcessor end to end
"""

import threading
import time
from datetime import datetime
from unittest.mock import Mock

import pytest

from courier.processor import QueueProcessor
from courier.queue import MessageKind, MessageStatus
from courier.scheduler import SchedulerService
from courier.scheduler.service import JOB_ID


class TestSchedulerService:
    """Test suite for SchedulerService."""

    def test_scheduler_initialization(self):
        """Test that scheduler initializes with correct parameters."""
        job = Mock()

        scheduler = SchedulerService(job=job, interval_seconds=60)

        assert scheduler.interval_seconds == 60
        assert scheduler.job == job
        assert not scheduler.is_running()

    def test_job_defaults(self):
        """Test that jobs are registered with max_instances=1 and coalesce=True."""
        scheduler = SchedulerService(job=Mock(), interval_seconds=30)

        assert scheduler.scheduler._job_defaults["max_instances"] == 1
        assert scheduler.scheduler._job_defaults["coalesce"] is True
        assert scheduler.scheduler._job_defaults["misfire_grace_time"] == 30

    def test_fractional_interval_grace_time(self):
        scheduler = SchedulerService(job=Mock(), interval_seconds=0.5)

        assert scheduler.scheduler._job_defaults["misfire_grace_time"] == 1

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            SchedulerService(job=Mock(), interval_seconds=0)

    def test_start_and_shutdown(self):
        """Test scheduler start and shutdown lifecycle."""
        scheduler = SchedulerService(job=Mock(), interval_seconds=300)

        scheduler.start()
        assert scheduler.is_running()
        assert scheduler.scheduler.get_job(JOB_ID) is not None

        scheduler.shutdown(wait=False)
        assert not scheduler.is_running()

    def test_shutdown_before_start_is_safe(self):
        scheduler = SchedulerService(job=Mock(), interval_seconds=60)

        scheduler.shutdown()

        assert not scheduler.is_running()

    def test_immediate_first_run(self):
        """Test that the first run happens right after start."""
        ran = threading.Event()

        scheduler = SchedulerService(job=ran.set, interval_seconds=3600)
        scheduler.start()
        try:
            assert ran.wait(timeout=3)
        finally:
            scheduler.shutdown(wait=True)

    def test_prevents_concurrent_runs(self):
        """Test that max_instances=1 prevents overlapping executions."""
        active = []
        overlaps = []
        lock = threading.Lock()

        def slow_job():
            with lock:
                if active:
                    overlaps.append(True)
                active.append(True)
            time.sleep(0.6)
            with lock:
                active.pop()

        scheduler = SchedulerService(job=slow_job, interval_seconds=0.2)
        scheduler.start()
        time.sleep(1.5)
        scheduler.shutdown(wait=True)

        assert overlaps == []

    def test_get_next_run_time(self):
        """Test getting the next scheduled run time."""
        scheduler = SchedulerService(job=Mock(), interval_seconds=60)

        assert scheduler.get_next_run_time() is None

        scheduler.start()
        try:
            time.sleep(0.1)
            assert isinstance(scheduler.get_next_run_time(), datetime)
        finally:
            scheduler.shutdown(wait=False)


def test_scheduler_drives_processor(queue, chat_payload):
    """Test a started processor delivers a queued message in the background."""
    delivered = threading.Event()
    adapter = Mock()
    adapter.deliver.side_effect = lambda payload: delivered.set()
    message_id = queue.add("chat", chat_payload)
    processor = QueueProcessor(queue, {MessageKind.CHAT: adapter})

    processor.start(60)
    try:
        assert delivered.wait(timeout=3)
    finally:
        processor.stop(wait=True)

    assert queue.get_status(message_id) == MessageStatus.SENT
