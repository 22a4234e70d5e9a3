"""Durable embedding job queue and its worker."""

from revue.jobs.queue import JobQueue, QueueStats
from revue.jobs.worker import JobWorker, is_job_retryable

__all__ = [
    "JobQueue",
    "JobWorker",
    "QueueStats",
    "is_job_retryable",
]
