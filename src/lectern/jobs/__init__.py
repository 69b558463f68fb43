"""Lectern background ingestion: job queue, worker, source registration."""

from lectern.jobs.queue import Job, JobQueue
from lectern.jobs.registration import SourceRegistrar
from lectern.jobs.worker import IngestWorker

__all__ = ["IngestWorker", "Job", "JobQueue", "SourceRegistrar"]
