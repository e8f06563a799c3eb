"""
Worker module.
Contains the dispatch loop and the handler registry.
"""

from budi_jobs.worker.handlers import HandlerRegistry, JobHandler
from budi_jobs.worker.main import Worker, WorkerStats, build_workers, run, run_workers

__all__ = [
    "HandlerRegistry",
    "JobHandler",
    "Worker",
    "WorkerStats",
    "build_workers",
    "run_workers",
    "run",
]
