"""
Background jobs.
"""

from .job_manager import BackgroundJobManager, Job, JobPriority, JobResult, JobState, JobType

__all__ = [
    "BackgroundJobManager",
    "Job",
    "JobPriority",
    "JobResult",
    "JobState",
    "JobType",
]
