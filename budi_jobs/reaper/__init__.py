"""
Reaper module.
Contains the lease reaper for recovering in-flight jobs.
"""

from budi_jobs.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
