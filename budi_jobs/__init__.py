"""
Budi Jobs

Job submission and delivery core for the audio API: typed job records,
a list-backed Redis queue, an enqueue gateway and worker dispatch loops
with retry and dead-letter handling.
"""

__version__ = "1.0.0"
