"""
HPC Pack REST event BVT.

Verifies that the job service reports ordered job and task state transitions
over its push-notification channel while the job is driven through the REST
API.
"""

__version__ = "1.0.0"
