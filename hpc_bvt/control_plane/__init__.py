"""
REST control plane - job descriptors, job creation and submission.
"""

from .descriptor import JobDescriptor, TaskSpec, default_descriptor
from .client import HpcClient, check_http_error

__all__ = [
    "JobDescriptor",
    "TaskSpec",
    "default_descriptor",
    "HpcClient",
    "check_http_error",
]
