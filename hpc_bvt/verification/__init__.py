"""
Ordered state-transition verification for jobs and tasks.
"""

from .verifier import (
    JOB_INITIAL_STATE,
    TASK_INITIAL_STATE,
    JobScope,
    TaskScope,
    TaskSetVerifier,
    StateTransitionVerifier,
    VerificationResult,
    states_equal,
)

__all__ = [
    "JOB_INITIAL_STATE",
    "TASK_INITIAL_STATE",
    "JobScope",
    "TaskScope",
    "TaskSetVerifier",
    "StateTransitionVerifier",
    "VerificationResult",
    "states_equal",
]
