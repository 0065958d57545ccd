"""
Push-notification session and the state-change events it delivers.
"""

from .models import (
    JOB_EVENT_HUB,
    TASK_EVENT_HUB,
    JOB_STATE_CHANGE,
    TASK_STATE_CHANGE,
    BEGIN_LISTEN,
    StateTransitionEvent,
    decode_job_state_change,
    decode_task_state_change,
)
from .session import EventSession, EventChannel

__all__ = [
    # models
    "JOB_EVENT_HUB",
    "TASK_EVENT_HUB",
    "JOB_STATE_CHANGE",
    "TASK_STATE_CHANGE",
    "BEGIN_LISTEN",
    "StateTransitionEvent",
    "decode_job_state_change",
    "decode_task_state_change",
    # session
    "EventSession",
    "EventChannel",
]
