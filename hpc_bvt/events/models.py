"""
State-change events pushed by the job and task hubs.

Hub signatures:
- JobEventHub.JobStateChange(id, state, previousState)
- TaskEventHub.TaskStateChange(id, taskId, instanceId, state, previousState)
Both hubs expose BeginListen(jobId) to subscribe to one job.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence

JOB_EVENT_HUB = "JobEventHub"
TASK_EVENT_HUB = "TaskEventHub"

JOB_STATE_CHANGE = "JobStateChange"
TASK_STATE_CHANGE = "TaskStateChange"

BEGIN_LISTEN = "BeginListen"


@dataclass(frozen=True)
class StateTransitionEvent:
    """
    One state transition of a job or of a task instance.

    Task events carry task_id and instance_id; job events leave them None.
    """

    job_id: int
    state: str
    previous_state: str
    task_id: Optional[int] = None
    instance_id: Optional[int] = None

    @property
    def is_task_event(self) -> bool:
        return self.task_id is not None

    def describe(self) -> str:
        if self.is_task_event:
            return (
                f"Job: {self.job_id}, Task: {self.task_id}, Instance: {self.instance_id}, "
                f"State: {self.state}, Previous State: {self.previous_state}"
            )
        return f"Job: {self.job_id}, State: {self.state}, Previous State: {self.previous_state}"


def _expect_args(args: Sequence[Any], count: int, event: str) -> None:
    if len(args) != count:
        raise ValueError(f"{event} expects {count} arguments, got {len(args)}: {list(args)!r}")


def decode_job_state_change(args: Sequence[Any]) -> StateTransitionEvent:
    """
    Decode JobStateChange arguments.

    Raises:
        ValueError: On a wrong argument count or a non-numeric id
    """
    _expect_args(args, 3, JOB_STATE_CHANGE)
    job_id, state, previous_state = args
    return StateTransitionEvent(
        job_id=int(job_id),
        state=str(state),
        previous_state=str(previous_state),
    )


def decode_task_state_change(args: Sequence[Any]) -> StateTransitionEvent:
    """
    Decode TaskStateChange arguments.

    Raises:
        ValueError: On a wrong argument count or non-numeric ids
    """
    _expect_args(args, 5, TASK_STATE_CHANGE)
    job_id, task_id, instance_id, state, previous_state = args
    return StateTransitionEvent(
        job_id=int(job_id),
        state=str(state),
        previous_state=str(previous_state),
        task_id=int(task_id),
        instance_id=int(instance_id),
    )
