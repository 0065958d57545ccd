"""
State-transition verifier.

Each verifier watches one entity (the job, or one task instance of it) and
checks that every transition it receives starts from the state it last
observed. A mismatch means an event was missed, duplicated or reordered.

Valid job transitions look like:
    Configuring -> Submitted -> Queued -> Running -> Finished
and task transitions like:
    Submitted -> Dispatching -> Running -> Finished

The initial state is seeded, not received: the first event only reports the
move away from it.

A verifier is the only consumer of its channel, so its state is mutated by a
single task on the event loop. Failures are returned as VerificationResult
values and forwarded to the runner's failure queue rather than raised inside
the consumer task.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from hpc_bvt.errors import StateAssertionError
from hpc_bvt.events.models import StateTransitionEvent
from hpc_bvt.infra.config import TERMINAL_STATE

logger = logging.getLogger(__name__)

JOB_INITIAL_STATE = "Configuring"
TASK_INITIAL_STATE = "Submitted"


def states_equal(left: Optional[str], right: Optional[str]) -> bool:
    """Service states compare case-insensitively."""
    if left is None or right is None:
        return left is right
    return left.casefold() == right.casefold()


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of applying one event."""

    ok: bool
    error: Optional[StateAssertionError] = None
    applied: bool = False

    @classmethod
    def accepted(cls) -> "VerificationResult":
        return cls(ok=True, applied=True)

    @classmethod
    def ignored(cls) -> "VerificationResult":
        return cls(ok=True, applied=False)

    @classmethod
    def failure(cls, error: StateAssertionError) -> "VerificationResult":
        return cls(ok=False, error=error)


@dataclass
class JobScope:
    """Matches job-level events of one job."""

    job_id: int

    def matches(self, event: StateTransitionEvent) -> bool:
        return not event.is_task_event and event.job_id == self.job_id

    def describe(self) -> str:
        return f"job {self.job_id}"


@dataclass
class TaskScope:
    """
    Matches task events of one task instance of a job.

    When task_id/instance_id are not given, the scope binds to the first task
    event of the job it sees.
    """

    job_id: int
    task_id: Optional[int] = None
    instance_id: Optional[int] = None

    def matches(self, event: StateTransitionEvent) -> bool:
        if not event.is_task_event or event.job_id != self.job_id:
            return False
        if self.task_id is None:
            self.task_id = event.task_id
        if self.instance_id is None:
            self.instance_id = event.instance_id
        return event.task_id == self.task_id and event.instance_id == self.instance_id

    def describe(self) -> str:
        return f"job {self.job_id} task {self.task_id} instance {self.instance_id}"


@dataclass
class Transition:
    previous_state: str
    state: str


class ChannelConsumer:
    """Drains a channel of events into apply() until the first failure."""

    name: str
    channel: Optional[asyncio.Queue]

    def apply(self, event: StateTransitionEvent) -> VerificationResult:
        raise NotImplementedError

    async def run(self, failures: asyncio.Queue) -> None:
        """
        Consume the channel until a failure occurs or the task is cancelled.

        The first failure is put on the shared failures queue.
        """
        if self.channel is None:
            raise ValueError(f"{self.name} verifier has no channel to consume")

        while True:
            event = await self.channel.get()
            result = self.apply(event)
            if not result.ok:
                logger.error(f"[{self.name}] {result.error}")
                await failures.put(result.error)
                return


class StateTransitionVerifier(ChannelConsumer):
    """
    Enforces ordered transitions for one entity.

    Args:
        name: Label used in logs and errors ("job", "task")
        scope: JobScope or TaskScope selecting the relevant events
        initial_state: State known before listening begins
        channel: Queue of StateTransitionEvent to consume in run()
        terminal_state: State that ends the lifecycle
    """

    def __init__(
        self,
        name: str,
        scope,
        initial_state: str,
        channel: Optional[asyncio.Queue] = None,
        terminal_state: str = TERMINAL_STATE,
    ):
        self.name = name
        self.scope = scope
        self.initial_state = initial_state
        self.channel = channel
        self.terminal_state = terminal_state

        self.last_observed_state = initial_state
        self.history: List[Transition] = []
        self.failure: Optional[StateAssertionError] = None
        self.reached_terminal = asyncio.Event()

    @property
    def is_terminal(self) -> bool:
        return states_equal(self.last_observed_state, self.terminal_state)

    def apply(self, event: StateTransitionEvent) -> VerificationResult:
        """
        Check one event against the last observed state and record it.

        Events outside the scope are ignored. Once a verifier has failed it
        rejects every further event.
        """
        if self.failure is not None:
            return VerificationResult.failure(self.failure)

        if not self.scope.matches(event):
            logger.debug(f"[{self.name}] ignoring event outside {self.scope.describe()}: {event.describe()}")
            return VerificationResult.ignored()

        logger.info(event.describe())

        if not states_equal(event.previous_state, self.last_observed_state):
            self.failure = StateAssertionError(
                f"{self.name.capitalize()} state transition out of order for {self.scope.describe()}: "
                f"expected previous state '{self.last_observed_state}', "
                f"received previous state '{event.previous_state}' (new state '{event.state}')",
                expected=self.last_observed_state,
                actual=event.previous_state,
            )
            return VerificationResult.failure(self.failure)

        self.history.append(Transition(previous_state=event.previous_state, state=event.state))
        self.last_observed_state = event.state

        if self.is_terminal:
            logger.info(f"[{self.name}] reached terminal state {event.state}")
            self.reached_terminal.set()

        return VerificationResult.accepted()

    def assert_terminal(self) -> None:
        """
        Raises:
            StateAssertionError: If the last observed state is not terminal
        """
        if not self.is_terminal:
            raise StateAssertionError(
                f"{self.name.capitalize()} did not finish: expected final state "
                f"'{self.terminal_state}', observed '{self.last_observed_state}'",
                expected=self.terminal_state,
                actual=self.last_observed_state,
            )

    def transitions(self) -> List[str]:
        return [f"{t.previous_state} -> {t.state}" for t in self.history]


class TaskSetVerifier(ChannelConsumer):
    """
    Enforces ordered transitions for every task instance of one job.

    A StateTransitionVerifier seeded with the task initial state is created
    for each (task_id, instance_id) on its first event. The set is terminal
    once at least expected_tasks instances were seen and all of them finished.

    Args:
        job_id: Job whose task events are checked
        expected_tasks: Number of task instances that must finish
        channel: Queue of StateTransitionEvent to consume in run()
        terminal_state: State that ends each task lifecycle
    """

    def __init__(
        self,
        job_id: int,
        expected_tasks: int = 1,
        channel: Optional[asyncio.Queue] = None,
        terminal_state: str = TERMINAL_STATE,
    ):
        if expected_tasks < 1:
            raise ValueError(f"expected_tasks must be at least 1, got {expected_tasks}")

        self.name = "task"
        self.job_id = job_id
        self.expected_tasks = expected_tasks
        self.channel = channel
        self.terminal_state = terminal_state

        self.verifiers: Dict[Tuple[int, int], StateTransitionVerifier] = {}
        self.failure: Optional[StateAssertionError] = None
        self.reached_terminal = asyncio.Event()

    @property
    def finished_count(self) -> int:
        return sum(1 for verifier in self.verifiers.values() if verifier.is_terminal)

    @property
    def is_terminal(self) -> bool:
        return len(self.verifiers) >= self.expected_tasks and self.finished_count == len(self.verifiers)

    @property
    def last_observed_state(self) -> str:
        """State of the first unfinished task instance, or the terminal state."""
        if not self.verifiers:
            return TASK_INITIAL_STATE
        for verifier in self.verifiers.values():
            if not verifier.is_terminal:
                return verifier.last_observed_state
        if len(self.verifiers) < self.expected_tasks:
            return TASK_INITIAL_STATE
        return list(self.verifiers.values())[-1].last_observed_state

    def apply(self, event: StateTransitionEvent) -> VerificationResult:
        if self.failure is not None:
            return VerificationResult.failure(self.failure)

        if not event.is_task_event or event.job_id != self.job_id:
            logger.debug(f"[{self.name}] ignoring event outside job {self.job_id}: {event.describe()}")
            return VerificationResult.ignored()

        key = (event.task_id, event.instance_id)
        verifier = self.verifiers.get(key)
        if verifier is None:
            scope = TaskScope(self.job_id, task_id=event.task_id, instance_id=event.instance_id)
            verifier = StateTransitionVerifier(
                self.name, scope, TASK_INITIAL_STATE, terminal_state=self.terminal_state
            )
            self.verifiers[key] = verifier
            logger.info(f"[{self.name}] tracking {scope.describe()} ({len(self.verifiers)}/{self.expected_tasks})")

        result = verifier.apply(event)
        if not result.ok:
            self.failure = result.error
            return result

        if self.is_terminal and not self.reached_terminal.is_set():
            logger.info(f"[{self.name}] all {len(self.verifiers)} task instance(s) reached {self.terminal_state}")
            self.reached_terminal.set()

        return result

    def assert_terminal(self) -> None:
        """
        Raises:
            StateAssertionError: If fewer than expected_tasks instances were
                seen, or any seen instance has not finished
        """
        if self.is_terminal:
            return

        observed = ", ".join(
            f"{verifier.scope.describe()}: {verifier.last_observed_state}"
            for verifier in self.verifiers.values()
        ) or "no task events"
        raise StateAssertionError(
            f"Tasks did not finish: expected {self.expected_tasks} task instance(s) in final state "
            f"'{self.terminal_state}', {self.finished_count} finished ({observed})",
            expected=self.terminal_state,
            actual=self.last_observed_state,
        )

    def transitions(self) -> List[str]:
        """Applied transitions; prefixed with the task instance when several are tracked."""
        if len(self.verifiers) == 1:
            return next(iter(self.verifiers.values())).transitions()
        return [
            f"task {task_id}.{instance_id}: {transition}"
            for (task_id, instance_id), verifier in self.verifiers.items()
            for transition in verifier.transitions()
        ]
