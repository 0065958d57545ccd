"""
State Transition Tests for the verifier.

Valid job lifecycle:  Configuring -> Submitted -> Queued -> Running -> Finished
Valid task lifecycle: Submitted -> Dispatching -> Running -> Finished

An event is accepted iff its previous state equals the last observed state.
"""

import asyncio

import pytest

from hpc_bvt.errors import StateAssertionError
from hpc_bvt.events.models import StateTransitionEvent
from hpc_bvt.verification.verifier import (
    JOB_INITIAL_STATE,
    TASK_INITIAL_STATE,
    JobScope,
    StateTransitionVerifier,
    TaskScope,
    TaskSetVerifier,
    states_equal,
)

JOB_PATH = [
    ("Submitted", "Configuring"),
    ("Queued", "Submitted"),
    ("Running", "Queued"),
    ("Finished", "Running"),
]

TASK_PATH = [
    ("Dispatching", "Submitted"),
    ("Running", "Dispatching"),
    ("Finished", "Running"),
]


def job_event(state, previous_state, job_id=42):
    return StateTransitionEvent(job_id=job_id, state=state, previous_state=previous_state)


def task_event(state, previous_state, job_id=42, task_id=1, instance_id=0):
    return StateTransitionEvent(
        job_id=job_id,
        state=state,
        previous_state=previous_state,
        task_id=task_id,
        instance_id=instance_id,
    )


@pytest.fixture
def job_verifier():
    return StateTransitionVerifier("job", JobScope(42), JOB_INITIAL_STATE)


@pytest.fixture
def task_verifier():
    return StateTransitionVerifier("task", TaskScope(42), TASK_INITIAL_STATE)


class TestStatesEqual:

    def test_case_insensitive(self):
        assert states_equal("Finished", "FINISHED")
        assert states_equal("running", "Running")
        assert not states_equal("Running", "Queued")


class TestJobTransitions:
    """Job-level transition checks."""

    def test_seeded_with_initial_state(self, job_verifier):
        assert job_verifier.last_observed_state == "Configuring"
        assert job_verifier.is_terminal is False

    def test_happy_path_reaches_terminal(self, job_verifier):
        for state, previous in JOB_PATH:
            result = job_verifier.apply(job_event(state, previous))
            assert result.ok and result.applied

        assert job_verifier.last_observed_state == "Finished"
        assert job_verifier.reached_terminal.is_set()
        assert job_verifier.transitions() == [
            "Configuring -> Submitted",
            "Submitted -> Queued",
            "Queued -> Running",
            "Running -> Finished",
        ]
        job_verifier.assert_terminal()

    def test_previous_state_compared_case_insensitively(self, job_verifier):
        result = job_verifier.apply(job_event("Submitted", "CONFIGURING"))

        assert result.ok
        assert job_verifier.last_observed_state == "Submitted"

    def test_out_of_order_event_fails(self, job_verifier):
        result = job_verifier.apply(job_event("Running", "Queued"))

        assert result.ok is False
        assert isinstance(result.error, StateAssertionError)
        assert isinstance(result.error, AssertionError)
        assert result.error.expected == "Configuring"
        assert result.error.actual == "Queued"
        assert "Configuring" in str(result.error)
        assert "Queued" in str(result.error)
        assert job_verifier.last_observed_state == "Configuring"

    def test_missed_event_fails(self, job_verifier):
        job_verifier.apply(job_event("Submitted", "Configuring"))

        result = job_verifier.apply(job_event("Running", "Queued"))

        assert result.ok is False
        assert result.error.expected == "Submitted"

    def test_replayed_event_fails(self, job_verifier):
        job_verifier.apply(job_event("Submitted", "Configuring"))

        result = job_verifier.apply(job_event("Submitted", "Configuring"))

        assert result.ok is False
        assert result.error.expected == "Submitted"
        assert result.error.actual == "Configuring"

    def test_stays_failed(self, job_verifier):
        job_verifier.apply(job_event("Running", "Queued"))

        result = job_verifier.apply(job_event("Submitted", "Configuring"))

        assert result.ok is False
        assert job_verifier.last_observed_state == "Configuring"

    def test_other_job_is_ignored(self, job_verifier):
        result = job_verifier.apply(job_event("Running", "Queued", job_id=7))

        assert result.ok is True
        assert result.applied is False
        assert job_verifier.last_observed_state == "Configuring"

    def test_task_events_are_ignored(self, job_verifier):
        result = job_verifier.apply(task_event("Dispatching", "Submitted"))

        assert result.applied is False

    def test_assert_terminal_names_observed_state(self, job_verifier):
        job_verifier.apply(job_event("Submitted", "Configuring"))

        with pytest.raises(StateAssertionError) as exc_info:
            job_verifier.assert_terminal()

        assert exc_info.value.actual == "Submitted"
        assert "Submitted" in str(exc_info.value)
        assert "Finished" in str(exc_info.value)


class TestTaskTransitions:
    """Task-level transition checks."""

    def test_happy_path_reaches_terminal(self, task_verifier):
        for state, previous in TASK_PATH:
            assert task_verifier.apply(task_event(state, previous)).ok

        assert task_verifier.is_terminal
        task_verifier.assert_terminal()

    def test_binds_to_first_task_instance(self, task_verifier):
        task_verifier.apply(task_event("Dispatching", "Submitted", task_id=3, instance_id=1))

        result = task_verifier.apply(task_event("Running", "Queued", task_id=4))

        assert result.applied is False
        assert task_verifier.scope.task_id == 3
        assert task_verifier.scope.instance_id == 1

    def test_explicit_task_scope(self):
        verifier = StateTransitionVerifier("task", TaskScope(42, task_id=2, instance_id=0), TASK_INITIAL_STATE)

        assert verifier.apply(task_event("Dispatching", "Submitted", task_id=1)).applied is False
        assert verifier.apply(task_event("Dispatching", "Submitted", task_id=2)).applied is True

    def test_job_events_are_ignored(self, task_verifier):
        assert task_verifier.apply(job_event("Submitted", "Configuring")).applied is False

    def test_still_running_fails_terminal_check(self, task_verifier):
        for state, previous in TASK_PATH[:2]:
            task_verifier.apply(task_event(state, previous))

        with pytest.raises(StateAssertionError) as exc_info:
            task_verifier.assert_terminal()

        assert exc_info.value.actual == "Running"


class TestTaskSetVerifier:
    """Per-instance checks across all tasks of a job."""

    def test_single_task_happy_path(self):
        verifier = TaskSetVerifier(42)

        for state, previous in TASK_PATH:
            assert verifier.apply(task_event(state, previous)).ok

        assert verifier.reached_terminal.is_set()
        assert verifier.last_observed_state == "Finished"
        assert verifier.transitions() == [
            "Submitted -> Dispatching",
            "Dispatching -> Running",
            "Running -> Finished",
        ]
        verifier.assert_terminal()

    def test_each_instance_is_seeded_separately(self):
        verifier = TaskSetVerifier(42, expected_tasks=2)

        verifier.apply(task_event("Dispatching", "Submitted", task_id=1))
        result = verifier.apply(task_event("Dispatching", "Submitted", task_id=2))

        assert result.ok and result.applied
        assert set(verifier.verifiers) == {(1, 0), (2, 0)}

    def test_second_task_out_of_order_fails(self):
        verifier = TaskSetVerifier(42, expected_tasks=2)
        for state, previous in TASK_PATH:
            verifier.apply(task_event(state, previous, task_id=1))

        result = verifier.apply(task_event("Running", "Queued", task_id=2))

        assert result.ok is False
        assert result.error.expected == "Submitted"
        assert result.error.actual == "Queued"
        assert "task 2" in str(result.error)
        assert verifier.apply(task_event("Finished", "Running", task_id=2)).ok is False

    def test_not_terminal_until_all_expected_tasks_finish(self):
        verifier = TaskSetVerifier(42, expected_tasks=2)
        for state, previous in TASK_PATH:
            verifier.apply(task_event(state, previous, task_id=1))

        assert verifier.is_terminal is False
        assert verifier.reached_terminal.is_set() is False
        with pytest.raises(StateAssertionError) as exc_info:
            verifier.assert_terminal()
        assert "1 finished" in str(exc_info.value)

        for state, previous in TASK_PATH:
            verifier.apply(task_event(state, previous, task_id=2))

        assert verifier.reached_terminal.is_set()
        verifier.assert_terminal()
        assert verifier.transitions()[0] == "task 1.0: Submitted -> Dispatching"
        assert len(verifier.transitions()) == 6

    def test_unfinished_instance_is_reported(self):
        verifier = TaskSetVerifier(42, expected_tasks=2)
        for state, previous in TASK_PATH:
            verifier.apply(task_event(state, previous, task_id=1))
        verifier.apply(task_event("Dispatching", "Submitted", task_id=2))

        with pytest.raises(StateAssertionError) as exc_info:
            verifier.assert_terminal()

        assert exc_info.value.actual == "Dispatching"
        assert "task 2 instance 0: Dispatching" in str(exc_info.value)

    def test_other_jobs_and_job_events_are_ignored(self):
        verifier = TaskSetVerifier(42)

        assert verifier.apply(task_event("Running", "Queued", job_id=7)).applied is False
        assert verifier.apply(job_event("Submitted", "Configuring")).applied is False
        assert verifier.verifiers == {}
        assert verifier.last_observed_state == TASK_INITIAL_STATE

    def test_rejects_empty_expectation(self):
        with pytest.raises(ValueError):
            TaskSetVerifier(42, expected_tasks=0)


class TestConsumerLoop:
    """Tests for StateTransitionVerifier.run."""

    @pytest.mark.asyncio
    async def test_consumes_channel_until_terminal(self):
        channel = asyncio.Queue()
        failures = asyncio.Queue()
        verifier = StateTransitionVerifier("job", JobScope(42), JOB_INITIAL_STATE, channel=channel)
        consumer = asyncio.create_task(verifier.run(failures))

        for state, previous in JOB_PATH:
            channel.put_nowait(job_event(state, previous))
        await asyncio.wait_for(verifier.reached_terminal.wait(), 1.0)

        consumer.cancel()
        assert failures.empty()
        assert verifier.last_observed_state == "Finished"

    @pytest.mark.asyncio
    async def test_first_failure_is_forwarded_and_loop_stops(self):
        channel = asyncio.Queue()
        failures = asyncio.Queue()
        verifier = StateTransitionVerifier("job", JobScope(42), JOB_INITIAL_STATE, channel=channel)
        consumer = asyncio.create_task(verifier.run(failures))

        channel.put_nowait(job_event("Queued", "Submitted"))
        channel.put_nowait(job_event("Running", "Queued"))

        error = await asyncio.wait_for(failures.get(), 1.0)
        await asyncio.wait_for(consumer, 1.0)

        assert error.actual == "Submitted"
        assert failures.empty()
        assert channel.qsize() == 1

    @pytest.mark.asyncio
    async def test_run_without_channel_raises(self, job_verifier):
        with pytest.raises(ValueError):
            await job_verifier.run(asyncio.Queue())
