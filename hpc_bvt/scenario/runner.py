"""
BVT scenario runner.

Single attempt, fail fast:
1. create the job from its descriptor
2. open the event session with a job verifier and one task verifier per
   task instance
3. BeginListen on both hubs
4. submit the job
5. wait for both verifiers to reach the terminal state, a failure, or the
   deadline, whichever comes first
6. assert both final states are terminal
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from hpc_bvt.control_plane.client import HpcClient
from hpc_bvt.control_plane.descriptor import JobDescriptor, default_descriptor
from hpc_bvt.errors import ChannelOverflowError, TransportError
from hpc_bvt.events.models import (
    BEGIN_LISTEN,
    JOB_EVENT_HUB,
    JOB_STATE_CHANGE,
    TASK_EVENT_HUB,
    TASK_STATE_CHANGE,
    decode_job_state_change,
    decode_task_state_change,
)
from hpc_bvt.events.session import EventSession
from hpc_bvt.infra.config import BvtConfig
from hpc_bvt.verification.verifier import (
    JOB_INITIAL_STATE,
    JobScope,
    StateTransitionVerifier,
    TaskSetVerifier,
)

logger = logging.getLogger(__name__)


@dataclass
class ScenarioReport:
    """Summary of a successful run."""

    job_id: int
    job_state: str
    task_state: str
    job_transitions: List[str] = field(default_factory=list)
    task_transitions: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class ScenarioRunner:
    """
    Drives one job through its lifecycle and verifies the reported transitions.

    The runner owns the client, the session and both verifiers for the
    duration of run(); all of them are released when it returns or raises.
    """

    def __init__(
        self,
        config: BvtConfig,
        descriptor: Optional[JobDescriptor] = None,
        client_factory: Callable[[BvtConfig], HpcClient] = HpcClient,
        session_factory: Callable[..., EventSession] = EventSession,
    ):
        self.config = config
        self.descriptor = descriptor or default_descriptor()
        self._client_factory = client_factory
        self._session_factory = session_factory
        self._failures: Optional[asyncio.Queue] = None

    async def run(self) -> ScenarioReport:
        """
        Execute the scenario.

        Returns:
            ScenarioReport: Final states and applied transitions

        Raises:
            ApiError: A control-plane call failed
            TransportError: The session could not be established or a fatal
                session fault occurred
            StateAssertionError: A transition was out of order or a final
                state is not terminal
        """
        started = time.monotonic()
        self._failures = asyncio.Queue()
        client = self._client_factory(self.config)
        session: Optional[EventSession] = None
        consumers: List[asyncio.Task] = []

        try:
            job_id = await client.create_job(self.descriptor)

            session = self._session_factory(self.config, error_handler=self._on_transport_error)
            job_verifier = StateTransitionVerifier(
                "job",
                JobScope(job_id),
                JOB_INITIAL_STATE,
                channel=session.on(JOB_EVENT_HUB, JOB_STATE_CHANGE, decode_job_state_change),
            )
            task_verifier = TaskSetVerifier(
                job_id,
                expected_tasks=len(self.descriptor.tasks),
                channel=session.on(TASK_EVENT_HUB, TASK_STATE_CHANGE, decode_task_state_change),
            )

            await session.connect()
            consumers = [
                asyncio.create_task(job_verifier.run(self._failures)),
                asyncio.create_task(task_verifier.run(self._failures)),
            ]

            logger.info("Begin to listen...")
            await session.invoke(JOB_EVENT_HUB, BEGIN_LISTEN, job_id)
            await session.invoke(TASK_EVENT_HUB, BEGIN_LISTEN, job_id)

            await client.submit_job(job_id)

            await self._wait_for_completion(job_verifier, task_verifier)

            job_verifier.assert_terminal()
            task_verifier.assert_terminal()
        finally:
            for consumer in consumers:
                consumer.cancel()
            if consumers:
                await asyncio.gather(*consumers, return_exceptions=True)
            if session is not None:
                await session.close()
            await client.aclose()

        report = ScenarioReport(
            job_id=job_id,
            job_state=job_verifier.last_observed_state,
            task_state=task_verifier.last_observed_state,
            job_transitions=job_verifier.transitions(),
            task_transitions=task_verifier.transitions(),
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info(
            f"Job {job_id} passed in {report.elapsed_seconds:.1f}s - "
            f"job: {', '.join(report.job_transitions)}; task: {', '.join(report.task_transitions)}"
        )
        return report

    async def _wait_for_completion(
        self,
        job_verifier: StateTransitionVerifier,
        task_verifier: TaskSetVerifier,
    ) -> None:
        """
        Wait for both terminal states, the first failure, or the deadline.

        Raises:
            BvtError: The first failure collected from verifiers or the session
        """
        completion = asyncio.gather(
            job_verifier.reached_terminal.wait(),
            task_verifier.reached_terminal.wait(),
        )
        failure = asyncio.create_task(self._failures.get())

        try:
            done, _ = await asyncio.wait(
                {completion, failure},
                timeout=self.config.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            completion.cancel()
            failure.cancel()

        if failure in done:
            raise failure.result()
        if not done:
            logger.warning(
                f"Timed out after {self.config.timeout_seconds}s - "
                f"job: {job_verifier.last_observed_state}, task: {task_verifier.last_observed_state}"
            )

    def _on_transport_error(self, error: TransportError) -> None:
        """Escalate session faults that must fail the run, log the rest."""
        if isinstance(error, ChannelOverflowError) or self.config.fail_on_transport_error:
            self._failures.put_nowait(error)
        else:
            logger.warning(f"Session fault ignored, relying on the final state check: {error}")
