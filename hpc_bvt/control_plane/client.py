"""
HPC Pack REST control-plane client.

Creates and submits jobs. Every request carries the Basic-Auth header from
the run credentials; non-success responses become ApiError. No retries.
"""

import logging
from typing import Optional

import httpx

from hpc_bvt.errors import ApiError
from hpc_bvt.infra.config import BvtConfig
from hpc_bvt.infra.tls import client_ssl_context
from hpc_bvt.control_plane.descriptor import JobDescriptor

logger = logging.getLogger(__name__)

CREATE_JOB_PATH = "/hpc/jobs/jobFile"
SUBMIT_JOB_PATH = "/hpc/jobs/{job_id}/submit"

REQUEST_TIMEOUT_SECONDS = 60.0


def check_http_error(response: httpx.Response) -> None:
    """
    Raise ApiError if the response is not a success.

    Args:
        response: Response to check

    Raises:
        ApiError: With the status code and the raw response body
    """
    if not response.is_success:
        raise ApiError(response.status_code, response.text)


class HpcClient:
    """
    Async client for the job endpoints.

    Usage:
        async with HpcClient(config) as client:
            job_id = await client.create_job(descriptor)
            await client.submit_job(job_id)
    """

    def __init__(
        self,
        config: BvtConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        """
        Args:
            config: Run configuration (host, credentials, TLS option)
            transport: Optional httpx transport, used by tests
            timeout: Per-request timeout in seconds
        """
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.api_base_url,
            headers={"Authorization": config.credentials.authorization_header()},
            verify=client_ssl_context(config.verify_tls),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "HpcClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_job(self, descriptor: JobDescriptor) -> int:
        """
        Create a job from an XML descriptor.

        The XML document is sent JSON-encoded as a string; the service
        answers with the new job id as plain text.

        Returns:
            int: The new job id

        Raises:
            ApiError: On a non-success status or an unusable job id
        """
        xml_job = descriptor.to_xml()
        logger.info(f"Create a job from XML:\n{xml_job}")

        response = await self._client.post(CREATE_JOB_PATH, json=xml_job)
        check_http_error(response)

        body = response.text.strip()
        try:
            job_id = int(body)
        except ValueError:
            raise ApiError(response.status_code, f"Invalid job id in response: {body!r}")
        if job_id <= 0:
            raise ApiError(response.status_code, f"Invalid job id in response: {body!r}")

        logger.info(f"Job {job_id} created")
        return job_id

    async def submit_job(self, job_id: int) -> None:
        """
        Submit a created job.

        Raises:
            ApiError: On a non-success status
        """
        logger.info(f"Submit job {job_id}")
        response = await self._client.post(SUBMIT_JOB_PATH.format(job_id=job_id), content=b"")
        check_http_error(response)
