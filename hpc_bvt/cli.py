"""
BVT command line.

Usage:
    hpc-bvt [--timeout 60] [--insecure] [--fail-on-transport-error]
            [--job-file job.xml] [--log-level DEBUG]

Connection settings come from the environment (or a .env file):
bvt_hostname, bvt_username, bvt_password.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from hpc_bvt.control_plane.descriptor import JobDescriptor, default_descriptor
from hpc_bvt.errors import ConfigurationError
from hpc_bvt.infra.config import load_config
from hpc_bvt.infra.logging_config import setup_logging
from hpc_bvt.scenario.runner import ScenarioRunner

logger = logging.getLogger("hpc_bvt.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hpc-bvt",
        description="Verify HPC Pack job/task state events end to end",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the job and task to finish (default: bvt_timeout_seconds or 30)"
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=None,
        help="Disable TLS certificate validation (self-signed test endpoints only)"
    )
    parser.add_argument(
        "--fail-on-transport-error",
        action="store_true",
        default=None,
        help="Fail the run on any push-session fault instead of only logging it"
    )
    parser.add_argument(
        "--job-file",
        type=str,
        default=None,
        help="XML job descriptor to submit instead of the built-in single-task job"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default="logs",
        help="Directory for the run log file (default: logs)"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Run the BVT once.

    Any failure is logged and re-raised so the process exits non-zero.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    log_level = (args.log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    setup_logging(log_level, log_dir=args.log_dir)

    try:
        config = load_config().with_overrides(
            timeout_seconds=args.timeout,
            verify_tls=False if args.insecure else None,
            fail_on_transport_error=args.fail_on_transport_error,
        )
        if config.timeout_seconds <= 0:
            raise ConfigurationError(f"--timeout must be positive, got {config.timeout_seconds}")

        if args.job_file:
            try:
                descriptor = JobDescriptor.from_file(args.job_file)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Cannot load job file {args.job_file}: {e}")
        else:
            descriptor = default_descriptor()

        report = asyncio.run(ScenarioRunner(config, descriptor).run())
    except Exception as e:
        logger.error(f"BVT failed: {e}", exc_info=True)
        raise

    logger.info(f"BVT passed for job {report.job_id}")


if __name__ == "__main__":
    sys.exit(main())
