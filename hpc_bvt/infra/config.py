"""
BVT configuration.

Settings are read once at startup into an immutable BvtConfig which is then
passed to the scenario runner. Nothing reads the environment after that.

Environment variables:
- bvt_hostname, bvt_username, bvt_password: required
- bvt_timeout_seconds: deadline for the job to finish (default: 30)
- bvt_insecure_tls: "true" disables certificate validation (default: false)
- bvt_fail_on_transport_error: "true" makes session faults fatal (default: false)
"""

import base64
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from hpc_bvt.errors import ConfigurationError

# Terminal job/task state
TERMINAL_STATE = "Finished"

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0
DEFAULT_INVOKE_TIMEOUT_SECONDS = 30.0
DEFAULT_CHANNEL_SIZE = 100

# Push-notification endpoint, relative to the host
EVENT_PATH = "/hpc/signalr"

REQUIRED_VARIABLES = ("bvt_hostname", "bvt_username", "bvt_password")


@dataclass(frozen=True)
class Credentials:
    """Host and Basic-Auth credentials shared by all requests."""

    hostname: str
    username: str
    password: str

    def authorization_header(self) -> str:
        """Return the value of the Authorization header."""
        token = base64.b64encode(f"{self.username}:{self.password}".encode("utf-8"))
        return f"Basic {token.decode('ascii')}"

    def __repr__(self) -> str:
        return f"Credentials(hostname={self.hostname!r}, username={self.username!r}, password='***')"


@dataclass(frozen=True)
class BvtConfig:
    """Immutable run configuration."""

    credentials: Credentials
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    verify_tls: bool = True
    fail_on_transport_error: bool = False
    connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    invoke_timeout_seconds: float = DEFAULT_INVOKE_TIMEOUT_SECONDS
    channel_size: int = DEFAULT_CHANNEL_SIZE

    @property
    def api_base_url(self) -> str:
        return f"https://{self.credentials.hostname}"

    @property
    def event_url(self) -> str:
        return f"{self.api_base_url}{EVENT_PATH}"

    def with_overrides(self, **changes) -> "BvtConfig":
        """Return a copy with the non-None values in changes applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _parse_bool(name: str, value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"Environment variable {name} must be a boolean, got {value!r}")


def _parse_positive_float(name: str, value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number, got {value!r}")
    if parsed <= 0:
        raise ConfigurationError(f"Environment variable {name} must be positive, got {value!r}")
    return parsed


def load_config(environ: Optional[Mapping[str, str]] = None) -> BvtConfig:
    """
    Build the run configuration from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        BvtConfig: Immutable configuration

    Raises:
        ConfigurationError: If a required variable is missing or blank, or an
            optional one cannot be parsed
    """
    if environ is None:
        environ = os.environ

    missing = [name for name in REQUIRED_VARIABLES if not (environ.get(name) or "").strip()]
    if missing:
        raise ConfigurationError(
            "Environment variables bvt_hostname, bvt_username and bvt_password must be specified! "
            f"Missing: {', '.join(missing)}"
        )

    credentials = Credentials(
        hostname=environ["bvt_hostname"].strip(),
        username=environ["bvt_username"].strip(),
        password=environ["bvt_password"],
    )

    insecure = _parse_bool("bvt_insecure_tls", environ.get("bvt_insecure_tls"), False)

    return BvtConfig(
        credentials=credentials,
        timeout_seconds=_parse_positive_float(
            "bvt_timeout_seconds", environ.get("bvt_timeout_seconds"), DEFAULT_TIMEOUT_SECONDS
        ),
        verify_tls=not insecure,
        fail_on_transport_error=_parse_bool(
            "bvt_fail_on_transport_error", environ.get("bvt_fail_on_transport_error"), False
        ),
    )
