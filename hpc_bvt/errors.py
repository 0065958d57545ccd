"""
BVT exceptions.

Every error aborts the run and is surfaced to the entry point:
- ConfigurationError: missing settings, raised before any network activity
- ApiError: non-success response from the REST control plane
- StateAssertionError: observed job/task state diverges from expected
- TransportError: push-session fault
"""

from typing import Optional


class BvtError(Exception):
    """Base exception for all BVT errors."""
    pass


class ConfigurationError(BvtError):
    """Raised when required configuration is missing or invalid."""
    pass


class ApiError(BvtError):
    """Raised when a control-plane call returns a non-success HTTP status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"ApiError: Code = {status_code}, Message = {message}")


class StateAssertionError(BvtError, AssertionError):
    """
    Raised when an observed state diverges from the expected one.

    Covers both ordering violations (a missed, duplicated or reordered
    event) and a final state that is not terminal.
    """

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class TransportError(BvtError):
    """Raised or reported when the push-notification session faults."""
    pass


class HubInvocationError(TransportError):
    """Raised when a remote hub method fails or does not answer in time."""

    def __init__(self, hub: str, method: str, reason: str):
        self.hub = hub
        self.method = method
        self.reason = reason
        super().__init__(f"Exception on invoking server method {hub}.{method}: {reason}")


class ChannelOverflowError(TransportError):
    """
    Reported when an event channel is full and an event had to be dropped.

    A dropped event makes the transition history incomplete, so this fault
    always fails the run.
    """

    def __init__(self, hub: str, event: str, maxsize: int):
        self.hub = hub
        self.event = event
        self.maxsize = maxsize
        super().__init__(f"Channel {hub}.{event} is full ({maxsize} events), event dropped")
