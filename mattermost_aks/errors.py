"""
Errors and soft-failure results
Exceptions are raised for defects and unreachable collaborators,
bounded waits report a Timeout value instead
"""

from dataclasses import dataclass
from typing import Any, Optional


class GatewayTlsError(Exception):
    """Base class for all provisioning errors"""


class ConfigError(GatewayTlsError):
    """Required configuration is missing or malformed"""


class PreconditionError(GatewayTlsError):
    """An operation was invoked before the state it depends on exists"""


class ExternalUnavailable(GatewayTlsError):
    """The Cluster API, certificate agent or DNS resolver could not be reached"""


class Cancelled(GatewayTlsError):
    """The run deadline passed or the operator aborted the run"""


@dataclass(frozen=True)
class Timeout:
    """
    A bounded wait exhausted its attempt budget

    Falsy, so callers can write ``if not result`` for the common case.
    """
    operation: str
    attempts: int
    interval: float
    last_observed: Optional[Any] = None

    @property
    def waited_seconds(self) -> float:
        """Time spent sleeping; there is no sleep after the last attempt"""
        return (self.attempts - 1) * self.interval

    def __bool__(self) -> bool:
        return False

    def __str__(self) -> str:
        return (f"{self.operation} did not complete after {self.attempts} attempts "
                f"({self.waited_seconds:.0f}s); re-run to retry")
