"""
Bounded polling shared by every waiting component
"""

import threading
import time
from typing import Any, Callable, Optional

import pulumi

from .errors import Cancelled, ExternalUnavailable, Timeout


class CancelToken:
    """
    Cooperative cancellation for a whole deployment run

    Args:
        deadline_seconds: Overall run budget; None or 0 disables the deadline
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(self, deadline_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def check(self) -> None:
        if self._event.is_set():
            raise Cancelled("run cancelled by operator")
        if self._deadline is not None and self._clock() >= self._deadline:
            raise Cancelled("overall run timeout reached")

    def wait(self, seconds: float) -> None:
        """Sleep up to ``seconds``, returning early (and raising) on cancellation"""
        if self._deadline is not None:
            seconds = min(seconds, max(0.0, self._deadline - self._clock()))
        self._event.wait(seconds)
        self.check()


def _log_attempt(describe: str) -> Callable[[int, int, Any], None]:
    def on_retry(attempt: int, max_attempts: int, observed: Any) -> None:
        pulumi.log.info(f"Waiting for {describe}... ({attempt}/{max_attempts})")
    return on_retry


def retry_until(probe: Callable[[], Any],
                interval: float,
                max_attempts: int,
                describe: str = "operation",
                accept: Optional[Callable[[Any], bool]] = None,
                on_retry: Optional[Callable[[int, int, Any], None]] = None,
                cancel: Optional[CancelToken] = None,
                sleep: Optional[Callable[[float], None]] = None):
    """
    Call ``probe`` until its result is accepted or the attempt budget runs out

    Args:
        probe: Zero-argument callable observing the external system
        interval: Seconds between attempts (no sleep after the last one)
        max_attempts: Attempt budget, at least 1
        describe: Human readable name used in log lines and the Timeout
        accept: Predicate on the observed value, truthiness by default
        on_retry: Called with (attempt, max_attempts, observed) after a miss
        cancel: Token checked before every attempt and after every sleep
        sleep: Sleep function; defaults to the token's wait or time.sleep

    Returns:
        The accepted value, or a Timeout carrying the last observation
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    accept = accept or bool
    on_retry = on_retry or _log_attempt(describe)
    if sleep is None:
        sleep = cancel.wait if cancel is not None else time.sleep

    observed = None
    for attempt in range(1, max_attempts + 1):
        if cancel is not None:
            cancel.check()
        try:
            observed = probe()
        except ExternalUnavailable as e:
            pulumi.log.warn(f"{describe}: attempt {attempt}/{max_attempts} failed: {e}")
            observed = None
        else:
            if accept(observed):
                return observed
            on_retry(attempt, max_attempts, observed)

        if attempt < max_attempts:
            sleep(interval)
            if cancel is not None:
                cancel.check()

    return Timeout(describe, max_attempts, interval, observed)
