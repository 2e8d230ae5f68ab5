"""
DNS Gate
Waits for the operator's DNS record to point at the Gateway
"""

import ipaddress
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

import pulumi

from .errors import ExternalUnavailable, Timeout
from .retry import CancelToken, retry_until


class DnsResolver(Protocol):
    def available(self) -> bool: ...

    def resolve(self, domain: str, resolver_address: Optional[str] = None) -> Optional[str]: ...


def is_ipv4(value: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(value), ipaddress.IPv4Address)
    except ValueError:
        return False


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class DigResolver:
    """
    Forward lookups with ``dig +short`` against a chosen resolver

    CNAME answers are skipped; the first IPv4 address in the answer wins.
    """

    def __init__(self, timeout: int = 10, binary: str = "dig",
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.timeout = timeout
        self.binary = binary
        self._runner = runner

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def resolve(self, domain: str, resolver_address: Optional[str] = None) -> Optional[str]:
        command = [self.binary, "+short", domain]
        if resolver_address:
            command.append(f"@{resolver_address}")
        try:
            result = self._runner(command, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ExternalUnavailable(f"{self.binary} not found in PATH")
        except subprocess.TimeoutExpired:
            raise ExternalUnavailable(f"{self.binary} {domain} timed out after {self.timeout}s")
        if result.returncode != 0:
            raise ExternalUnavailable(
                f"{self.binary} {domain} failed (exit {result.returncode}): {(result.stderr or '').strip()}")

        for line in result.stdout.splitlines():
            line = line.strip()
            if is_ipv4(line):
                return line
        return None


class DnsStatus(Enum):
    RESOLVED = "Resolved"
    DEGRADED = "Degraded"


@dataclass(frozen=True)
class DnsExpectation:
    domain: str
    expected_address: str


@dataclass(frozen=True)
class DnsResult:
    status: DnsStatus
    expectation: DnsExpectation
    resolved_address: Optional[str] = None
    attempts: int = 0
    reason: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.status is DnsStatus.RESOLVED


class DnsGate:
    """
    Polls the resolver until the domain points at the expected address

    A wait that runs out is reported as DEGRADED, never raised; the caller
    decides whether the operator may override it.
    """

    def __init__(self, resolver: DnsResolver, resolver_address: Optional[str] = None,
                 poll_interval_seconds: float = 10, max_attempts: int = 30,
                 cancel: Optional[CancelToken] = None,
                 sleep: Optional[Callable[[float], None]] = None):
        self.resolver = resolver
        self.resolver_address = resolver_address
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.cancel = cancel
        self.sleep = sleep

    def expected_address_for(self, gateway_address: str) -> str:
        """
        Azure ALB Gateways publish an FQDN; resolve it once so an A record
        can be compared. Falls back to the address itself.
        """
        if is_ip_address(gateway_address) or not self.resolver.available():
            return gateway_address
        try:
            resolved = self.resolver.resolve(gateway_address, self.resolver_address)
        except ExternalUnavailable as e:
            pulumi.log.warn(f"Could not resolve Gateway address {gateway_address}: {e}")
            return gateway_address
        return resolved or gateway_address

    def wait_for_resolution(self, domain: str, expected_address: str,
                            resolver_address: Optional[str] = None,
                            max_attempts: Optional[int] = None) -> DnsResult:
        expectation = DnsExpectation(domain, expected_address)
        resolver_address = resolver_address or self.resolver_address
        max_attempts = max_attempts or self.max_attempts

        if not self.resolver.available():
            pulumi.log.warn("DNS resolver tool not found (install dnsutils or bind-tools); "
                            "continuing without DNS verification")
            return DnsResult(DnsStatus.DEGRADED, expectation, reason="resolver-unavailable")

        pulumi.log.info(f"Checking DNS propagation for {domain} "
                        f"(using DNS server: {resolver_address or 'system default'})...")
        attempts = 0

        def probe() -> Optional[str]:
            nonlocal attempts
            attempts += 1
            return self.resolver.resolve(domain, resolver_address)

        def on_retry(attempt: int, total: int, resolved: Optional[str]) -> None:
            if resolved:
                pulumi.log.info(f"DNS not yet propagated: {domain} -> {resolved} "
                                f"(expected {expected_address}) - attempt {attempt}/{total}")
            else:
                pulumi.log.info(f"DNS not yet configured: {domain} has no DNS record - attempt {attempt}/{total}")

        result = retry_until(probe, self.poll_interval_seconds, max_attempts,
                             describe=f"DNS for {domain}",
                             accept=lambda resolved: resolved == expected_address,
                             on_retry=on_retry, cancel=self.cancel, sleep=self.sleep)

        if isinstance(result, Timeout):
            pulumi.log.warn(f"DNS propagation timeout for {domain} after {attempts} attempts")
            return DnsResult(DnsStatus.DEGRADED, expectation,
                             resolved_address=result.last_observed,
                             attempts=attempts, reason="timeout")

        pulumi.log.info(f"DNS propagated successfully! {domain} resolves to {expected_address}")
        return DnsResult(DnsStatus.RESOLVED, expectation, resolved_address=result, attempts=attempts)
