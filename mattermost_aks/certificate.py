"""
Certificate Orchestrator
Drives cert-manager through an HTTP-01 challenge served by the Gateway
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Tuple

import pulumi

from .cluster import ClusterApi, find_condition
from .errors import ExternalUnavailable, Timeout
from .manifests import (
    ACME_CHALLENGE_ROUTE,
    ACME_SOLVER_LABEL,
    acme_challenge_route,
    certificate_manifest,
)
from .retry import CancelToken, retry_until


class CertificateState(Enum):
    NOT_REQUESTED = "NotRequested"
    ALREADY_READY = "AlreadyReady"
    PENDING = "Pending"
    VALIDATING = "Validating"
    SOLVER_NOT_FOUND = "SolverNotFound"
    READY = "Ready"
    TIMED_OUT = "TimedOut"


@dataclass(frozen=True)
class RequestHandle:
    name: str
    namespace: str


class CertificateAgent(Protocol):
    """What the orchestrator needs from the certificate authority agent"""

    def find_request(self, secret_name: str) -> Optional[Tuple[RequestHandle, bool]]: ...

    def request_certificate(self, domain: str, secret_name: str, issuer_ref: str) -> RequestHandle: ...

    def get_request_status(self, handle: RequestHandle) -> bool: ...


class CertManagerAgent:
    """
    cert-manager as the certificate authority agent

    One Certificate object per TLS secret, named after the secret, so a
    (domain, secret) pair never has more than one live request.
    """

    def __init__(self, cluster: ClusterApi, namespace: str):
        self.cluster = cluster
        self.namespace = namespace

    def _ready(self, obj) -> bool:
        condition = find_condition(obj, "Ready")
        return condition is not None and condition.is_true

    def find_request(self, secret_name: str) -> Optional[Tuple[RequestHandle, bool]]:
        obj = self.cluster.get_object("Certificate", secret_name, self.namespace)
        if obj is None:
            return None
        return RequestHandle(secret_name, self.namespace), self._ready(obj)

    def request_certificate(self, domain: str, secret_name: str, issuer_ref: str) -> RequestHandle:
        self.cluster.apply_manifest(certificate_manifest(
            name=secret_name,
            namespace=self.namespace,
            domain=domain,
            secret_name=secret_name,
            issuer_name=issuer_ref,
        ))
        return RequestHandle(secret_name, self.namespace)

    def get_request_status(self, handle: RequestHandle) -> bool:
        return self._ready(self.cluster.get_object("Certificate", handle.name, handle.namespace))


@dataclass(frozen=True)
class CertificateOutcome:
    state: CertificateState
    history: Tuple[CertificateState, ...]
    solver_service: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state in (CertificateState.READY, CertificateState.ALREADY_READY)


class CertificateOrchestrator:
    """
    Runs one certificate request through its state machine

    Timeouts are soft: the outcome is TIMED_OUT and the caller decides what
    to do. The request stays in the cluster and is picked up as
    ALREADY_READY by a later run once cert-manager finishes.
    """

    def __init__(self, agent: CertificateAgent, cluster: ClusterApi,
                 namespace: str, gateway_name: str,
                 poll_interval_seconds: float = 10,
                 solver_poll_interval_seconds: float = 5,
                 max_attempts: int = 30,
                 cancel: Optional[CancelToken] = None,
                 sleep: Optional[Callable[[float], None]] = None):
        self.agent = agent
        self.cluster = cluster
        self.namespace = namespace
        self.gateway_name = gateway_name
        self.poll_interval_seconds = poll_interval_seconds
        self.solver_poll_interval_seconds = solver_poll_interval_seconds
        self.max_attempts = max_attempts
        self.cancel = cancel
        self.sleep = sleep

    def ensure_certificate(self, domain: str, secret_name: str, issuer_ref: str) -> CertificateOutcome:
        history: List[CertificateState] = []

        existing = self.agent.find_request(secret_name)
        if existing is not None and existing[1]:
            pulumi.log.info(f"Certificate {secret_name} already exists and is ready")
            history.append(CertificateState.ALREADY_READY)
            return CertificateOutcome(CertificateState.ALREADY_READY, tuple(history))

        if existing is None:
            history.append(CertificateState.NOT_REQUESTED)
            pulumi.log.info(f"Requesting certificate {secret_name} for {domain} from {issuer_ref}...")
            handle = self.agent.request_certificate(domain, secret_name, issuer_ref)
        else:
            handle = existing[0]
            pulumi.log.info(f"Certificate {secret_name} exists but is not ready, checking ACME challenge setup...")
        history.append(CertificateState.PENDING)

        solver = self._discover_solver()
        if solver is not None:
            history.append(CertificateState.VALIDATING)
            pulumi.log.info(f"Found ACME solver service: {solver}")
            self.cluster.apply_manifest(acme_challenge_route(self.namespace, self.gateway_name, domain, solver))
            pulumi.log.info(f"ACME challenge route {ACME_CHALLENGE_ROUTE} created for {domain}")
        else:
            history.append(CertificateState.SOLVER_NOT_FOUND)
            pulumi.log.warn("ACME solver service not found. Certificate may fail to issue; waiting anyway.")

        try:
            ready = retry_until(lambda: self.agent.get_request_status(handle),
                                self.poll_interval_seconds, self.max_attempts,
                                describe=f"certificate {secret_name} to be issued",
                                cancel=self.cancel, sleep=self.sleep)
        finally:
            self._delete_validation_route()

        if isinstance(ready, Timeout):
            pulumi.log.warn(f"{ready}. Certificate issuance may still complete in the background.")
            history.append(CertificateState.TIMED_OUT)
            return CertificateOutcome(CertificateState.TIMED_OUT, tuple(history), solver)

        pulumi.log.info(f"Certificate {secret_name} issued")
        history.append(CertificateState.READY)
        return CertificateOutcome(CertificateState.READY, tuple(history), solver)

    def _discover_solver(self) -> Optional[str]:
        def probe() -> Optional[str]:
            services = self.cluster.list_services_by_label(ACME_SOLVER_LABEL, self.namespace)
            return services[0] if services else None

        def on_retry(attempt: int, max_attempts: int, observed) -> None:
            pulumi.log.info(f"Waiting for solver service... ({attempt}/{max_attempts})")

        found = retry_until(probe, self.solver_poll_interval_seconds, self.max_attempts,
                            describe="ACME solver service", on_retry=on_retry,
                            cancel=self.cancel, sleep=self.sleep)
        return None if isinstance(found, Timeout) else found

    def _delete_validation_route(self) -> None:
        try:
            self.cluster.delete_object("HTTPRoute", ACME_CHALLENGE_ROUTE, self.namespace)
        except ExternalUnavailable as e:
            pulumi.log.warn(f"Could not delete ACME challenge route {ACME_CHALLENGE_ROUTE}: {e}")
