"""
Phase Sequencer
Fixed-order composition of the Gateway, DNS and certificate phases

    CreatingHttpGateway -> AwaitingAddress -> AwaitingDns
        -> IssuingCertificate -> AddingHttpsListener -> Done

The Gateway address is allocated by Azure at run time, so DNS cannot be set
up in advance: the sequencer stops at AwaitingDns and hands the operator the
concrete address. When DNS has not propagated it returns a Pending value
instead of prompting; a front end confirms by calling run() again with the
resume token. Every phase re-checks live state, so a run interrupted
anywhere can simply be started again.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import pulumi

from .certificate import CertificateOrchestrator, CertificateOutcome, CertManagerAgent
from .cluster import ClusterApi, KubectlClusterApi
from .config import DeployConfig
from .dns import DigResolver, DnsGate, DnsResolver, DnsResult, is_ip_address
from .errors import Timeout
from .gateway import GatewayController
from .manifests import GatewaySpec
from .retry import CancelToken


class Phase(Enum):
    CREATING_HTTP_GATEWAY = "CreatingHttpGateway"
    AWAITING_ADDRESS = "AwaitingAddress"
    AWAITING_DNS = "AwaitingDns"
    ISSUING_CERTIFICATE = "IssuingCertificate"
    ADDING_HTTPS_LISTENER = "AddingHttpsListener"
    DONE = "Done"


@dataclass(frozen=True)
class Pending:
    """The run is suspended until the operator confirms the DNS override"""
    phase: Phase
    resume_token: str
    message: str
    gateway_address: str
    dns: DnsResult


@dataclass(frozen=True)
class PhaseReport:
    phase: Phase
    completed: bool
    phases: Tuple[Phase, ...] = ()
    warnings: Tuple[str, ...] = ()
    gateway_address: Optional[str] = None
    expected_address: Optional[str] = None
    dns: Optional[DnsResult] = None
    dns_overridden: bool = False
    certificate: Optional[CertificateOutcome] = None
    https_enabled: bool = False


def dns_override_token(domain: str, gateway_address: str) -> str:
    """
    Confirmation is bound to the domain and the Gateway address the operator
    saw; the address is the published FQDN or IP, not what it resolves to
    """
    return f"dns-override:{domain}:{gateway_address}"


class PhaseSequencer:
    def __init__(self, config: DeployConfig, cluster: ClusterApi,
                 gateways: GatewayController, certificates: CertificateOrchestrator,
                 dns_gate: DnsGate):
        self.config = config
        self.cluster = cluster
        self.gateways = gateways
        self.certificates = certificates
        self.dns_gate = dns_gate
        self.spec = GatewaySpec.from_config(config)

    @classmethod
    def from_config(cls, config: DeployConfig,
                    cluster: Optional[ClusterApi] = None,
                    resolver: Optional[DnsResolver] = None,
                    cancel: Optional[CancelToken] = None,
                    sleep: Optional[Callable[[float], None]] = None) -> "PhaseSequencer":
        """Wire every component from one configuration"""
        cluster = cluster or KubectlClusterApi(config.kube_context, config.command_timeout_seconds)
        resolver = resolver or DigResolver()
        if cancel is None:
            cancel = CancelToken(config.run_timeout_seconds or None)
        gateways = GatewayController(cluster, config.poll_interval_seconds,
                                     config.max_poll_attempts, cancel, sleep)
        certificates = CertificateOrchestrator(
            CertManagerAgent(cluster, config.namespace), cluster,
            namespace=config.namespace,
            gateway_name=config.gateway_name,
            poll_interval_seconds=config.poll_interval_seconds,
            solver_poll_interval_seconds=config.solver_poll_interval_seconds,
            max_attempts=config.max_poll_attempts,
            cancel=cancel, sleep=sleep)
        dns_gate = DnsGate(resolver, config.dns_resolver_address,
                           config.poll_interval_seconds, config.max_poll_attempts,
                           cancel, sleep)
        return cls(config, cluster, gateways, certificates, dns_gate)

    def run(self, resume_token: Optional[str] = None) -> Union[PhaseReport, Pending]:
        """
        Drive the phases in order

        Args:
            resume_token: Token from a previous Pending, confirming the
                operator wants to continue despite DNS not propagating

        Returns:
            PhaseReport when the run finished or halted, Pending when it
            needs operator confirmation
        """
        config = self.config
        visited: List[Phase] = []
        warnings: List[str] = []

        def enter(phase: Phase) -> None:
            visited.append(phase)
            pulumi.log.info(f"Phase: {phase.value}")

        def warn(message: str) -> None:
            warnings.append(message)
            pulumi.log.warn(message)

        def report(phase: Phase, completed: bool, **observed) -> PhaseReport:
            return PhaseReport(phase, completed, tuple(visited), tuple(warnings), **observed)

        enter(Phase.CREATING_HTTP_GATEWAY)
        state = self.gateways.ensure_http_only(self.spec)

        enter(Phase.AWAITING_ADDRESS)
        if state.https_enabled and not self._secret_exists():
            # the HTTPS listener cannot be Programmed until the certificate exists
            warn(f"Gateway has an HTTPS listener but TLS secret {config.tls_secret_name} is missing; "
                 f"waiting for an address only")
            address = self.gateways.wait_for_address(self.spec.name, self.spec.namespace)
        else:
            address = self.gateways.wait_programmed(self.spec.name, self.spec.namespace)
        if isinstance(address, Timeout):
            warn(f"{address}. Gateway has no address, cannot continue.")
            return report(Phase.AWAITING_ADDRESS, False, https_enabled=state.https_enabled)

        expected = self.dns_gate.expected_address_for(address)
        self._print_dns_instructions(address, expected)

        enter(Phase.AWAITING_DNS)
        token = dns_override_token(config.domain, address)
        confirmed = resume_token == token
        if resume_token and not confirmed:
            warn("Resume token does not match the current Gateway address; checking DNS again")
        dns = self.dns_gate.wait_for_resolution(config.domain, expected,
                                                max_attempts=1 if confirmed else None)
        overridden = False
        if not dns.resolved:
            if confirmed:
                overridden = True
                warn(f"Continuing although {config.domain} does not resolve to {expected} (operator override)")
            elif config.allow_dns_override:
                return Pending(
                    phase=Phase.AWAITING_DNS,
                    resume_token=token,
                    message=(f"DNS for {config.domain} does not point at {expected} yet. "
                             f"Verify the record; continuing now may fail certificate validation."),
                    gateway_address=address,
                    dns=dns,
                )
            else:
                warn(f"DNS for {config.domain} did not propagate and override is disabled; re-run to retry")
                return report(Phase.AWAITING_DNS, False, gateway_address=address,
                              expected_address=expected, dns=dns,
                              https_enabled=state.https_enabled)

        observed = dict(gateway_address=address, expected_address=expected,
                        dns=dns, dns_overridden=overridden)

        enter(Phase.ISSUING_CERTIFICATE)
        certificate = self.certificates.ensure_certificate(
            config.domain, config.tls_secret_name, config.issuer_name)
        if not certificate.ready:
            warn(f"Certificate {config.tls_secret_name} is {certificate.state.value}; re-run to retry")

        enter(Phase.ADDING_HTTPS_LISTENER)
        pulumi.log.info("Verifying TLS secret exists...")
        if not self._secret_exists():
            warn("TLS secret does not exist yet. Keeping Gateway with HTTP-only. "
                 "Run again after the certificate is issued to add HTTPS.")
            return report(Phase.ADDING_HTTPS_LISTENER, False, certificate=certificate,
                          https_enabled=state.https_enabled, **observed)

        self.gateways.add_https_listener(self.spec, config.tls_secret_name)
        programmed = self.gateways.wait_programmed(self.spec.name, self.spec.namespace)
        if isinstance(programmed, Timeout):
            warn(f"{programmed}. HTTPS listener applied but the Gateway is not Programmed yet.")
            return report(Phase.ADDING_HTTPS_LISTENER, False, certificate=certificate,
                          https_enabled=True, **observed)

        enter(Phase.DONE)
        print(f"✅ https://{config.domain} is served by Gateway {self.spec.namespace}/{self.spec.name}")
        return report(Phase.DONE, True, certificate=certificate, https_enabled=True, **observed)

    def _secret_exists(self) -> bool:
        return self.cluster.get_object(
            "Secret", self.config.tls_secret_name, self.config.namespace) is not None

    def _print_dns_instructions(self, address: str, expected: str) -> None:
        domain = self.config.domain
        options = []
        if not is_ip_address(address):
            options.append(("CNAME Record", address))
        if is_ip_address(expected):
            options.append(("A Record", expected))

        print("")
        print("==============================================")
        print("  DNS Configuration Required")
        print("==============================================")
        print("")
        print(f"Gateway address: {address}")
        if expected != address:
            print(f"Gateway IP:      {expected}")
        print("")
        print(f"Configure DNS for your domain ({domain}) using ONE of these options:")
        for number, (record, value) in enumerate(options, start=1):
            print("")
            print(f"Option {number} - {record}:")
            print(f"  Name:  {domain}")
            print(f"  Value: {value}")
        print("")
        print("Note: the Let's Encrypt HTTP-01 validation requires the domain")
        print("      to resolve to the Gateway.")
        print("")
