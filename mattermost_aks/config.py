"""
Configuration management for the Mattermost gateway deployment
"""

from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

import pulumi

from .errors import ConfigError

PROJECT_NAME = "mattermost-aks"

LETS_ENCRYPT_SERVER_PROD = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_SERVER_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


@dataclass(frozen=True)
class DeployConfig:
    """Everything the prerequisites program and the phased flow need to know"""

    domain: str
    contact_email: str

    # Kubernetes objects
    namespace: str = "mattermost"
    gateway_name: str = "mattermost-gateway"
    gateway_class_name: str = "azure-alb-external"
    alb_id: Optional[str] = None
    alb_frontend: Optional[str] = None
    tls_secret_name: str = "mattermost-tls-cert"
    issuer_name: str = "letsencrypt-prod"
    acme_server: str = LETS_ENCRYPT_SERVER_PROD
    mattermost_service_name: str = "mattermost"
    mattermost_service_port: int = 8065

    # Polling
    poll_interval_seconds: int = 10
    max_poll_attempts: int = 30
    solver_poll_interval_seconds: int = 5
    run_timeout_seconds: int = 0

    # DNS
    dns_resolver_address: str = "8.8.8.8"
    allow_dns_override: bool = True

    # kubectl
    kube_context: Optional[str] = None
    command_timeout_seconds: int = 60

    # label pairs keep the frozen config hashable
    labels: Tuple[Tuple[str, str], ...] = (("managed-by", PROJECT_NAME),)

    def __post_init__(self):
        if not self.domain:
            raise ConfigError("domain is required")
        if not self.contact_email:
            raise ConfigError("contactEmail is required")
        for name in ("poll_interval_seconds", "max_poll_attempts",
                     "solver_poll_interval_seconds", "command_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.run_timeout_seconds < 0:
            raise ConfigError("run_timeout_seconds must not be negative")

    @property
    def wait_budget_seconds(self) -> int:
        """Upper bound of a single bounded wait"""
        return self.poll_interval_seconds * self.max_poll_attempts

    @classmethod
    def from_getter(cls, get: Callable[[str], Optional[str]]) -> "DeployConfig":
        """
        Build the configuration from a key lookup

        Args:
            get: Returns the raw string value for a camelCase key, or None

        Returns:
            Validated DeployConfig
        """
        def _int(key: str, default: int) -> int:
            raw = get(key)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except (TypeError, ValueError):
                raise ConfigError(f"{key} must be an integer, got {raw!r}")

        def _bool(key: str, default: bool) -> bool:
            raw = get(key)
            if raw is None or raw == "":
                return default
            if isinstance(raw, bool):
                return raw
            value = str(raw).strip().lower()
            if value in _TRUE:
                return True
            if value in _FALSE:
                return False
            raise ConfigError(f"{key} must be a boolean, got {raw!r}")

        return cls(
            domain=get("domain") or "",
            contact_email=get("contactEmail") or "",
            namespace=get("namespace") or "mattermost",
            gateway_name=get("gatewayName") or "mattermost-gateway",
            gateway_class_name=get("gatewayClassName") or "azure-alb-external",
            alb_id=get("albId") or None,
            alb_frontend=get("albFrontend") or None,
            tls_secret_name=get("tlsSecretName") or "mattermost-tls-cert",
            issuer_name=get("issuerName") or "letsencrypt-prod",
            acme_server=get("acmeServer") or LETS_ENCRYPT_SERVER_PROD,
            mattermost_service_name=get("mattermostServiceName") or "mattermost",
            mattermost_service_port=_int("mattermostServicePort", 8065),
            poll_interval_seconds=_int("pollIntervalSeconds", 10),
            max_poll_attempts=_int("maxPollAttempts", 30),
            solver_poll_interval_seconds=_int("solverPollIntervalSeconds", 5),
            run_timeout_seconds=_int("runTimeoutSeconds", 0),
            dns_resolver_address=get("dnsResolverAddress") or "8.8.8.8",
            allow_dns_override=_bool("allowDnsOverride", True),
            kube_context=get("kubeContext") or None,
            command_timeout_seconds=_int("commandTimeoutSeconds", 60),
        )

    @classmethod
    def from_pulumi(cls, config: pulumi.Config) -> "DeployConfig":
        """Build from a pulumi.Config, as used inside the Pulumi program"""
        return cls.from_getter(config.get)

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "DeployConfig":
        """
        Build from stack settings, e.g. ``Stack.get_all_config()``

        Keys may be namespaced (``mattermost-aks:domain``); values may be plain
        strings or Automation API ConfigValue objects.
        """
        flat: Dict[str, Optional[str]] = {}
        prefix = f"{PROJECT_NAME}:"
        for key, value in values.items():
            if ":" in key and not key.startswith(prefix):
                continue
            raw = getattr(value, "value", value)
            flat[key[len(prefix):] if key.startswith(prefix) else key] = raw
        return cls.from_getter(flat.get)


def get_config() -> DeployConfig:
    """Get the configuration of the current Pulumi stack"""
    return DeployConfig.from_pulumi(pulumi.Config(PROJECT_NAME))
