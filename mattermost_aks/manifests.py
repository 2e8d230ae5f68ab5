"""
Kubernetes manifests for the Gateway / certificate flow
Pure functions returning plain dicts, applied by the Cluster API adapter
or declared through pulumi_kubernetes
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import DeployConfig

GATEWAY_API_VERSION = "gateway.networking.k8s.io/v1"
CERT_MANAGER_API_VERSION = "cert-manager.io/v1"

ALB_ID_ANNOTATION = "alb.networking.azure.io/alb-id"
ALB_FRONTEND_ADDRESS_TYPE = "alb.networking.azure.io/alb-frontend"
ALB_CONTROLLER_NAME = "alb.networking.azure.io/alb-controller"

HTTP_LISTENER = "http"
HTTPS_LISTENER = "https"

ACME_CHALLENGE_ROUTE = "acme-challenge"
ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/"
ACME_SOLVER_LABEL = "acme.cert-manager.io/http01-solver=true"
ACME_SOLVER_PORT = 8089


@dataclass(frozen=True)
class GatewaySpec:
    """Identity and placement of the Gateway object"""
    name: str
    namespace: str
    domain: str
    gateway_class_name: str = "azure-alb-external"
    alb_id: Optional[str] = None
    alb_frontend: Optional[str] = None

    @classmethod
    def from_config(cls, config: DeployConfig) -> "GatewaySpec":
        return cls(
            name=config.gateway_name,
            namespace=config.namespace,
            domain=config.domain,
            gateway_class_name=config.gateway_class_name,
            alb_id=config.alb_id,
            alb_frontend=config.alb_frontend,
        )


def _metadata(name: str, namespace: Optional[str] = None,
              annotations: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    if annotations:
        metadata["annotations"] = dict(annotations)
    return metadata


def http_listener() -> Dict[str, Any]:
    return {
        "name": HTTP_LISTENER,
        "port": 80,
        "protocol": "HTTP",
        "allowedRoutes": {"namespaces": {"from": "Same"}},
    }


def https_listener(domain: str, certificate_secret_ref: str) -> Dict[str, Any]:
    return {
        "name": HTTPS_LISTENER,
        "port": 443,
        "protocol": "HTTPS",
        "hostname": domain,
        "allowedRoutes": {"namespaces": {"from": "Same"}},
        "tls": {
            "mode": "Terminate",
            "certificateRefs": [{"kind": "Secret", "name": certificate_secret_ref}],
        },
    }


def gateway_manifest(spec: GatewaySpec,
                     certificate_secret_ref: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the Gateway document

    Args:
        spec: Gateway identity and placement
        certificate_secret_ref: TLS secret name; None for the HTTP-only revision

    Returns:
        Gateway manifest with one (HTTP) or two (HTTP + HTTPS) listeners
    """
    annotations = {ALB_ID_ANNOTATION: spec.alb_id} if spec.alb_id else None
    listeners = [http_listener()]
    if certificate_secret_ref:
        listeners.append(https_listener(spec.domain, certificate_secret_ref))

    gateway_spec: Dict[str, Any] = {
        "gatewayClassName": spec.gateway_class_name,
        "listeners": listeners,
    }
    if spec.alb_frontend:
        gateway_spec["addresses"] = [{"type": ALB_FRONTEND_ADDRESS_TYPE,
                                      "value": spec.alb_frontend}]

    return {
        "apiVersion": GATEWAY_API_VERSION,
        "kind": "Gateway",
        "metadata": _metadata(spec.name, spec.namespace, annotations),
        "spec": gateway_spec,
    }


def certificate_manifest(name: str, namespace: str, domain: str,
                         secret_name: str, issuer_name: str) -> Dict[str, Any]:
    return {
        "apiVersion": CERT_MANAGER_API_VERSION,
        "kind": "Certificate",
        "metadata": _metadata(name, namespace),
        "spec": {
            "secretName": secret_name,
            "dnsNames": [domain],
            "issuerRef": {"name": issuer_name, "kind": "ClusterIssuer"},
        },
    }


def acme_challenge_route(namespace: str, gateway_name: str, domain: str,
                         solver_service: str) -> Dict[str, Any]:
    """Temporary route exposing the HTTP-01 solver through the Gateway's HTTP listener"""
    return {
        "apiVersion": GATEWAY_API_VERSION,
        "kind": "HTTPRoute",
        "metadata": _metadata(ACME_CHALLENGE_ROUTE, namespace),
        "spec": {
            "parentRefs": [{
                "name": gateway_name,
                "namespace": namespace,
                "sectionName": HTTP_LISTENER,
            }],
            "hostnames": [domain],
            "rules": [{
                "matches": [{"path": {"type": "PathPrefix", "value": ACME_CHALLENGE_PATH}}],
                "backendRefs": [{"name": solver_service, "port": ACME_SOLVER_PORT}],
            }],
        },
    }


def gateway_class_manifest(name: str) -> Dict[str, Any]:
    return {
        "apiVersion": GATEWAY_API_VERSION,
        "kind": "GatewayClass",
        "metadata": _metadata(name),
        "spec": {"controllerName": ALB_CONTROLLER_NAME},
    }


def cluster_issuer_manifest(config: DeployConfig) -> Dict[str, Any]:
    """ACME issuer solving HTTP-01 challenges through the Gateway"""
    return {
        "apiVersion": CERT_MANAGER_API_VERSION,
        "kind": "ClusterIssuer",
        "metadata": _metadata(config.issuer_name),
        "spec": {
            "acme": {
                "server": config.acme_server,
                "email": config.contact_email,
                "privateKeySecretRef": {"name": f"{config.issuer_name}-account-key"},
                "solvers": [{
                    "http01": {
                        "gatewayHTTPRoute": {
                            "parentRefs": [{
                                "name": config.gateway_name,
                                "namespace": config.namespace,
                                "kind": "Gateway",
                            }],
                        },
                    },
                }],
            },
        },
    }


def application_route_manifest(config: DeployConfig) -> Dict[str, Any]:
    """Steady-state route sending all traffic for the domain to Mattermost"""
    return {
        "apiVersion": GATEWAY_API_VERSION,
        "kind": "HTTPRoute",
        "metadata": _metadata("mattermost-route", config.namespace),
        "spec": {
            "parentRefs": [{"name": config.gateway_name, "namespace": config.namespace}],
            "hostnames": [config.domain],
            "rules": [{
                "matches": [{"path": {"type": "PathPrefix", "value": "/"}}],
                "backendRefs": [{
                    "name": config.mattermost_service_name,
                    "port": config.mattermost_service_port,
                }],
            }],
        },
    }
