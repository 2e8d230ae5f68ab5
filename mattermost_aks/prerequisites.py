"""
Prerequisites Module
Steady-state objects the phased flow relies on, declared with Pulumi:
namespace, GatewayClass, ACME ClusterIssuer and the application HTTPRoute
"""

from typing import Any, Dict, Optional

import pulumi
import pulumi_kubernetes as k8s

from .config import DeployConfig
from .manifests import (
    application_route_manifest,
    cluster_issuer_manifest,
    gateway_class_manifest,
)


def create_kubernetes_provider(config: DeployConfig) -> Optional[k8s.Provider]:
    """
    Create a Kubernetes provider pinned to the configured kube context

    Returns:
        Provider instance, or None to use Pulumi's default provider
    """
    if not config.kube_context:
        return None
    return k8s.Provider(f"{config.namespace}-k8s-provider", context=config.kube_context)


def _custom_resource(name: str, doc: Dict[str, Any],
                     opts: Optional[pulumi.ResourceOptions]) -> k8s.apiextensions.CustomResource:
    return k8s.apiextensions.CustomResource(
        name,
        api_version=doc["apiVersion"],
        kind=doc["kind"],
        metadata=doc["metadata"],
        spec=doc["spec"],
        opts=opts,
    )


def declare_prerequisites(config: DeployConfig,
                          provider: Optional[k8s.Provider] = None) -> Dict[str, Any]:
    """
    Declare the objects applied before the Gateway is created

    Args:
        config: Deployment configuration
        provider: Kubernetes provider, default provider when None

    Returns:
        Dict with the declared resources
    """
    opts = pulumi.ResourceOptions(provider=provider) if provider else None

    namespace = k8s.core.v1.Namespace(
        f"{config.namespace}-namespace",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=config.namespace,
            labels=dict(config.labels),
        ),
        opts=opts,
    )

    gateway_class = _custom_resource(
        "gateway-class", gateway_class_manifest(config.gateway_class_name), opts)

    # cert-manager's CRDs come from its Helm chart, installed with the cluster
    cluster_issuer = _custom_resource(
        "cluster-issuer", cluster_issuer_manifest(config), opts)

    application_route = _custom_resource(
        "mattermost-route", application_route_manifest(config),
        pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(depends_on=[namespace])))

    return {
        "namespace": namespace,
        "gateway_class": gateway_class,
        "cluster_issuer": cluster_issuer,
        "application_route": application_route,
        "namespace_name": namespace.metadata.name,
    }
