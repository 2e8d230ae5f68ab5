"""
Mattermost on AKS - Gateway prerequisites
Declares what the phased Gateway / DNS / TLS flow builds on.
Run `mattermost-aks deploy` for the full flow.
"""
import pulumi
from mattermost_aks.config import get_config
from mattermost_aks.prerequisites import create_kubernetes_provider, declare_prerequisites

# Configuration
config = get_config()

# 1. Kubernetes provider (default kube context unless kubeContext is set)
provider = create_kubernetes_provider(config)

# 2. Namespace, GatewayClass, ClusterIssuer, application route
prerequisites = declare_prerequisites(config, provider)

# Exports
pulumi.export("namespace", prerequisites["namespace_name"])
pulumi.export("domain", config.domain)
pulumi.export("gateway_name", config.gateway_name)
pulumi.export("tls_secret_name", config.tls_secret_name)
pulumi.export("cluster_issuer", config.issuer_name)
