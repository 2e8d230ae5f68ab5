"""
Phased Gateway / DNS / TLS provisioning for Mattermost on AKS
HTTP Gateway first, DNS next, then the certificate, then HTTPS
"""

from .config import DeployConfig, get_config
from .errors import Cancelled, ConfigError, ExternalUnavailable, PreconditionError, Timeout
from .sequencer import Pending, Phase, PhaseReport, PhaseSequencer

__all__ = [
    "DeployConfig",
    "get_config",
    "Cancelled",
    "ConfigError",
    "ExternalUnavailable",
    "PreconditionError",
    "Timeout",
    "Pending",
    "Phase",
    "PhaseReport",
    "PhaseSequencer",
]
