"""
Gateway Controller
Creates the Gateway in two revisions (HTTP only, then HTTP + HTTPS)
and waits for it to be Programmed
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

import pulumi

from .cluster import ClusterApi, find_condition
from .errors import PreconditionError, Timeout
from .manifests import GatewaySpec, gateway_manifest
from .retry import CancelToken, retry_until


@dataclass(frozen=True)
class GatewayState:
    name: str
    namespace: str
    addresses: Tuple[str, ...] = ()
    https_enabled: bool = False
    programmed: bool = False
    programmed_reason: Optional[str] = None
    generation: Optional[int] = None
    observed_generation: Optional[int] = None

    @property
    def stale(self) -> bool:
        """The Programmed condition describes an older revision of the spec"""
        return (self.generation is not None and self.observed_generation is not None
                and self.observed_generation < self.generation)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "GatewayState":
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        listeners = (obj.get("spec") or {}).get("listeners") or []
        condition = find_condition(obj, "Programmed")
        generation = metadata.get("generation")
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            addresses=tuple(a["value"] for a in status.get("addresses") or [] if a.get("value")),
            https_enabled=any(l.get("protocol") == "HTTPS" for l in listeners),
            programmed=(condition is not None and condition.is_true
                        and condition.is_current(generation)),
            programmed_reason=condition.reason if condition else None,
            generation=generation,
            observed_generation=condition.observed_generation if condition else None,
        )


class GatewayController:
    """
    Owns every write to the Gateway object

    Args:
        cluster: Cluster API
        poll_interval_seconds: Seconds between Programmed checks
        max_attempts: Number of Programmed checks before giving up
        cancel: Run-wide cancellation token
        sleep: Sleep override for tests
    """

    def __init__(self, cluster: ClusterApi, poll_interval_seconds: float = 10,
                 max_attempts: int = 30, cancel: Optional[CancelToken] = None,
                 sleep: Optional[Callable[[float], None]] = None):
        self.cluster = cluster
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.cancel = cancel
        self.sleep = sleep

    def get_state(self, name: str, namespace: str) -> Optional[GatewayState]:
        obj = self.cluster.get_object("Gateway", name, namespace)
        return GatewayState.from_object(obj) if obj is not None else None

    def ensure_http_only(self, spec: GatewaySpec) -> GatewayState:
        """
        Create the HTTP-only Gateway unless one with the same name exists

        An existing Gateway is never overwritten, so re-running the flow cannot
        regress a working HTTPS Gateway back to HTTP only.
        """
        existing = self.get_state(spec.name, spec.namespace)
        if existing is not None:
            pulumi.log.info(
                f"Gateway {spec.namespace}/{spec.name} already exists "
                f"(programmed={existing.programmed}, https={existing.https_enabled}), leaving it untouched")
            return existing

        pulumi.log.info(f"Creating Gateway {spec.namespace}/{spec.name} (HTTP only initially)...")
        self.cluster.apply_manifest(gateway_manifest(spec))
        return self.get_state(spec.name, spec.namespace) or GatewayState(spec.name, spec.namespace)

    def add_https_listener(self, spec: GatewaySpec, certificate_secret_ref: str) -> GatewayState:
        """
        Re-apply the full Gateway manifest with an HTTPS listener

        Raises:
            PreconditionError: the referenced TLS secret does not exist yet
        """
        if self.cluster.get_object("Secret", certificate_secret_ref, spec.namespace) is None:
            raise PreconditionError(
                f"TLS secret {spec.namespace}/{certificate_secret_ref} does not exist; "
                f"adding the HTTPS listener now would leave the Gateway not Programmed")

        pulumi.log.info(f"Adding HTTPS listener to Gateway {spec.namespace}/{spec.name} "
                        f"(secret {certificate_secret_ref})...")
        self.cluster.apply_manifest(gateway_manifest(spec, certificate_secret_ref))
        return (self.get_state(spec.name, spec.namespace)
                or GatewayState(spec.name, spec.namespace, https_enabled=True))

    def wait_programmed(self, name: str, namespace: str) -> Union[str, Timeout]:
        """
        Poll until the Gateway is Programmed for its latest spec and has an address

        A Programmed condition whose observedGeneration lags behind
        metadata.generation belongs to the previous revision and is ignored.

        Returns:
            The first Gateway address, or a Timeout after max_attempts polls
        """
        def ready(state: Optional[GatewayState]) -> bool:
            return state is not None and state.programmed and bool(state.addresses)

        result = self._wait(name, namespace, "to be Programmed", ready)
        if isinstance(result, Timeout):
            return result
        pulumi.log.info(f"Gateway {namespace}/{name} is Programmed at {result.addresses[0]}")
        return result.addresses[0]

    def wait_for_address(self, name: str, namespace: str) -> Union[str, Timeout]:
        """Poll until the Gateway has an address, Programmed or not"""
        def ready(state: Optional[GatewayState]) -> bool:
            return state is not None and bool(state.addresses)

        result = self._wait(name, namespace, "to get an address", ready)
        if isinstance(result, Timeout):
            return result
        pulumi.log.info(f"Gateway {namespace}/{name} has address {result.addresses[0]}")
        return result.addresses[0]

    def _wait(self, name: str, namespace: str, goal: str,
              ready: Callable[[Optional[GatewayState]], bool]):
        def probe() -> Optional[GatewayState]:
            return self.get_state(name, namespace)

        def on_retry(attempt: int, max_attempts: int, state: Optional[GatewayState]) -> None:
            if state is None:
                detail = "not found"
            else:
                detail = f"programmed={state.programmed}"
                if state.stale:
                    detail += (f" (status is for generation {state.observed_generation}, "
                               f"spec is at {state.generation})")
                elif state.programmed_reason:
                    detail += f" ({state.programmed_reason})"
                if not state.addresses:
                    detail += ", no address yet"
            pulumi.log.info(f"Waiting for Gateway {namespace}/{name}: {detail} ({attempt}/{max_attempts})")

        return retry_until(probe, self.poll_interval_seconds, self.max_attempts,
                           describe=f"Gateway {namespace}/{name} {goal}",
                           accept=ready, on_retry=on_retry,
                           cancel=self.cancel, sleep=self.sleep)
