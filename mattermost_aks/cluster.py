"""
Cluster API
Reads and writes Kubernetes objects through kubectl
"""

import json
import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import pulumi
import yaml

from .errors import ExternalUnavailable


@dataclass(frozen=True)
class Condition:
    status: str
    reason: Optional[str] = None
    message: Optional[str] = None
    observed_generation: Optional[int] = None

    @property
    def is_true(self) -> bool:
        return self.status == "True"

    def is_current(self, generation: Optional[int]) -> bool:
        """False when the controller has not yet seen the latest spec"""
        if generation is None or self.observed_generation is None:
            return True
        return self.observed_generation >= generation


class ClusterApi(Protocol):
    """Operations the orchestrator needs from the cluster"""

    def apply_manifest(self, doc: Dict[str, Any]) -> None: ...

    def get_object(self, kind: str, name: str,
                   namespace: Optional[str] = None) -> Optional[Dict[str, Any]]: ...

    def get_condition(self, obj: Dict[str, Any], condition_type: str) -> Optional[Condition]: ...

    def list_services_by_label(self, selector: str, namespace: str) -> List[str]: ...

    def delete_object(self, kind: str, name: str, namespace: Optional[str] = None) -> None: ...


def find_condition(obj: Optional[Dict[str, Any]], condition_type: str) -> Optional[Condition]:
    """Pick a status condition out of a Kubernetes object"""
    if not obj:
        return None
    for condition in (obj.get("status") or {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return Condition(
                status=str(condition.get("status", "Unknown")),
                reason=condition.get("reason"),
                message=condition.get("message"),
                observed_generation=condition.get("observedGeneration"),
            )
    return None


class KubectlClusterApi:
    """
    Cluster API backed by the kubectl binary

    Args:
        context: kubeconfig context, current context when None
        timeout: Seconds a single kubectl invocation may take
        runner: subprocess.run compatible callable, replaceable in tests
    """

    def __init__(self, context: Optional[str] = None, timeout: int = 60,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.context = context
        self.timeout = timeout
        self._runner = runner

    def _run(self, args: List[str], stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        command = ["kubectl"]
        if self.context:
            command += ["--context", self.context]
        command += args
        pulumi.log.debug(f"Running: {' '.join(command)}")
        try:
            return self._runner(command, input=stdin, capture_output=True,
                                text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ExternalUnavailable("kubectl not found in PATH")
        except subprocess.TimeoutExpired:
            raise ExternalUnavailable(f"kubectl {args[0]} timed out after {self.timeout}s")

    @staticmethod
    def _namespace_args(namespace: Optional[str]) -> List[str]:
        return ["-n", namespace] if namespace else []

    @staticmethod
    def _failure(result: subprocess.CompletedProcess, action: str) -> ExternalUnavailable:
        detail = (result.stderr or result.stdout or "").strip()
        return ExternalUnavailable(f"kubectl {action} failed (exit {result.returncode}): {detail}")

    def apply_manifest(self, doc: Dict[str, Any]) -> None:
        result = self._run(["apply", "-f", "-"], stdin=yaml.safe_dump(doc, sort_keys=False))
        if result.returncode != 0:
            raise self._failure(result, "apply")
        pulumi.log.info(result.stdout.strip())

    def get_object(self, kind: str, name: str,
                   namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        result = self._run(["get", kind.lower(), name, *self._namespace_args(namespace), "-o", "json"])
        if result.returncode != 0:
            if "NotFound" in (result.stderr or ""):
                return None
            raise self._failure(result, "get")
        return json.loads(result.stdout)

    def get_condition(self, obj: Dict[str, Any], condition_type: str) -> Optional[Condition]:
        return find_condition(obj, condition_type)

    def list_services_by_label(self, selector: str, namespace: str) -> List[str]:
        result = self._run(["get", "svc", "-n", namespace, "-l", selector, "-o", "json"])
        if result.returncode != 0:
            raise self._failure(result, "get svc")
        items = json.loads(result.stdout).get("items") or []
        return [item["metadata"]["name"] for item in items]

    def delete_object(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        result = self._run(["delete", kind.lower(), name, *self._namespace_args(namespace),
                            "--ignore-not-found"])
        if result.returncode != 0:
            raise self._failure(result, "delete")
