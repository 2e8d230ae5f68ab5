"""
Unit tests for the kubectl backed Cluster API
"""

import json
import subprocess
import unittest
from unittest.mock import Mock, patch
import sys
import os

import yaml

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mattermost_aks.cluster import KubectlClusterApi, find_condition
from mattermost_aks.errors import ExternalUnavailable


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@patch('mattermost_aks.cluster.pulumi')
class TestKubectlClusterApi(unittest.TestCase):
    """Test KubectlClusterApi"""

    def test_apply_pipes_yaml(self, mock_pulumi):
        """Documents are applied through stdin"""
        runner = Mock(return_value=completed(stdout="gateway.gateway.networking.k8s.io/x created\n"))
        api = KubectlClusterApi(context="aks-prod", timeout=30, runner=runner)

        api.apply_manifest({"kind": "Gateway", "metadata": {"name": "x"}})

        args, kwargs = runner.call_args
        self.assertEqual(args[0], ["kubectl", "--context", "aks-prod", "apply", "-f", "-"])
        self.assertEqual(yaml.safe_load(kwargs["input"]), {"kind": "Gateway", "metadata": {"name": "x"}})
        self.assertEqual(kwargs["timeout"], 30)
        mock_pulumi.log.info.assert_called_with("gateway.gateway.networking.k8s.io/x created")

    def test_apply_failure(self, mock_pulumi):
        runner = Mock(return_value=completed(returncode=1, stderr="connection refused"))
        api = KubectlClusterApi(runner=runner)

        with self.assertRaises(ExternalUnavailable) as ctx:
            api.apply_manifest({"kind": "Gateway", "metadata": {"name": "x"}})
        self.assertIn("connection refused", str(ctx.exception))

    def test_get_object(self, mock_pulumi):
        obj = {"kind": "Gateway", "metadata": {"name": "mattermost-gateway"}}
        runner = Mock(return_value=completed(stdout=json.dumps(obj)))
        api = KubectlClusterApi(runner=runner)

        self.assertEqual(api.get_object("Gateway", "mattermost-gateway", "mattermost"), obj)
        self.assertEqual(runner.call_args[0][0],
                         ["kubectl", "get", "gateway", "mattermost-gateway", "-n", "mattermost", "-o", "json"])

    def test_get_missing_object(self, mock_pulumi):
        """NotFound is an answer, not an error"""
        runner = Mock(return_value=completed(
            returncode=1, stderr='Error from server (NotFound): secrets "mattermost-tls-cert" not found'))
        api = KubectlClusterApi(runner=runner)

        self.assertIsNone(api.get_object("Secret", "mattermost-tls-cert", "mattermost"))

    def test_get_unreachable(self, mock_pulumi):
        runner = Mock(return_value=completed(returncode=1, stderr="Unable to connect to the server"))
        api = KubectlClusterApi(runner=runner)

        with self.assertRaises(ExternalUnavailable):
            api.get_object("Secret", "mattermost-tls-cert", "mattermost")

    def test_missing_binary(self, mock_pulumi):
        api = KubectlClusterApi(runner=Mock(side_effect=FileNotFoundError("kubectl")))

        with self.assertRaises(ExternalUnavailable):
            api.get_object("Gateway", "x", "mattermost")

    def test_command_timeout(self, mock_pulumi):
        api = KubectlClusterApi(runner=Mock(side_effect=subprocess.TimeoutExpired(["kubectl"], 60)))

        with self.assertRaises(ExternalUnavailable):
            api.delete_object("HTTPRoute", "acme-challenge", "mattermost")

    def test_list_services_by_label(self, mock_pulumi):
        payload = {"items": [{"metadata": {"name": "cm-acme-http-solver-abc"}}]}
        runner = Mock(return_value=completed(stdout=json.dumps(payload)))
        api = KubectlClusterApi(runner=runner)

        names = api.list_services_by_label("acme.cert-manager.io/http01-solver=true", "mattermost")

        self.assertEqual(names, ["cm-acme-http-solver-abc"])
        self.assertEqual(runner.call_args[0][0],
                         ["kubectl", "get", "svc", "-n", "mattermost", "-l",
                          "acme.cert-manager.io/http01-solver=true", "-o", "json"])

    def test_delete_ignores_missing(self, mock_pulumi):
        runner = Mock(return_value=completed())
        api = KubectlClusterApi(runner=runner)

        api.delete_object("HTTPRoute", "acme-challenge", "mattermost")

        self.assertIn("--ignore-not-found", runner.call_args[0][0])


class TestFindCondition(unittest.TestCase):
    """Test status condition lookup"""

    def test_found(self):
        obj = {"status": {"conditions": [{"type": "Ready", "status": "False", "reason": "Pending"}]}}

        condition = find_condition(obj, "Ready")

        self.assertEqual(condition.reason, "Pending")
        self.assertFalse(condition.is_true)

    def test_observed_generation(self):
        """observedGeneration decides whether the condition is current"""
        obj = {"status": {"conditions": [{"type": "Programmed", "status": "True",
                                          "observedGeneration": 1}]}}

        condition = find_condition(obj, "Programmed")

        self.assertEqual(condition.observed_generation, 1)
        self.assertFalse(condition.is_current(2))
        self.assertTrue(condition.is_current(1))
        self.assertTrue(condition.is_current(None))

    def test_absent(self):
        self.assertIsNone(find_condition({"status": {}}, "Ready"))
        self.assertIsNone(find_condition(None, "Ready"))


if __name__ == '__main__':
    unittest.main()
