"""
Unit tests for the DNS Gate and the dig resolver
"""

import subprocess
import unittest
from unittest.mock import Mock, patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fakes import FakeResolver, SleepRecorder
from mattermost_aks.dns import DigResolver, DnsGate, DnsStatus, is_ip_address, is_ipv4
from mattermost_aks.errors import ExternalUnavailable


class TestDnsGate(unittest.TestCase):
    """Test DnsGate.wait_for_resolution"""

    def make_gate(self, resolver, max_attempts=30):
        self.sleep = SleepRecorder()
        return DnsGate(resolver, resolver_address="8.8.8.8", poll_interval_seconds=10,
                       max_attempts=max_attempts, sleep=self.sleep)

    def test_wrong_address_degrades(self):
        """A record pointing elsewhere for every attempt ends Degraded"""
        resolver = FakeResolver(["203.0.113.9"])
        gate = self.make_gate(resolver)

        result = gate.wait_for_resolution("chat.example.org", "203.0.113.10")

        self.assertEqual(result.status, DnsStatus.DEGRADED)
        self.assertFalse(result.resolved)
        self.assertEqual(result.reason, "timeout")
        self.assertEqual(result.attempts, 30)
        self.assertEqual(result.resolved_address, "203.0.113.9")
        self.assertEqual(len(resolver.queries), 30)
        self.assertEqual(self.sleep.total, 290)

    def test_resolves_after_propagation(self):
        """No record, then the wrong one, then the expected address"""
        resolver = FakeResolver([None, "203.0.113.9", "203.0.113.10"])
        gate = self.make_gate(resolver)

        result = gate.wait_for_resolution("chat.example.org", "203.0.113.10")

        self.assertTrue(result.resolved)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(resolver.queries[0], ("chat.example.org", "8.8.8.8"))

    def test_explicit_resolver_and_attempts(self):
        """Per-call overrides take precedence"""
        resolver = FakeResolver([None])
        gate = self.make_gate(resolver)

        result = gate.wait_for_resolution("chat.example.org", "203.0.113.10",
                                          resolver_address="1.1.1.1", max_attempts=1)

        self.assertEqual(result.attempts, 1)
        self.assertEqual(resolver.queries, [("chat.example.org", "1.1.1.1")])
        self.assertEqual(self.sleep.calls, [])

    def test_resolver_unavailable(self):
        """Without a resolver tool the gate degrades instead of waiting"""
        resolver = FakeResolver(available=False)
        gate = self.make_gate(resolver)

        result = gate.wait_for_resolution("chat.example.org", "203.0.113.10")

        self.assertEqual(result.status, DnsStatus.DEGRADED)
        self.assertEqual(result.reason, "resolver-unavailable")
        self.assertEqual(resolver.queries, [])

    def test_transient_resolver_errors(self):
        """A failing lookup is one more miss"""
        resolver = FakeResolver([ExternalUnavailable("SERVFAIL"), "203.0.113.10"])
        gate = self.make_gate(resolver)

        self.assertTrue(gate.wait_for_resolution("chat.example.org", "203.0.113.10").resolved)

    def test_expected_address_for(self):
        """Gateway FQDNs are resolved once, IPs are used as they are"""
        resolver = FakeResolver(lookup={"gw.alb.example.net": "203.0.113.10"})
        gate = self.make_gate(resolver)

        self.assertEqual(gate.expected_address_for("203.0.113.20"), "203.0.113.20")
        self.assertEqual(gate.expected_address_for("gw.alb.example.net"), "203.0.113.10")
        self.assertEqual(resolver.queries, [("gw.alb.example.net", "8.8.8.8")])

    def test_expected_address_falls_back(self):
        unresolvable = self.make_gate(FakeResolver([None]))
        failing = self.make_gate(FakeResolver([ExternalUnavailable("timeout")]))

        self.assertEqual(unresolvable.expected_address_for("gw.alb.example.net"), "gw.alb.example.net")
        self.assertEqual(failing.expected_address_for("gw.alb.example.net"), "gw.alb.example.net")


class TestDigResolver(unittest.TestCase):
    """Test DigResolver"""

    def test_skips_cname_lines(self):
        """The first IPv4 answer wins"""
        runner = Mock(return_value=subprocess.CompletedProcess(
            [], 0, stdout="gw.alb.example.net.\n203.0.113.10\n203.0.113.11\n", stderr=""))
        resolver = DigResolver(runner=runner)

        self.assertEqual(resolver.resolve("chat.example.org", "8.8.8.8"), "203.0.113.10")
        self.assertEqual(runner.call_args[0][0], ["dig", "+short", "chat.example.org", "@8.8.8.8"])

    def test_no_answer(self):
        runner = Mock(return_value=subprocess.CompletedProcess([], 0, stdout="", stderr=""))

        self.assertIsNone(DigResolver(runner=runner).resolve("chat.example.org"))

    def test_failure(self):
        runner = Mock(return_value=subprocess.CompletedProcess([], 9, stdout="", stderr="no servers"))

        with self.assertRaises(ExternalUnavailable):
            DigResolver(runner=runner).resolve("chat.example.org")

    def test_timeout(self):
        runner = Mock(side_effect=subprocess.TimeoutExpired(["dig"], 10))

        with self.assertRaises(ExternalUnavailable):
            DigResolver(runner=runner).resolve("chat.example.org")

    @patch('mattermost_aks.dns.shutil')
    def test_available(self, mock_shutil):
        mock_shutil.which.return_value = None

        self.assertFalse(DigResolver().available())
        mock_shutil.which.assert_called_once_with("dig")

    def test_address_helpers(self):
        self.assertTrue(is_ipv4("203.0.113.10"))
        self.assertFalse(is_ipv4("2001:db8::1"))
        self.assertTrue(is_ip_address("2001:db8::1"))
        self.assertFalse(is_ip_address("gw.alb.example.net"))


if __name__ == '__main__':
    unittest.main()
