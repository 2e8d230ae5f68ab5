"""
Command line entry point

    mattermost-aks deploy      apply prerequisites, then run the phased flow
    mattermost-aks status      show Gateway, certificate and TLS secret state
    mattermost-aks render      print the Gateway and Certificate manifests

Configuration is read from the Pulumi stack (Pulumi.<stack>.yaml).
"""

import argparse
import os
import sys
from typing import List, Optional

import pulumi
import yaml
from pulumi import automation as auto

from .certificate import CertManagerAgent
from .cluster import KubectlClusterApi
from .config import DeployConfig
from .errors import Cancelled, GatewayTlsError
from .gateway import GatewayController
from .manifests import GatewaySpec, certificate_manifest, gateway_manifest
from .retry import CancelToken
from .sequencer import Pending, PhaseReport, PhaseSequencer

# A Pending can only repeat when the Gateway address changed between runs
MAX_RESUMES = 3


def load_stack(args: argparse.Namespace) -> auto.Stack:
    return auto.select_stack(stack_name=args.stack, work_dir=args.work_dir)


def load_config(stack: auto.Stack) -> DeployConfig:
    return DeployConfig.from_mapping(stack.get_all_config())


def print_report(report: PhaseReport) -> None:
    print("")
    print("==============================================")
    print(f"  {'✅ Complete' if report.completed else '⚠️ Incomplete'}: {report.phase.value}")
    print("==============================================")
    print(f"Phases:          {' -> '.join(p.value for p in report.phases)}")
    if report.gateway_address:
        print(f"Gateway address: {report.gateway_address}")
    if report.dns is not None:
        suffix = " (operator override)" if report.dns_overridden else ""
        print(f"DNS:             {report.dns.status.value}{suffix}")
    if report.certificate is not None:
        print(f"Certificate:     {report.certificate.state.value}")
    print(f"HTTPS enabled:   {report.https_enabled}")
    for warning in report.warnings:
        print(f"  - {warning}")
    if not report.completed:
        print("")
        print("Re-run `mattermost-aks deploy` to continue; completed phases are skipped.")


def confirm_dns_override(pending: Pending, assume_yes: bool) -> bool:
    print("")
    print(f"⚠️  {pending.message}")
    if assume_yes:
        print("Continuing (--yes)")
        return True
    try:
        input("Press ENTER to continue anyway (or Ctrl+C to cancel)...")
    except EOFError:
        print("")
        print("No terminal to confirm on. Re-run with:")
        print(f"  mattermost-aks deploy --skip-prerequisites --resume-token '{pending.resume_token}'")
        return False
    return True


def cmd_deploy(args: argparse.Namespace) -> int:
    stack = load_stack(args)
    config = load_config(stack)

    if not args.skip_prerequisites:
        print(f"🔧 Applying prerequisites (stack {args.stack})...")
        stack.up(on_output=print)

    cancel = CancelToken(config.run_timeout_seconds or None)
    sequencer = PhaseSequencer.from_config(config, cancel=cancel)
    resume_token = args.resume_token
    try:
        outcome = sequencer.run(resume_token=resume_token)
        for _ in range(MAX_RESUMES):
            if not isinstance(outcome, Pending):
                break
            if not confirm_dns_override(outcome, args.yes):
                return 1
            outcome = sequencer.run(resume_token=outcome.resume_token)
    except KeyboardInterrupt:
        print("\nCancelled. External resources were left as they are; re-run to continue.")
        return 130

    if isinstance(outcome, Pending):
        pulumi.log.error("Gateway address keeps changing; giving up on DNS confirmation")
        return 1
    print_report(outcome)
    return 0 if outcome.completed else 1


def cmd_status(args: argparse.Namespace) -> int:
    config = load_config(load_stack(args))
    cluster = KubectlClusterApi(config.kube_context, config.command_timeout_seconds)

    gateway = GatewayController(cluster).get_state(config.gateway_name, config.namespace)
    certificate = CertManagerAgent(cluster, config.namespace).find_request(config.tls_secret_name)
    secret = cluster.get_object("Secret", config.tls_secret_name, config.namespace)

    print(f"Domain:      {config.domain}")
    if gateway is None:
        print(f"Gateway:     {config.namespace}/{config.gateway_name} not found")
    else:
        print(f"Gateway:     {gateway.namespace}/{gateway.name} programmed={gateway.programmed} "
              f"https={gateway.https_enabled}")
        print(f"Addresses:   {', '.join(gateway.addresses) or '-'}")
    if certificate is None:
        print(f"Certificate: {config.tls_secret_name} not requested")
    else:
        print(f"Certificate: {config.tls_secret_name} ready={certificate[1]}")
    print(f"TLS secret:  {'present' if secret is not None else 'missing'}")
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    config = load_config(load_stack(args))
    spec = GatewaySpec.from_config(config)
    documents = [
        gateway_manifest(spec, config.tls_secret_name if args.https else None),
        certificate_manifest(config.tls_secret_name, config.namespace, config.domain,
                             config.tls_secret_name, config.issuer_name),
    ]
    print(yaml.safe_dump_all(documents, sort_keys=False), end="")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mattermost-aks",
        description="Phased Gateway / DNS / TLS provisioning for Mattermost on AKS")
    parser.add_argument("--stack", default=os.environ.get("PULUMI_STACK", "dev"),
                        help="Pulumi stack holding the configuration (default: $PULUMI_STACK or dev)")
    parser.add_argument("--work-dir", default=os.getcwd(),
                        help="Directory containing Pulumi.yaml")
    commands = parser.add_subparsers(dest="command", required=True)

    deploy = commands.add_parser("deploy", help="Apply prerequisites and run the phased flow")
    deploy.add_argument("--skip-prerequisites", action="store_true",
                        help="Do not run `pulumi up` before the phased flow")
    deploy.add_argument("--yes", action="store_true",
                        help="Continue without asking when DNS has not propagated")
    deploy.add_argument("--resume-token",
                        help="Token printed by an earlier run that stopped at the DNS check")
    deploy.set_defaults(func=cmd_deploy)

    status = commands.add_parser("status", help="Show current Gateway and certificate state")
    status.set_defaults(func=cmd_status)

    render = commands.add_parser("render", help="Print Gateway and Certificate manifests")
    render.add_argument("--https", action="store_true", help="Render the HTTPS revision of the Gateway")
    render.set_defaults(func=cmd_render)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except Cancelled as e:
        print(f"\nCancelled: {e}. External resources were left as they are; re-run to continue.")
        return 130
    except (GatewayTlsError, auto.CommandError) as e:
        pulumi.log.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
