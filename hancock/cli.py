#!/usr/bin/env python3
"""
hancock: manage a local certificate authority.

Usage:
    hancock init  -n "Internal Root CA" -o "Example Corp"
    hancock issue -n svc.internal --subject-alt-names svc,10.0.0.7
    hancock issue -i ops                       # intermediate signed by the root
    hancock issue -n api.internal -i ops       # leaf signed by intermediate 'ops'
    hancock list
    hancock renew

The base directory and key passphrase default to CA_BASE_DIR and
CA_PASSWORD (environment or .env file).
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from hancock.common.errors import HancockError
from hancock.common.models import KeyAlgorithm, SubjectFields, resolve_issue_target
from hancock.config import Config, load_config
from hancock.crypto import pki
from hancock.crypto.req import parse_san_list
from hancock.ops import CertificateAuthority

log = logging.getLogger("hancock")


def _key_type(value: str) -> str:
    if value.strip().lower() not in ("rsa", "ecdsa"):
        raise argparse.ArgumentTypeError(f"{value} is not a valid key type ['rsa', 'ecdsa']")
    return value.strip().lower()


def _add_base_dir(parser: argparse.ArgumentParser, config: Config) -> None:
    parser.add_argument(
        "--base-dir",
        default=config.base_dir,
        help="Base directory to store certificates (env CA_BASE_DIR, default %(default)s)",
    )


def _add_password(parser: argparse.ArgumentParser, config: Config) -> None:
    parser.add_argument(
        "-p",
        "--password",
        default=config.password,
        help="Passphrase for CA private keys (env CA_PASSWORD)",
    )


def _add_key_options(parser: argparse.ArgumentParser, key_length: int) -> None:
    parser.add_argument(
        "-t",
        "--key-type",
        type=_key_type,
        default="rsa",
        help="Algorithm to generate private keys ('RSA' or 'ECDSA')",
    )
    parser.add_argument(
        "-b",
        "--key-length",
        type=int,
        default=key_length,
        help="Length to use when generating an RSA key, ignored for ECDSA (default %(default)s)",
    )


def _add_subject_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-n", "--common-name", help="Certificate CommonName")
    parser.add_argument("-c", "--country", help="Certificate Country")
    parser.add_argument("-s", "--state", help="Certificate State or Province")
    parser.add_argument("-l", "--locality", help="Certificate Locality")
    parser.add_argument("-o", "--organization", help="Certificate Organization")
    parser.add_argument("-u", "--organizational-unit", help="Certificate Organizational Unit")


def _subject(args: argparse.Namespace) -> SubjectFields:
    return SubjectFields(
        common_name=args.common_name,
        country=args.country,
        state=args.state,
        locality=args.locality,
        organization=args.organization,
        organizational_unit=args.organizational_unit,
    )


def build_parser(config: Config) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hancock", description="Manage a local certificate authority.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init", help="Generate a new root certificate")
    _add_base_dir(p_init, config)
    _add_key_options(p_init, key_length=4096)
    p_init.add_argument(
        "-d", "--lifetime", type=int, default=365 * 10,
        help="Lifetime in days of the generated certificate (default %(default)s)",
    )
    _add_subject_options(p_init)
    _add_password(p_init, config)
    p_init.set_defaults(func=cmd_init)

    p_issue = sub.add_parser("issue", help="Issue a new certificate")
    _add_base_dir(p_issue, config)
    _add_key_options(p_issue, key_length=2048)
    p_issue.add_argument(
        "-d", "--lifetime", type=int, default=None,
        help="Lifetime in days (default 730 for intermediates, 90 for leaves)",
    )
    _add_subject_options(p_issue)
    p_issue.add_argument("--subject-alt-names", help="Comma-separated Subject Alternative Names")
    p_issue.add_argument(
        "-i", "--intermediate",
        help="Intermediate authority: alone, create/renew it; with --common-name, sign the leaf with it",
    )
    _add_password(p_issue, config)
    p_issue.set_defaults(func=cmd_issue)

    p_list = sub.add_parser("list", help="List all known certificates")
    _add_base_dir(p_list, config)
    p_list.set_defaults(func=cmd_list)

    p_renew = sub.add_parser("renew", help="Renew a certificate or all if no Common Name is specified")
    _add_base_dir(p_renew, config)
    p_renew.add_argument("-n", "--common-name", help="Certificate CommonName")
    _add_password(p_renew, config)
    p_renew.set_defaults(func=cmd_renew)

    return parser


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------


def cmd_init(args: argparse.Namespace) -> None:
    ca = CertificateAuthority(args.base_dir, passphrase=args.password)
    algorithm = KeyAlgorithm.parse(args.key_type, args.key_length)
    result = ca.init(_subject(args), algorithm, lifetime_days=args.lifetime)

    state = "generated" if result.key_created else "existing"
    print(f"[+] Root key ({algorithm}, {state}): {result.paths.key}")
    if result.cert_created:
        print(f"[+] Root certificate created: {result.paths.cert}")
    else:
        print(f"[=] Root certificate already exists: {result.paths.cert}")
    print(f"    SHA-256 fingerprint: {pki.fingerprint_hex(result.certificate)}")


def cmd_issue(args: argparse.Namespace) -> None:
    ca = CertificateAuthority(args.base_dir, passphrase=args.password)
    algorithm = KeyAlgorithm.parse(args.key_type, args.key_length)
    target = resolve_issue_target(args.common_name, args.intermediate)
    result = ca.issue(
        target,
        _subject(args),
        parse_san_list(args.subject_alt_names),
        algorithm,
        lifetime_days=args.lifetime,
    )

    print(f"[+] Certificate issued for {result.entity}, signed by {result.issuer}")
    if result.san.error is not None:
        print(f"[!] Subject Alternative Names dropped: {result.san.error}")
    elif result.san.entries:
        print("    SAN          : " + ", ".join(str(e.value) for e in result.san.entries))
    print(f"    Private key  : {result.paths.key}")
    print(f"    Request      : {result.paths.csr}")
    print(f"    Certificate  : {result.paths.cert}")


def cmd_list(args: argparse.Namespace) -> None:
    ca = CertificateAuthority(args.base_dir)
    infos = ca.list_certificates()
    if not infos:
        print(f"[-] No certificates found in {ca.base_dir}")
        return
    for info in infos:
        print(f"{info.entry.entity.tier.value:<12} {info.entry.algorithm.kind.value:<5} {info}")


def cmd_renew(args: argparse.Namespace) -> None:
    ca = CertificateAuthority(args.base_dir, passphrase=args.password)
    decisions = ca.renew(common_name=args.common_name)
    if not decisions:
        print("[-] Nothing to renew")
        return
    for d in decisions:
        marker = "[+]" if d.renewed else "[=]"
        print(
            f"{marker} {d.common_name}: expires {d.expires} "
            f"(originally {d.lifetime_days} days) - {d.reason}"
        )


def main(argv: Optional[List[str]] = None) -> int:
    config = load_config()
    parser = build_parser(config)
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        args.func(args)
    except HancockError as exc:
        log.debug("command failed", exc_info=True)
        print(f"[-] {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
