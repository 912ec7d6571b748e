"""
Command line front end for SealKeep.

Every command acts for one identity (``--identity`` or ``SEALKEEP_IDENTITY``,
falling back to the login name). Commands that touch file contents unlock the
identity file with its passphrase, read from ``SEALKEEP_PASSPHRASE`` when set.

    sealkeep keygen
    sealkeep put report.pdf --id q3-report
    sealkeep grant q3-report bob
    sealkeep --identity bob get q3-report -o report.pdf
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sealkeep.core.config import SealKeepConfig
from sealkeep.core.exceptions import SealKeepError, StepUpRequiredError
from sealkeep.security.codec import RSA_KEY_BITS, generate_key_pair
from sealkeep.security.identity import save_identity
from sealkeep.security.session import KeySession
from .context import AppContext, build_context, open_envelope, read_passphrase
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# commands
# ----------------------------------------------------------------------


def cmd_keygen(ctx: AppContext, args: argparse.Namespace) -> int:
    path = ctx.config.identity_path(ctx.identity)
    if path.exists() and not args.replace:
        print(f"Identity file already exists: {path} (use --replace to rotate)", file=sys.stderr)
        return 1

    passphrase = read_passphrase("New passphrase: ")
    key_pair = generate_key_pair(args.bits)
    save_identity(path, ctx.identity, key_pair, passphrase)

    with KeySession(ctx.identity, key_pair, ttl_seconds=ctx.config.session_ttl_seconds) as keys:
        fingerprint = ctx.service.directory.publish(ctx.identity, keys.public_key, replace=args.replace)
        if args.keyring:
            keys.persist_to_keyring(ctx.config.keyring_service, force=args.force_keyring)

    print(f"Identity '{ctx.identity}' written to {path}")
    print(f"Fingerprint: {fingerprint}")
    return 0


def cmd_put(ctx: AppContext, args: argparse.Namespace) -> int:
    source = Path(args.path)
    data = source.read_bytes()
    file_id = args.file_id or source.name
    step_up = True if args.step_up else None

    with open_envelope(ctx) as session:
        if args.replace:
            session.replace(file_id, data, proof=args.code)
        else:
            session.put(file_id, data, step_up=step_up)
    print(f"Stored '{file_id}' ({len(data)} bytes)")
    return 0


def cmd_get(ctx: AppContext, args: argparse.Namespace) -> int:
    with open_envelope(ctx) as session:
        data = session.get(args.file_id, proof=args.code)
    if args.output:
        Path(args.output).write_bytes(data)
        print(f"Wrote {len(data)} bytes to {args.output}")
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    return 0


def cmd_grant(ctx: AppContext, args: argparse.Namespace) -> int:
    with open_envelope(ctx) as session:
        session.share(args.file_id, args.grantee, proof=args.code)
    print(f"Granted '{args.grantee}' access to '{args.file_id}'")
    return 0


def cmd_revoke(ctx: AppContext, args: argparse.Namespace) -> int:
    with open_envelope(ctx) as session:
        revoked = session.unshare(args.file_id, args.grantee)
    if revoked:
        print(f"Revoked '{args.grantee}' from '{args.file_id}'")
    else:
        print(f"'{args.grantee}' had no access to '{args.file_id}'")
    return 0


def cmd_ls(ctx: AppContext, args: argparse.Namespace) -> int:
    custody = ctx.service.custody
    records = custody.list_shared_with(ctx.identity) if args.shared else custody.list_files(ctx.identity)
    if not records:
        print("No files.")
        return 0
    for record in records:
        flags = "step-up" if record.step_up else "-"
        if args.shared:
            print(f"{record.file_id}\towner={record.owner}\t{flags}")
        else:
            grantees = ",".join(sorted(record.grantee_keys)) or "-"
            print(f"{record.file_id}\tgrantees={grantees}\t{flags}")
    return 0


def cmd_rm(ctx: AppContext, args: argparse.Namespace) -> int:
    with open_envelope(ctx) as session:
        session.remove(args.file_id)
    print(f"Removed '{args.file_id}'")
    return 0


def cmd_totp_enroll(ctx: AppContext, args: argparse.Namespace) -> int:
    # enrolment replaces any previous secret, so require the identity passphrase first
    with open_envelope(ctx):
        secret = ctx.service.identities.enroll_totp(ctx.identity)
    print(f"TOTP secret for '{ctx.identity}': {secret}")
    print("Add it to an authenticator app (SHA-1, 6 digits, 30 second step).")
    return 0


# ----------------------------------------------------------------------
# parser
# ----------------------------------------------------------------------


def _add_code_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--code",
        default=None,
        help="One-time code for files that require step-up authentication",
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sealkeep",
        description="Envelope-encrypted file storage with per-user key custody.",
    )
    parser.add_argument(
        "--identity",
        default=None,
        help="Identity to act as (default: $SEALKEEP_IDENTITY or the login name)",
    )
    parser.add_argument(
        "--home",
        default=None,
        help="Data directory (default: $SEALKEEP_HOME or ~/.sealkeep)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log progress to stderr",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", help="Create an identity key pair and publish its public key")
    keygen.add_argument("--bits", type=int, default=RSA_KEY_BITS, help="RSA modulus size (default: 2048)")
    keygen.add_argument("--replace", action="store_true", help="Rotate an existing identity")
    keygen.add_argument("--keyring", action="store_true", help="Also store the private key in the OS keystore")
    keygen.add_argument("--force-keyring", action="store_true", help="Store in the OS keystore even if it looks insecure")
    keygen.set_defaults(handler=cmd_keygen)

    put = sub.add_parser("put", help="Encrypt and store a file")
    put.add_argument("path", help="File to encrypt")
    put.add_argument("--id", dest="file_id", default=None, help="File id (default: the file name)")
    put.add_argument("--step-up", action="store_true", help="Require a one-time code to read this file")
    put.add_argument("--replace", action="store_true", help="Re-encrypt an existing file; drops its grants")
    _add_code_option(put)
    put.set_defaults(handler=cmd_put)

    get = sub.add_parser("get", help="Fetch and decrypt a file")
    get.add_argument("file_id")
    get.add_argument("-o", "--output", default=None, help="Write to this path instead of stdout")
    _add_code_option(get)
    get.set_defaults(handler=cmd_get)

    grant = sub.add_parser("grant", help="Share a file with another identity")
    grant.add_argument("file_id")
    grant.add_argument("grantee")
    _add_code_option(grant)
    grant.set_defaults(handler=cmd_grant)

    revoke = sub.add_parser("revoke", help="Withdraw another identity's access")
    revoke.add_argument("file_id")
    revoke.add_argument("grantee")
    revoke.set_defaults(handler=cmd_revoke)

    ls = sub.add_parser("ls", help="List owned files")
    ls.add_argument("--shared", action="store_true", help="List files shared with you instead")
    ls.set_defaults(handler=cmd_ls)

    rm = sub.add_parser("rm", help="Delete a file and its key record")
    rm.add_argument("file_id")
    rm.set_defaults(handler=cmd_rm)

    totp = sub.add_parser("totp-enroll", help="Register a new TOTP secret for step-up")
    totp.set_defaults(handler=cmd_totp_enroll)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    configure_logging(logging.INFO if args.verbose else logging.WARNING)
    config = SealKeepConfig.from_env(data_root=args.home)

    ctx = build_context(config, identity=args.identity)
    try:
        return args.handler(ctx, args)
    except StepUpRequiredError as e:
        print(f"Error: {e} (pass --code)", file=sys.stderr)
        return 1
    except (SealKeepError, FileNotFoundError, ValueError) as e:
        logger.debug("command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        ctx.close()


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
