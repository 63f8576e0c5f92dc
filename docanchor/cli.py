#!/usr/bin/env python3
"""
docanchor Command Line Interface

Usage:
    docanchor hash (--file <file> | --text <text>)
    docanchor keygen --output <keyfile> [--did <identity>] [--method-type <type>]
    docanchor sign --key <keyfile> (--file <file> | --hash <hex>)
    docanchor anchor --key <keyfile> --api-key <key> (--file <file> | --hash <hex>) [--url <url>]
    docanchor verify (--file <file> | --hash <hex>) [--url <url>]
    docanchor create-org --name <name> [--did <identity>] [--db <path>]
    docanchor verify-log [--topic <topic>] [--db <path>]
"""

import argparse
import json
import os
import sys

import requests

DEFAULT_URL = os.getenv("DOCANCHOR_URL", "http://localhost:3001")


def print_json(data: dict):
    print(json.dumps(data, indent=2))


def _content_hash(args) -> str:
    from docanchor.hashing import hash_file
    from docanchor.security import validate_content_hash

    if getattr(args, "file", None):
        return hash_file(args.file)
    return validate_content_hash(args.hash, field_name="--hash")


def cmd_hash(args):
    """Compute the SHA-256 content hash of a file or string."""
    from docanchor.hashing import hash_file, sha256_hex

    if args.file:
        print(hash_file(args.file))
    else:
        print(sha256_hex(args.text))
    return 0


def cmd_keygen(args):
    """Generate an issuer Ed25519 key file."""
    from docanchor.keys import IssuerKey

    key = IssuerKey.generate(identity=args.did)
    key.to_file(args.output)

    print(f"Key saved to: {args.output}", file=sys.stderr)
    print(f"Identity: {key.identity}", file=sys.stderr)
    # The verification method to publish in the identity's DID document
    print_json(key.verification_method(args.method_type))
    return 0


def cmd_sign(args):
    """Sign a content hash with an issuer key file."""
    from docanchor.keys import IssuerKey

    key = IssuerKey.from_file(args.key)
    content_hash = _content_hash(args)
    print_json({
        "documentHash": content_hash,
        "did": key.identity,
        "signature": key.sign_hash(content_hash),
    })
    return 0


def cmd_anchor(args):
    """Sign a document hash and submit it to a docanchor server."""
    from docanchor.keys import IssuerKey

    key = IssuerKey.from_file(args.key)
    content_hash = _content_hash(args)
    body = {"documentHash": content_hash, "did": key.identity, "signature": key.sign_hash(content_hash)}

    r = requests.post(
        f"{args.url.rstrip('/')}/api/v1/anchor",
        json=body,
        headers={"Authorization": f"Bearer {args.api_key}"},
        timeout=args.timeout,
    )
    print_json(r.json())

    if r.status_code == 201:
        print("\n✓ Anchored", file=sys.stderr)
        return 0
    if r.status_code == 409:
        print("\n✓ Already anchored", file=sys.stderr)
        return 0
    print(f"\n✗ Anchor failed (HTTP {r.status_code})", file=sys.stderr)
    return 1


def cmd_verify(args):
    """Ask a docanchor server to verify a document."""
    content_hash = _content_hash(args)
    r = requests.post(
        f"{args.url.rstrip('/')}/api/v1/verify",
        json={"documentHash": content_hash},
        timeout=args.timeout,
    )
    result = r.json()
    print_json(result)

    if r.status_code == 200 and result.get("status") == "VERIFIED_ON_CHAIN":
        print("\n✓ VERIFIED_ON_CHAIN", file=sys.stderr)
        return 0
    print("\n✗ NOT_VERIFIED", file=sys.stderr)
    return 1


def cmd_create_org(args):
    """Create an organization and print its API key."""
    from docanchor.config import Settings
    from docanchor.db import Database
    from docanchor.errors import ValidationError
    from docanchor.organizations import OrganizationStore
    from docanchor.security import validate_identity

    settings = Settings.from_env()
    db = Database(args.db or settings.db_path)
    db.init_schema()

    try:
        identity = validate_identity(args.did, settings.identity_prefixes) if args.did else None
        org, api_key = OrganizationStore(db).create(args.name, identity=identity)
    except ValidationError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    print_json({"organizationId": org.id, "name": org.name, "did": org.identity, "apiKey": api_key})
    print("\nStore the API key now; it is not shown again.", file=sys.stderr)
    return 0


def cmd_verify_log(args):
    """Recompute the running-hash chain of a local consensus topic."""
    from docanchor.config import Settings
    from docanchor.consensus import LocalConsensusLog
    from docanchor.db import Database

    settings = Settings.from_env()
    db = Database(args.db or settings.db_path)
    db.init_schema()
    topic_id = args.topic or settings.topic_id

    if LocalConsensusLog(db).verify_chain(topic_id):
        print(f"VALID: {topic_id} chain verified")
        return 0
    print(f"INVALID: {topic_id} chain broken")
    return 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="docanchor CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docanchor hash -f diploma.pdf
  docanchor keygen -o issuer.json
  docanchor create-org -n "Acme University" -d did:key:z6Mk...
  docanchor anchor -k issuer.json -K <api-key> -f diploma.pdf
  docanchor verify -f diploma.pdf
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Compute SHA-256 content hash")
    group = hash_parser.add_mutually_exclusive_group(required=True)
    group.add_argument("-f", "--file", help="File to hash")
    group.add_argument("-t", "--text", help="String to hash (UTF-8)")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate issuer key file")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output key file")
    keygen_parser.add_argument("-d", "--did", help="Identity to bind (default: did:key for the new key)")
    keygen_parser.add_argument(
        "-m", "--method-type",
        default="Ed25519VerificationKey2020",
        choices=["Ed25519VerificationKey2020", "Ed25519VerificationKey2018", "JsonWebKey2020"],
        help="Verification method type to print"
    )

    # sign / anchor / verify share a document argument
    def add_document_args(p):
        doc = p.add_mutually_exclusive_group(required=True)
        doc.add_argument("-f", "--file", help="Document file")
        doc.add_argument("-H", "--hash", help="SHA-256 content hash (hex)")

    sign_parser = subparsers.add_parser("sign", help="Sign a document hash")
    sign_parser.add_argument("-k", "--key", required=True, help="Issuer key file")
    add_document_args(sign_parser)

    anchor_parser = subparsers.add_parser("anchor", help="Anchor a document")
    anchor_parser.add_argument("-k", "--key", required=True, help="Issuer key file")
    anchor_parser.add_argument("-K", "--api-key", required=True, help="Organization API key")
    anchor_parser.add_argument("-u", "--url", default=DEFAULT_URL, help="docanchor server URL")
    anchor_parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")
    add_document_args(anchor_parser)

    verify_parser = subparsers.add_parser("verify", help="Verify a document")
    verify_parser.add_argument("-u", "--url", default=DEFAULT_URL, help="docanchor server URL")
    verify_parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
    add_document_args(verify_parser)

    # create-org
    org_parser = subparsers.add_parser("create-org", help="Create organization and API key")
    org_parser.add_argument("-n", "--name", required=True, help="Organization name")
    org_parser.add_argument("-d", "--did", help="Identity owned by the organization")
    org_parser.add_argument("--db", help="Database path (default: DOCANCHOR_DB_PATH)")

    # verify-log
    log_parser = subparsers.add_parser("verify-log", help="Verify local consensus log chain")
    log_parser.add_argument("-t", "--topic", help="Topic id (default: HCS_TOPIC_ID)")
    log_parser.add_argument("--db", help="Database path (default: DOCANCHOR_DB_PATH)")

    args = parser.parse_args(argv)

    commands = {
        "hash": cmd_hash,
        "keygen": cmd_keygen,
        "sign": cmd_sign,
        "anchor": cmd_anchor,
        "verify": cmd_verify,
        "create-org": cmd_create_org,
        "verify-log": cmd_verify_log,
    }
    if args.command not in commands:
        parser.print_help()
        sys.exit(2)

    from docanchor.errors import ValidationError

    try:
        sys.exit(commands[args.command](args))
    except ValidationError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        sys.exit(1)
    except requests.RequestException as e:
        print(f"✗ Request failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
