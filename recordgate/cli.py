#!/usr/bin/env python3
"""
recordgate Command Line Interface

Usage:
    recordgate namehash <name>
    recordgate keygen --scheme eth|ed25519 [--output <file>]
    recordgate sign --key <hex|file> --data <hex> [--inception <epoch>] [--context <hex>]
    recordgate verify-log <update_log_export.json>
    recordgate resolve <name> [--rpc-url <url>] [--registry <address>]
    recordgate serve [--host <host>] [--port <port>]
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


def load_json(path: str):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def verify_update_log(entries: List[Dict[str, Any]]) -> Tuple[bool, Optional[int]]:
    """
    Check the hash chain of an exported update log.

    Returns:
        (True, None) if every entry links to its predecessor, otherwise
        (False, seq) of the first broken entry
    """
    from recordgate.hashing import chain_entry_hash, sha256_hex

    prev = None
    for entry in entries:
        if (entry.get("prev_entry_hash") or None) != prev:
            return False, entry.get("seq")
        if entry.get("entry_hash") != chain_entry_hash(prev, sha256_hex(entry["entry_json"])):
            return False, entry.get("seq")
        prev = entry["entry_hash"]
    return True, None


def cmd_namehash(args):
    """Print the node and DNS encoding of a name."""
    from recordgate.hashing import dns_encode, namehash, normalize_name

    name = normalize_name(args.name)
    print(json.dumps({
        "name": name,
        "node": "0x" + namehash(name).hex(),
        "dnsEncoded": "0x" + dns_encode(name).hex(),
    }, indent=2))
    return 0


def cmd_keygen(args):
    """Generate a signing key for submitting updates."""
    from recordgate.signing import PrincipalScheme, generate_key

    scheme = PrincipalScheme.EVM if args.scheme == "eth" else PrincipalScheme.ED25519
    private_key, sender = generate_key(scheme)
    key = {"scheme": scheme.value, "private_key": private_key, "sender": sender}

    if args.output:
        save_json(key, args.output)
        print(f"Key saved to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(key, indent=2))
    print(f"Sender: {sender}", file=sys.stderr)
    return 0


def cmd_sign(args):
    """Produce a signed POST /records/{name} body."""
    from recordgate.signing import PrincipalScheme, sender_for_key, sign_update
    from recordgate.util import from_hex, now_epoch, to_hex

    if Path(args.key).exists():
        key = load_json(args.key)
        private_key, sender = key["private_key"], key["sender"]
    else:
        scheme = PrincipalScheme.EVM if args.scheme == "eth" else PrincipalScheme.ED25519
        private_key = args.key
        sender = sender_for_key(private_key, scheme)

    payload = from_hex(args.data)
    inception = args.inception if args.inception is not None else now_epoch()
    signature = sign_update(private_key, payload, sender, inception)

    body = {
        "data": to_hex(payload),
        "sender": sender,
        "inceptionDate": inception,
        "signature": to_hex(signature),
    }
    if args.context:
        body["context"] = to_hex(from_hex(args.context))
    print(json.dumps(body, indent=2))
    return 0


def cmd_verify_log(args):
    """Verify the hash chain of an exported update log."""
    ok, seq = verify_update_log(load_json(args.file))
    if not ok:
        print(f"FAIL: chain mismatch at seq {seq}")
        return 1
    print("PASS: update log chain valid")
    return 0


def cmd_resolve(args):
    """Resolve a name's metadata through the origin chain."""
    from recordgate import config
    from recordgate.errors import GatewayError
    from recordgate.metadata import MetadataResolver
    from recordgate.origin import Web3OriginChain

    origin = Web3OriginChain.connect(
        args.rpc_url or config.ORIGIN_RPC_URL,
        args.registry or config.REGISTRY_ADDRESS,
        config.RESOLUTION_TIMEOUT,
    )
    try:
        descriptor = MetadataResolver(origin).resolve(args.name)
    except GatewayError as e:
        print(f"✗ {e.reason.value}: {e.detail}", file=sys.stderr)
        return 1
    print(json.dumps(descriptor.to_dict(), indent=2))
    return 0


def cmd_serve(args):
    """Run the HTTP gateway."""
    import uvicorn

    uvicorn.run("recordgate.main:app", host=args.host, port=args.port)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="recordgate: signed offchain record update gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  recordgate namehash alice.example.eth
  recordgate keygen --scheme eth -o key.json
  recordgate sign --key key.json --data 0x68656c6c6f
  recordgate verify-log update_log.json
  recordgate serve --port 8000
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    namehash_parser = subparsers.add_parser("namehash", help="Compute the node of a name")
    namehash_parser.add_argument("name")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a sender key")
    keygen_parser.add_argument("-s", "--scheme", choices=["eth", "ed25519"], default="eth")
    keygen_parser.add_argument("-o", "--output", help="Output file for the key")

    sign_parser = subparsers.add_parser("sign", help="Sign an update")
    sign_parser.add_argument("-k", "--key", required=True, help="Key file from keygen, or private key hex")
    sign_parser.add_argument("-s", "--scheme", choices=["eth", "ed25519"], default="eth",
                             help="Scheme of a raw private key")
    sign_parser.add_argument("-d", "--data", required=True, help="Payload hex")
    sign_parser.add_argument("-i", "--inception", type=int, help="Inception time (default: now)")
    sign_parser.add_argument("-c", "--context", help="Context hex")

    verify_parser = subparsers.add_parser("verify-log", help="Verify an exported update log")
    verify_parser.add_argument("file")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a name's metadata")
    resolve_parser.add_argument("name")
    resolve_parser.add_argument("--rpc-url", help="Origin chain RPC URL")
    resolve_parser.add_argument("--registry", help="Registry contract address")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP gateway")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    commands = {
        "namehash": cmd_namehash,
        "keygen": cmd_keygen,
        "sign": cmd_sign,
        "verify-log": cmd_verify_log,
        "resolve": cmd_resolve,
        "serve": cmd_serve,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 2
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
