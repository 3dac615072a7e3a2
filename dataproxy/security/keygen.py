"""Key generation CLI

Prints a fresh 256-bit DATA_ENCRYPTION_KEY. Changing the key makes every envelope
issued under the old one undecryptable; restart the proxy after setting it.

Run: python -m dataproxy.security.keygen [--hex]
"""
import argparse
import base64
import sys

from dataproxy.security.encryption import generate_key


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a DATA_ENCRYPTION_KEY")
    parser.add_argument("--hex", action="store_true", help="print hex instead of base64")
    return parser


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    key = generate_key()
    if args.hex:
        key = base64.b64decode(key).hex()
    print(f"DATA_ENCRYPTION_KEY={key}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
