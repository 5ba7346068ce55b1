#!/usr/bin/env python3
"""
Generate the RSA key pairs used to sign access and refresh tokens.

Each token class gets its own independent pair. Keys are printed as
base64-encoded PEM, ready to paste into a .env file.

Usage:
    python scripts/generate_keys.py [--bits 2048]
"""

import base64
import sys

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def generate_pair(bits: int) -> tuple[str, str]:
    """Return (private, public) as base64-encoded PEM."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(private_pem).decode("ascii"), base64.b64encode(public_pem).decode("ascii")


def main(argv: list[str]) -> int:
    bits = 2048
    if "--bits" in argv:
        try:
            bits = int(argv[argv.index("--bits") + 1])
        except (IndexError, ValueError):
            print("❌ --bits expects an integer, e.g. --bits 4096", file=sys.stderr)
            return 1
    if bits < 2048:
        print("❌ RSA keys shorter than 2048 bits are not accepted", file=sys.stderr)
        return 1

    for prefix in ("ACCESS", "REFRESH"):
        private_key, public_key = generate_pair(bits)
        print(f"{prefix}_TOKEN_PRIVATE_KEY={private_key}")
        print(f"{prefix}_TOKEN_PUBLIC_KEY={public_key}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
