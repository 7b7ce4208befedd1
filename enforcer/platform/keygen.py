"""OpenSSH key pair generation with the cryptography package.

RSA key generation is CPU-bound (tens to hundreds of ms at 2048+ bits) and is
pushed to a worker thread so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from enforcer.constants import (
    DEFAULT_KEY_ALGORITHM,
    DEFAULT_RSA_BITS,
    MIN_RSA_BITS,
    SUPPORTED_KEY_ALGORITHMS,
)
from enforcer.platform.models import KeyPair


class OpenSSHKeyPairGenerator:
    """KeyPairGenerator producing ``ssh-rsa`` or ``ssh-ed25519`` pairs.

    public_key:  single-line OpenSSH format, comment appended
    private_key: OpenSSH PEM block, unencrypted
    """

    def __init__(self, algorithm: str = DEFAULT_KEY_ALGORITHM, rsa_bits: int = DEFAULT_RSA_BITS) -> None:
        if algorithm not in SUPPORTED_KEY_ALGORITHMS:
            raise ValueError(
                f"Unsupported key algorithm {algorithm!r}; expected one of {sorted(SUPPORTED_KEY_ALGORITHMS)}"
            )
        if algorithm == "rsa" and rsa_bits < MIN_RSA_BITS:
            raise ValueError(f"rsa_bits must be >= {MIN_RSA_BITS}, got {rsa_bits}")
        self.algorithm = algorithm
        self.rsa_bits = rsa_bits

    async def generate(self, comment: str) -> KeyPair:
        return await asyncio.to_thread(self.generate_sync, comment)

    def generate_sync(self, comment: str) -> KeyPair:
        if self.algorithm == "ed25519":
            private_key = ed25519.Ed25519PrivateKey.generate()
        else:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.rsa_bits)

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_openssh = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode("ascii")

        if comment:
            public_openssh = f"{public_openssh} {comment}"
        return KeyPair(public_key=public_openssh, private_key=private_pem)


def openssh_fingerprint(public_key_text: str) -> Optional[str]:
    """``SHA256:<base64>`` fingerprint as printed by ``ssh-keygen -lf``.

    Returns None when the text is not a parseable OpenSSH public key.
    """
    try:
        public_key = serialization.load_ssh_public_key(public_key_text.strip().encode("ascii"))
    except (ValueError, UnicodeEncodeError, UnsupportedAlgorithm):
        return None

    blob = base64.b64decode(
        public_key.public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).split()[1]
    )
    digest = hashes.Hash(hashes.SHA256())
    digest.update(blob)
    return "SHA256:" + base64.b64encode(digest.finalize()).decode("ascii").rstrip("=")
