"""
Report signing.

Persisted reports can carry a detached Ed25519 signature so that the
diagnostic file collected from a device can be checked for tampering.
"""

from pathlib import Path
from typing import Tuple, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey
)


class Ed25519Signer:
    """Signs report bytes with an Ed25519 private key."""

    def __init__(self, private_key_path: Path):
        """
        Args:
            private_key_path: Ed25519 private key, PEM or raw 32 bytes

        Raises:
            ValueError: If the key file cannot be loaded
        """
        self.private_key_path = Path(private_key_path)
        self._private_key = self._load_private_key()

    def _load_private_key(self) -> Ed25519PrivateKey:
        try:
            key_data = self.private_key_path.read_bytes()
        except OSError as e:
            raise ValueError(f"Failed to read private key {self.private_key_path}: {e}")

        if b'-----BEGIN' in key_data:
            try:
                private_key = serialization.load_pem_private_key(key_data, password=None)
            except (ValueError, TypeError, UnsupportedAlgorithm) as e:
                raise ValueError(f"Invalid PEM key {self.private_key_path}: {e}")
        elif len(key_data) == 32:
            private_key = Ed25519PrivateKey.from_private_bytes(key_data)
        else:
            raise ValueError(f"Invalid key format in {self.private_key_path}")

        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError("Not an Ed25519 private key")

        return private_key

    def sign(self, data: Union[bytes, str]) -> bytes:
        """Return the 64-byte signature of `data` (str is UTF-8 encoded)."""
        if isinstance(data, str):
            data = data.encode('utf-8')
        return self._private_key.sign(data)

    def get_public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )


def verify_signature(public_key: bytes, data: Union[bytes, str], signature: bytes) -> bool:
    """Check a detached signature against a raw 32-byte public key."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, data)
        return True
    except InvalidSignature:
        return False


def generate_keypair() -> Tuple[bytes, bytes]:
    """Generate a raw (private, public) Ed25519 key pair."""
    private_key = Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )
    return private_bytes, public_bytes
