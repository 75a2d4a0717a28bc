"""Key and CSR generation."""

import josepy as jose
from acme import crypto_util
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


def generate_private_key(key_size: int = DEFAULT_KEY_SIZE) -> str:
    """Generate a new RSA private key as PEM text."""
    key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def make_csr(private_key_pem: str, identifiers: list[str]) -> bytes:
    """
    Build a PEM-encoded CSR covering the given names.

    Args:
        private_key_pem: Certificate private key
        identifiers: DNS names for the subjectAltName extension

    Returns:
        CSR in PEM format, as expected by the ACME client
    """
    return crypto_util.make_csr(private_key_pem.encode("ascii"), identifiers)


def generate_account_key(key_size: int = DEFAULT_KEY_SIZE) -> jose.JWKRSA:
    """Generate a new ACME account key."""
    return jose.JWKRSA(
        key=rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    )
