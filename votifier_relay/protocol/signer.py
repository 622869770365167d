"""
Signing and encryption primitives for Votifier payloads.

NuVotifier v2 votes are authenticated with an HMAC-SHA256 signature keyed by
the server's token; v1-style votes are encrypted with the server's RSA public
key using PKCS#1 v1.5 padding.
"""

import base64
import hashlib
import hmac
import re

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
PEM_FOOTER = "-----END PUBLIC KEY-----"
_WHITESPACE = re.compile(r"\s+")


class KeyMaterialError(ValueError):
    """Raised when public key text cannot be turned into an RSA key."""


def hmac_sha256_hex(payload: bytes | str, token: str) -> str:
    """
    Compute the hex-encoded HMAC-SHA256 of a payload.

    Args:
        payload: Bytes (or UTF-8 text) to sign
        token: Shared secret used as the HMAC key

    Returns:
        str: Lowercase hex digest
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(token.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def normalize_public_key_pem(key_text: str) -> str:
    """
    Rebuild a PEM document from key text that may lack headers.

    Votifier servers commonly ship the bare base64 body of an X.509
    SubjectPublicKeyInfo structure, sometimes wrapped across lines.
    """
    cleaned = key_text.strip()
    if "-----BEGIN" in cleaned:
        return cleaned + "\n"

    body = _WHITESPACE.sub("", cleaned)
    if not body:
        raise KeyMaterialError("Public key is empty")
    lines = [body[i : i + 64] for i in range(0, len(body), 64)]
    return "\n".join([PEM_HEADER, *lines, PEM_FOOTER]) + "\n"


def load_public_key(key_text: str) -> rsa.RSAPublicKey:
    """
    Parse an RSA public key from PEM or bare base64 text.

    Args:
        key_text: PEM document or its base64 body

    Returns:
        RSAPublicKey: The parsed key

    Raises:
        KeyMaterialError: If the text is not an RSA public key
    """
    pem = normalize_public_key_pem(key_text)
    try:
        key = serialization.load_pem_public_key(pem.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"Could not parse public key: {e}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyMaterialError(f"Expected an RSA public key, got {type(key).__name__}")
    return key


def modulus_size_bytes(public_key: rsa.RSAPublicKey) -> int:
    """Size of the RSA modulus in bytes; every ciphertext is exactly this long."""
    return (public_key.key_size + 7) // 8


def rsa_pkcs1v15_encrypt(plaintext: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """
    Encrypt plaintext with RSA PKCS#1 v1.5 padding.

    Args:
        plaintext: Bytes to encrypt (at most modulus size - 11 bytes)
        public_key: Recipient's RSA public key

    Returns:
        bytes: Ciphertext, one modulus-sized block

    Raises:
        ValueError: If the plaintext is too long for the key
    """
    return public_key.encrypt(plaintext, padding.PKCS1v15())


def public_key_fingerprint(public_key: rsa.RSAPublicKey) -> str:
    """Short SHA-256 fingerprint of a public key, safe to log."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b16encode(hashlib.sha256(der).digest()[:8]).decode("ascii").lower()
