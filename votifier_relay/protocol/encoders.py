"""
Votifier protocol encoders.

Each encoder turns a vote into the exact byte sequence one protocol variant
expects. Encoders are pure: the connection session owns the socket and does
the writing, and no encoder retries anything.
"""

import json
from typing import Protocol

from cryptography.hazmat.primitives.asymmetric import rsa

from ..config.models import VotifierConfig
from ..error_types import ErrorMessages
from ..exceptions import EncodingFailure
from ..models.vote import ProtocolVariant, VoteNotification, VotifierTarget
from ..structured_logging.enhanced_logging_config import get_logger
from .handshake import Handshake
from .signer import (
    KeyMaterialError,
    hmac_sha256_hex,
    load_public_key,
    modulus_size_bytes,
    public_key_fingerprint,
    rsa_pkcs1v15_encrypt,
)

logger = get_logger(__name__)


def build_vote_block(service_name: str, vote: VoteNotification) -> bytes:
    """
    Build the five-line plaintext vote block shared by the RSA variants.

    Format: VOTE\\n<service>\\n<username>\\n<address>\\n<timestamp>\\n
    """
    return f"VOTE\n{service_name}\n{vote.username}\n{vote.address}\n{vote.timestamp}\n".encode()


class VoteEncoder(Protocol):
    """Interface every protocol encoder implements."""

    variant: ProtocolVariant
    # True when the session closes the socket itself after a grace delay;
    # False when it must wait for the server's "ok" confirmation.
    closes_after_send: bool

    def encode(self, vote: VoteNotification, handshake: Handshake, target: VotifierTarget) -> bytes:
        """Return the bytes to write for this vote."""
        ...


class _RsaBlockEncoder:
    """Shared RSA framing for the two v1-style variants."""

    variant: ProtocolVariant

    def __init__(self, service_name: str):
        self.service_name = service_name

    def _encrypt_block(self, vote: VoteNotification, public_key: rsa.RSAPublicKey) -> bytes:
        plaintext = build_vote_block(self.service_name, vote)
        expected_length = modulus_size_bytes(public_key)

        try:
            encrypted = rsa_pkcs1v15_encrypt(plaintext, public_key)
        except ValueError as e:
            raise EncodingFailure(
                f"Failed to encrypt vote block: {e}",
                variant=self.variant.value,
                details={"plaintext_length": len(plaintext), "modulus_bytes": expected_length},
            ) from e

        if len(encrypted) != expected_length:
            raise EncodingFailure(
                f"Encrypted vote block is {len(encrypted)} bytes, expected {expected_length}",
                variant=self.variant.value,
            )

        logger.debug(
            "Vote block encrypted",
            variant=self.variant.value,
            plaintext_length=len(plaintext),
            encrypted_length=len(encrypted),
            fingerprint=public_key_fingerprint(public_key),
        )
        return encrypted


class LegacyV1RsaEncoder(_RsaBlockEncoder):
    """Legacy Votifier v1: RSA with the public key shipped in the handshake."""

    variant = ProtocolVariant.LEGACY_V1_RSA
    closes_after_send = True

    def encode(self, vote: VoteNotification, handshake: Handshake, target: VotifierTarget) -> bytes:
        try:
            public_key = load_public_key(handshake.key_material)
        except KeyMaterialError as e:
            raise EncodingFailure(
                f"{ErrorMessages.INVALID_PUBLIC_KEY}: {e}",
                variant=self.variant.value,
                details={"key_material_length": len(handshake.key_material)},
            ) from e
        return self._encrypt_block(vote, public_key)


class FixedKeyRsaEncoder(_RsaBlockEncoder):
    """
    RSA with one configured public key, ignoring any key in the handshake.

    The server answers with "ok" instead of closing, so this encoder leaves
    the socket open.
    """

    variant = ProtocolVariant.FIXED_KEY_RSA
    closes_after_send = False

    def __init__(self, service_name: str, public_key_pem: str | None):
        super().__init__(service_name)
        self.public_key_pem = public_key_pem
        self._public_key: rsa.RSAPublicKey | None = None

    def _get_public_key(self) -> rsa.RSAPublicKey:
        if self._public_key is not None:
            return self._public_key
        if not self.public_key_pem:
            raise EncodingFailure(ErrorMessages.NO_FIXED_KEY, variant=self.variant.value)
        try:
            self._public_key = load_public_key(self.public_key_pem)
        except KeyMaterialError as e:
            raise EncodingFailure(f"{ErrorMessages.INVALID_PUBLIC_KEY}: {e}", variant=self.variant.value) from e
        return self._public_key

    def encode(self, vote: VoteNotification, handshake: Handshake, target: VotifierTarget) -> bytes:
        return self._encrypt_block(vote, self._get_public_key())


class NuVotifierV2Encoder:
    """NuVotifier v2: JSON vote signed with HMAC-SHA256 keyed by the target token."""

    variant = ProtocolVariant.NUVOTIFIER_V2
    closes_after_send = True

    def __init__(self, service_name: str):
        self.service_name = service_name

    def build_payload(self, vote: VoteNotification) -> str:
        """Serialize the inner vote object exactly as it is signed."""
        inner = {
            "serviceName": self.service_name,
            "username": vote.username,
            "address": vote.address,
            "timestamp": str(vote.timestamp),
        }
        return json.dumps(inner, separators=(",", ":"), ensure_ascii=False)

    def encode(self, vote: VoteNotification, handshake: Handshake, target: VotifierTarget) -> bytes:
        if not target.token:
            # Servers configured without a token verify against an empty HMAC key
            logger.warning("Signing NuVotifier vote without a token", host=target.host, port=target.port)

        payload = self.build_payload(vote)
        signature = hmac_sha256_hex(payload.encode("utf-8"), target.token)
        message = json.dumps({"payload": payload, "signature": signature}, separators=(",", ":"), ensure_ascii=False)

        logger.debug(
            "NuVotifier v2 vote signed",
            payload_length=len(payload),
            signature_length=len(signature),
            token_length=len(target.token),
        )
        return message.encode("utf-8")


def build_encoders(config: VotifierConfig) -> dict[ProtocolVariant, VoteEncoder]:
    """Build the encoder for every protocol variant from relay configuration."""
    return {
        ProtocolVariant.LEGACY_V1_RSA: LegacyV1RsaEncoder(config.service_name),
        ProtocolVariant.FIXED_KEY_RSA: FixedKeyRsaEncoder(config.service_name, config.fixed_key_pem),
        ProtocolVariant.NUVOTIFIER_V2: NuVotifierV2Encoder(config.service_name),
    }
