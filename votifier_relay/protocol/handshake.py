"""
Votifier handshake classification.

A Votifier-compatible server sends one banner line immediately after a client
connects. The banner alone decides which wire format the client must speak.
"""

from dataclasses import dataclass

from ..error_types import ErrorMessages
from ..exceptions import HandshakeParseFailure
from ..models.vote import ProtocolVariant

NUVOTIFIER_MARKERS = ("VOTIFIER 2", "NUVOTIFIER")
V1_MARKER = "VOTIFIER 1"


@dataclass(frozen=True)
class Handshake:
    """Parsed handshake: banner line, derived variant and any trailing key block."""

    banner: str
    variant: ProtocolVariant
    key_material: str = ""

    @property
    def version(self) -> str:
        """Coarse protocol version label used by connection probes."""
        return "v2" if self.variant is ProtocolVariant.NUVOTIFIER_V2 else "v1"


def decode_banner(raw_line: bytes) -> str:
    """
    Decode the raw first line of a handshake.

    Raises:
        HandshakeParseFailure: If the line is not printable UTF-8 text
    """
    try:
        text = raw_line.decode("utf-8")
    except UnicodeDecodeError as e:
        raise HandshakeParseFailure(
            ErrorMessages.HANDSHAKE_NOT_TEXT,
            details={"reason": str(e), "length": len(raw_line)},
        ) from e

    banner = text.strip()
    if any(not ch.isprintable() for ch in banner):
        raise HandshakeParseFailure(
            ErrorMessages.HANDSHAKE_NOT_TEXT,
            details={"reason": "control characters in banner", "length": len(raw_line)},
        )
    return banner


def classify_banner(banner: str, *, v1_banner_uses_fixed_key: bool = True) -> ProtocolVariant:
    """
    Classify the protocol variant from a banner line.

    'VOTIFIER 1' banners map to the fixed-key RSA variant by default. That
    mapping belongs to particular server installations rather than the
    Votifier protocol, so it can be switched back to legacy RSA.

    Args:
        banner: First handshake line
        v1_banner_uses_fixed_key: Map 'VOTIFIER 1' to FIXED_KEY_RSA (else LEGACY_V1_RSA)

    Returns:
        ProtocolVariant: The variant to speak
    """
    if any(marker in banner for marker in NUVOTIFIER_MARKERS):
        return ProtocolVariant.NUVOTIFIER_V2
    if V1_MARKER in banner:
        return ProtocolVariant.FIXED_KEY_RSA if v1_banner_uses_fixed_key else ProtocolVariant.LEGACY_V1_RSA
    return ProtocolVariant.LEGACY_V1_RSA


def parse_handshake(raw: bytes, *, v1_banner_uses_fixed_key: bool = True) -> Handshake:
    """
    Parse a complete handshake buffer.

    The first line is the banner; for the legacy variant every following line
    is the server's RSA public key block.

    Raises:
        HandshakeParseFailure: If the buffer is empty or the banner is not text
    """
    if not raw:
        raise HandshakeParseFailure(ErrorMessages.CLOSED_WITHOUT_HANDSHAKE)

    first_line, _, remainder = raw.partition(b"\n")
    banner = decode_banner(first_line)
    variant = classify_banner(banner, v1_banner_uses_fixed_key=v1_banner_uses_fixed_key)

    key_material = ""
    if variant is ProtocolVariant.LEGACY_V1_RSA:
        key_material = remainder.decode("utf-8", errors="replace").strip()

    return Handshake(banner=banner, variant=variant, key_material=key_material)
