"""
Votifier wire protocol: handshake classification, payload encoders and signing.
"""

from .encoders import (
    FixedKeyRsaEncoder,
    LegacyV1RsaEncoder,
    NuVotifierV2Encoder,
    VoteEncoder,
    build_encoders,
    build_vote_block,
)
from .handshake import Handshake, classify_banner, parse_handshake

__all__ = [
    "FixedKeyRsaEncoder",
    "Handshake",
    "LegacyV1RsaEncoder",
    "NuVotifierV2Encoder",
    "VoteEncoder",
    "build_encoders",
    "build_vote_block",
    "classify_banner",
    "parse_handshake",
]
