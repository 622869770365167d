"""
Vote relay data models.

VoteNotification and VotifierTarget are the immutable inputs of a relay
attempt; RelayOutcome is the one result written back per attempt.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..error_types import RelayErrorType

MINECRAFT_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,16}$")


class ProtocolVariant(str, Enum):
    """Votifier wire format spoken by a remote server, derived from its handshake banner."""

    LEGACY_V1_RSA = "legacy_v1_rsa"
    NUVOTIFIER_V2 = "nuvotifier_v2"
    FIXED_KEY_RSA = "fixed_key_rsa"


class _FrozenModel(BaseModel):
    """Base for immutable relay models."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
    )


class VoteNotification(_FrozenModel):
    """A single vote to be delivered to a Minecraft server."""

    username: str = Field(..., min_length=1, max_length=16, description="Minecraft username of the voter")
    address: str = Field(..., min_length=1, description="Source IP address of the voter")
    timestamp: int = Field(..., gt=0, description="Unix timestamp of the vote in seconds")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Minecraft names are 1-16 letters, digits or underscores."""
        if not MINECRAFT_USERNAME_PATTERN.match(v):
            raise ValueError("Username must be 1-16 characters of letters, digits or underscore")
        return v

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """The address is one line of the vote block."""
        if "\n" in v or "\r" in v:
            raise ValueError("Address cannot contain line breaks")
        return v


class VotifierTarget(_FrozenModel):
    """Votifier endpoint of one listed server."""

    # The token is an HMAC key and must reach the signer unchanged
    model_config = ConfigDict(extra="forbid", frozen=True, validate_default=True)

    host: str = Field(..., min_length=1, description="Votifier host name or IP")
    port: int = Field(default=8192, ge=1, le=65535, description="Votifier port")
    token: str = Field(default="", description="Shared secret used as the NuVotifier HMAC key")

    @field_validator("host", mode="before")
    @classmethod
    def strip_host(cls, v: Any) -> Any:
        """Surrounding whitespace in a host name is never meaningful."""
        return v.strip() if isinstance(v, str) else v

    def __repr__(self) -> str:
        return f"VotifierTarget(host={self.host!r}, port={self.port})"


class PendingRelay(_FrozenModel):
    """One row of the 'votes needing relay' query."""

    vote_id: str | int = Field(..., description="Identifier of the vote in the owning store")
    vote: VoteNotification
    target: VotifierTarget


class RelayOutcome(_FrozenModel):
    """Result of one relay attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    success: bool
    response_text: str = Field(..., description="Server reply or error description")
    duration_ms: int = Field(..., ge=0)
    variant: ProtocolVariant | None = None
    error_type: RelayErrorType | None = None

    def to_record(self) -> dict[str, Any]:
        """Column values the owning vote store updates from this outcome."""
        return {"votifier_sent": self.success, "votifier_response": self.response_text}


class ConnectionProbeResult(_FrozenModel):
    """Result of a handshake-only connection test."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    success: bool
    banner: str
    duration_ms: int = Field(..., ge=0)
    variant: ProtocolVariant | None = None
    version: str | None = Field(default=None, description="'v2' for NuVotifier, 'v1' otherwise")
