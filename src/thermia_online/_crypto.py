"""Internal PKCE helpers for the Azure B2C sign-in flow."""

from __future__ import annotations

import base64
from dataclasses import dataclass

from Crypto.Hash import SHA256
from Crypto.Random import random

from thermia_online._constants import VERIFIER_LENGTH

_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def generate_verifier(length: int = VERIFIER_LENGTH) -> str:
    """Random alphanumeric string of exactly *length* characters."""
    if length <= 0:
        raise ValueError(f"Verifier length must be positive, got {length}.")
    return "".join(random.choice(_ALPHABET) for _ in range(length))


def derive_challenge(verifier: str) -> str:
    """SHA-256 of *verifier*, base64url-encoded without ``=`` padding."""
    digest = SHA256.new(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class Challenge:
    """A PKCE verifier/challenge pair, used for exactly one login attempt."""

    verifier: str
    challenge: str

    @classmethod
    def generate(cls, length: int = VERIFIER_LENGTH) -> Challenge:
        verifier = generate_verifier(length)
        return cls(verifier, derive_challenge(verifier))
