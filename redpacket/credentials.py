"""Pluggable password verification."""

import hmac
from abc import ABC, abstractmethod

from werkzeug.security import check_password_hash, generate_password_hash


class CredentialVerifier(ABC):
    """Turns a password into its stored form and checks attempts against it."""

    scheme = ""

    @abstractmethod
    def prepare(self, password: str) -> str:
        """Return the value persisted for a new account."""

    @abstractmethod
    def verify(self, stored: str, supplied: str) -> bool:
        """True if ``supplied`` matches the persisted value."""


class PlaintextCredentialVerifier(CredentialVerifier):
    """Exact-match passwords stored as given. Kept for compatibility with existing accounts."""

    scheme = "plaintext"

    def prepare(self, password: str) -> str:
        return password

    def verify(self, stored: str, supplied: str) -> bool:
        return hmac.compare_digest(stored.encode("utf-8"), supplied.encode("utf-8"))


class HashedCredentialVerifier(CredentialVerifier):
    """Salted PBKDF2 hashes via werkzeug."""

    scheme = "pbkdf2"

    def __init__(self, method: str = "pbkdf2:sha256"):
        self.method = method

    def prepare(self, password: str) -> str:
        return generate_password_hash(password, method=self.method)

    def verify(self, stored: str, supplied: str) -> bool:
        return check_password_hash(stored, supplied)


def get_verifier(scheme: str) -> CredentialVerifier:
    if scheme == PlaintextCredentialVerifier.scheme:
        return PlaintextCredentialVerifier()
    if scheme == HashedCredentialVerifier.scheme:
        return HashedCredentialVerifier()
    raise ValueError(f"Unknown credential scheme {scheme!r}")
