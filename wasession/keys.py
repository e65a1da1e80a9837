from __future__ import annotations
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from wasession.shared.utils import b64url_nopad


@dataclass
class KeyPair:
    private: bytes
    public: bytes

    def public_b64url(self) -> str:
        return b64url_nopad(self.public)

    @classmethod
    def generate(cls) -> "KeyPair":
        key = X25519PrivateKey.generate()
        private = key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        public = key.public_key().public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )
        return cls(private=private, public=public)

    @classmethod
    def from_private(cls, private: bytes) -> "KeyPair":
        key = X25519PrivateKey.from_private_bytes(private)
        public = key.public_key().public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )
        return cls(private=private, public=public)


def generate_adv_secret() -> bytes:
    return os.urandom(32)


def generate_registration_id() -> int:
    # 14-bit id, never zero
    return int.from_bytes(os.urandom(2), "big") % 16380 + 1
