from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from wasession.keys import KeyPair, generate_adv_secret, generate_registration_id
from wasession.shared.utils import ParticipantAddress, b64url_nopad


@dataclass
class DeviceIdentity:
    """
    The local participant identity plus its session material.

    ``jid`` stays None until the gateway reports a successful pairing. The key
    material belongs to the protocol engine; nothing else reads it.
    """
    registration_id: int
    noise_key: KeyPair
    identity_key: KeyPair
    adv_secret: bytes
    jid: Optional[str] = None
    platform: Optional[str] = None
    business_name: Optional[str] = None

    @property
    def is_paired(self) -> bool:
        return bool(self.jid)

    @classmethod
    def new_unpaired(cls) -> "DeviceIdentity":
        return cls(
            registration_id=generate_registration_id(),
            noise_key=KeyPair.generate(),
            identity_key=KeyPair.generate(),
            adv_secret=generate_adv_secret(),
        )

    def pairing_code(self, ref: str) -> str:
        """Scannable code: gateway ref followed by the public material."""
        return ",".join([
            ref,
            self.noise_key.public_b64url(),
            self.identity_key.public_b64url(),
            b64url_nopad(self.adv_secret),
        ])


@dataclass(frozen=True)
class OutboundMessage:
    recipient: ParticipantAddress
    body: str
